# services/search_engine.py
"""Vector, keyword and hybrid retrieval over the chunk index"""
import asyncio
import logging
from dataclasses import replace
from typing import Dict, List, Optional

from config import settings
from core.domain import Query, RetrievalResult, SearchFilters, SearchMode, SimilarQuery
from core.errors import IndexStoreError, ValidationError, timeout_error
from core.interfaces import IEmbeddingService, IIndexStore, IQueryIndex
from utils.common import call_with_timeout

logger = logging.getLogger(settings.LOGGER_NAME)


def keyword_signal(results: List[RetrievalResult]) -> Dict[str, float]:
    """
    Min-max normalise raw keyword scores into [0.5, 1.0].

    Every keyword hit is a full conjunctive match, so even the weakest one
    keeps half of the lexical signal. Equal scores all map to 1.0.
    """
    if not results:
        return {}
    scores = [r.score for r in results]
    low, high = min(scores), max(scores)
    if high == low:
        return {r.chunk_id: 1.0 for r in results}
    return {r.chunk_id: 0.5 + 0.5 * (r.score - low) / (high - low) for r in results}


def fuse_results(
    vector_hits: List[RetrievalResult],
    keyword_hits: List[RetrievalResult],
    keyword_boost: float = settings.HYBRID_KEYWORD_BOOST,
) -> List[RetrievalResult]:
    """
    Combine vector and keyword hits into one ranking.

    - in both sets: vector score + keyword_boost * keyword signal
    - vector only: vector score unchanged
    - keyword only: keyword signal
    The boost is non-negative, so a fused score never drops below the chunk's
    vector-only score. Ties keep vector order first, then keyword order.
    """
    signal = keyword_signal(keyword_hits)
    fused: List[RetrievalResult] = []
    seen = set()

    for hit in vector_hits:
        seen.add(hit.chunk_id)
        if hit.chunk_id in signal:
            fused.append(replace(
                hit,
                score=hit.score + keyword_boost * signal[hit.chunk_id],
                source=SearchMode.HYBRID,
            ))
        else:
            fused.append(hit)

    for hit in keyword_hits:
        if hit.chunk_id not in seen:
            fused.append(replace(hit, score=signal[hit.chunk_id], source=SearchMode.KEYWORD))

    fused.sort(key=lambda r: r.score, reverse=True)
    return fused


class HybridSearchEngine:
    """Answers search requests in vector, keyword or hybrid mode."""

    def __init__(
        self,
        embedding_service: IEmbeddingService,
        index_store: IIndexStore,
        query_index: Optional[IQueryIndex] = None,
        keyword_boost: float = settings.HYBRID_KEYWORD_BOOST,
        candidate_multiplier: int = settings.SEARCH_CANDIDATE_MULTIPLIER,
        timeout: float = settings.PROVIDER_TIMEOUT_SECONDS,
    ):
        if keyword_boost < 0:
            raise ValueError("keyword_boost must be non-negative")
        self.embedding_service = embedding_service
        self.index_store = index_store
        self.query_index = query_index
        self.keyword_boost = keyword_boost
        self.candidate_multiplier = max(1, candidate_multiplier)
        self.timeout = timeout

    @staticmethod
    def _validate(query_text: str, limit: int, threshold: float) -> None:
        if not query_text or not query_text.strip():
            raise ValidationError("Search query must not be empty")
        if limit <= 0:
            raise ValidationError(f"limit must be positive, got {limit}")
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError(f"threshold must be within [0, 1], got {threshold}")

    async def search(
        self,
        project_id: str,
        query_text: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        filters: Optional[SearchFilters] = None,
        mode: SearchMode = SearchMode.HYBRID,
    ) -> List[RetrievalResult]:
        limit = settings.DEFAULT_SEARCH_RESULTS if limit is None else limit
        threshold = settings.SEARCH_SCORE_THRESHOLD if threshold is None else threshold
        self._validate(query_text, limit, threshold)
        limit = min(limit, settings.MAX_SEARCH_RESULTS)
        candidate_k = limit * self.candidate_multiplier

        if mode == SearchMode.KEYWORD:
            results = await self._keyword(project_id, query_text, limit, filters)
            logger.info(f"[SEARCH] mode=keyword final={len(results)}")
            return results

        if mode == SearchMode.VECTOR:
            raw = await self._vector(project_id, query_text, candidate_k, filters)
            results = [r for r in raw if r.score >= threshold][:limit]
            logger.info(f"[SEARCH] mode=vector raw={len(raw)} final={len(results)}")
            return results

        vector_hits, keyword_hits = await asyncio.gather(
            self._vector(project_id, query_text, candidate_k, filters),
            self._keyword(project_id, query_text, candidate_k, filters),
        )
        fused = fuse_results(vector_hits, keyword_hits, self.keyword_boost)
        results = [r for r in fused if r.score >= threshold][:limit]
        logger.info(
            f"[SEARCH] mode=hybrid vector={len(vector_hits)} keyword={len(keyword_hits)} "
            f"fused={len(fused)} final={len(results)}"
        )
        return results

    async def _vector(self, project_id: str, query_text: str, k: int,
                      filters: Optional[SearchFilters]) -> List[RetrievalResult]:
        vector = await self.embedding_service.embed(query_text)
        return await call_with_timeout(
            self.index_store.vector_search(project_id, vector, k, filters),
            self.timeout,
            timeout_error(IndexStoreError),
        )

    async def _keyword(self, project_id: str, query_text: str, k: int,
                       filters: Optional[SearchFilters]) -> List[RetrievalResult]:
        return await call_with_timeout(
            self.index_store.keyword_search(project_id, query_text, k, filters),
            self.timeout,
            timeout_error(IndexStoreError),
        )

    # ---------- Historical queries ----------

    async def similar_queries(self, project_id: str, query_text: str,
                              limit: int = settings.SIMILAR_QUERIES_LIMIT) -> List[SimilarQuery]:
        if not query_text or not query_text.strip():
            raise ValidationError("Search query must not be empty")
        if self.query_index is None:
            return []
        vector = await self.embedding_service.embed(query_text)
        return await self.query_index.search(project_id, vector, limit)

    async def record_query(self, query: Query) -> None:
        if self.query_index is None:
            return
        vector = await self.embedding_service.embed(query.text)
        await self.query_index.add_query(query, vector)

    async def forget_query(self, query_id: str) -> None:
        if self.query_index is None:
            return
        await self.query_index.delete_query(query_id)
