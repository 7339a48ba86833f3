# infrastructure/index_store.py
"""ChromaDB-backed chunk index and historical query index"""
import asyncio
import json
import logging
import math
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from rank_bm25 import BM25Okapi

from config import settings
from core.domain import (
    BulkWriteReport, ChunkMetadata, IndexEntry, Query, RetrievalResult,
    SearchFilters, SearchMode, SimilarQuery,
)
from core.errors import IndexStoreError
from core.interfaces import IIndexStore, IQueryIndex
from utils.common import tokenize

logger = logging.getLogger(settings.LOGGER_NAME)


def distance_to_similarity(distance: float) -> float:
    """
    Map ChromaDB cosine distance to a similarity in [0, 1].

    Cosine distance is 1 - cos(a, b) and lies in [0, 2]; 1 - d/2 maps it onto
    [0, 1] so a single threshold means the same thing for every query.
    """
    return max(0.0, min(1.0, 1.0 - (distance / 2.0)))


class _PositiveIdfBM25(BM25Okapi):
    """
    BM25Okapi with the Lucene idf, log(1 + (N - n + 0.5) / (n + 0.5)).

    The stock Okapi idf turns negative for terms found in more than half the
    corpus, which inverts the ranking for small projects. This one stays
    positive, so a higher term frequency always ranks higher.
    """

    def _calc_idf(self, nd):
        for word, freq in nd.items():
            self.idf[word] = math.log(1 + (self.corpus_size - freq + 0.5) / (freq + 0.5))


class _ChromaCollection:
    """Lazy collection handle shared by the chunk and query indexes"""

    def __init__(self, client: Any, collection_name: str):
        self._client = client
        self._collection_name = collection_name
        self._collection: Any = None
        self._lock = asyncio.Lock()

    async def _ensure_collection(self):
        """Lazy initialization of collection"""
        if self._collection is None:
            async with self._lock:
                if self._collection is None:
                    self._collection = await asyncio.to_thread(
                        self._client.get_or_create_collection,
                        name=self._collection_name,
                        metadata={"hnsw:space": "cosine"},
                    )
        return self._collection

    async def _run(self, method: str, **kwargs) -> Any:
        """Call a collection method off the event loop, surfacing IndexStoreError."""
        collection = await self._ensure_collection()
        try:
            return await asyncio.to_thread(getattr(collection, method), **kwargs)
        except Exception as e:
            logger.error(f"ChromaDB {method} failed on '{self._collection_name}': {e}")
            raise IndexStoreError(f"Index {method} failed: {e}") from e

    async def _count_where(self, where: Dict[str, Any]) -> int:
        result = await self._run("get", where=where, include=["metadatas"])
        return len(result["ids"])

    async def count(self) -> int:
        return await self._run("count")

    async def clear(self) -> None:
        """Drop the whole collection (used by maintenance and tests)."""
        try:
            await asyncio.to_thread(self._client.delete_collection, name=self._collection_name)
        except Exception as e:
            raise IndexStoreError(f"Failed to clear collection: {e}") from e
        self._collection = None


class ChromaIndexStore(_ChromaCollection, IIndexStore):
    """
    Chunk index: one record per chunk id, tagged with document and project.

    Vector search uses the collection's cosine HNSW index. Keyword search loads
    the project-scoped corpus and ranks conjunctive matches with BM25.
    """

    def __init__(self, client: Any, collection_name: str = settings.CHUNK_COLLECTION_NAME,
                 dimension: int = settings.EMBEDDING_DIMENSION):
        super().__init__(client, collection_name)
        self._dimension: Optional[int] = dimension or None

    # ---------- Writes ----------

    async def bulk_upsert(self, entries: List[IndexEntry]) -> BulkWriteReport:
        report = BulkWriteReport()
        if not entries:
            return report

        dimension = await self._resolve_dimension(entries)
        valid: List[IndexEntry] = []
        for entry in entries:
            reason = self._validate(entry, dimension)
            if reason:
                report.failures[entry.id] = reason
            else:
                valid.append(entry)

        if valid:
            try:
                await self._run(
                    "upsert",
                    ids=[e.id for e in valid],
                    embeddings=[list(e.embedding) for e in valid],
                    documents=[e.content for e in valid],
                    metadatas=[self._to_metadata(e) for e in valid],
                )
                report.indexed.extend(e.id for e in valid)
                self._dimension = dimension
            except IndexStoreError as e:
                for entry in valid:
                    report.failures[entry.id] = str(e)

        if report.failures:
            logger.warning(
                f"[INDEX] bulk upsert: {len(report.indexed)} ok, {len(report.failures)} failed"
            )
        else:
            logger.info(f"[INDEX] bulk upsert: {len(report.indexed)} entries written")
        return report

    async def delete_by_document(self, document_id: str) -> None:
        await self._run("delete", where={"document_id": document_id})
        logger.info(f"[INDEX] deleted entries for document {document_id}")

    async def _resolve_dimension(self, entries: List[IndexEntry]) -> Optional[int]:
        """Configured dimension, else the stored one, else the batch majority."""
        if self._dimension:
            return self._dimension
        existing = await self._run("get", limit=1, include=["embeddings"])
        embeddings = existing.get("embeddings")
        if embeddings is not None and len(embeddings) > 0:
            self._dimension = len(embeddings[0])
            return self._dimension
        lengths = Counter(len(e.embedding or []) for e in entries if e.embedding)
        return lengths.most_common(1)[0][0] if lengths else None

    @staticmethod
    def _validate(entry: IndexEntry, dimension: Optional[int]) -> Optional[str]:
        if not entry.content:
            return "empty content"
        if entry.start_offset >= entry.end_offset:
            return "invalid offsets"
        if not entry.embedding:
            return "missing embedding"
        if dimension is not None and len(entry.embedding) != dimension:
            return f"dimension {len(entry.embedding)} != {dimension}"
        if not all(math.isfinite(v) for v in entry.embedding):
            return "non-finite embedding value"
        return None

    @staticmethod
    def _to_metadata(entry: IndexEntry) -> Dict[str, Any]:
        # Chroma metadata values must be scalars and never None
        md: Dict[str, Any] = {
            "chunk_id": entry.id,
            "document_id": entry.document_id,
            "project_id": entry.project_id,
            "chunk_index": entry.chunk_index,
            "start_offset": entry.start_offset,
            "end_offset": entry.end_offset,
            "extra": json.dumps(entry.metadata.extra or {}),
        }
        if entry.metadata.document_name:
            md["document_name"] = entry.metadata.document_name
        if entry.metadata.source_mime_type:
            md["source_mime_type"] = entry.metadata.source_mime_type
        return md

    @staticmethod
    def _to_result(chunk_id: str, content: str, md: Dict[str, Any],
                   score: float, source: Optional[SearchMode]) -> RetrievalResult:
        return RetrievalResult(
            chunk_id=chunk_id,
            document_id=md.get("document_id", ""),
            project_id=md.get("project_id", ""),
            content=content,
            chunk_index=int(md.get("chunk_index", 0)),
            score=score,
            source=source,
            metadata=ChunkMetadata(
                document_name=md.get("document_name"),
                source_mime_type=md.get("source_mime_type"),
                extra=json.loads(md.get("extra") or "{}"),
            ),
        )

    # ---------- Reads ----------

    @staticmethod
    def _scope(project_id: str, filters: Optional[SearchFilters]) -> Dict[str, Any]:
        if filters and filters.document_ids:
            return {"$and": [
                {"project_id": project_id},
                {"document_id": {"$in": list(filters.document_ids)}},
            ]}
        return {"project_id": project_id}

    async def vector_search(
        self,
        project_id: str,
        query_vector: List[float],
        k: int,
        filters: Optional[SearchFilters] = None,
    ) -> List[RetrievalResult]:
        if k <= 0:
            return []
        where = self._scope(project_id, filters)
        available = await self._count_where(where)
        if available == 0:
            return []

        results = await self._run(
            "query",
            query_embeddings=[list(query_vector)],
            n_results=min(k, available),
            where=where,
            include=["metadatas", "documents", "distances"],
        )

        hits: List[RetrievalResult] = []
        if results["ids"] and results["ids"][0]:
            for i, chunk_id in enumerate(results["ids"][0]):
                similarity = distance_to_similarity(results["distances"][0][i])
                hits.append(self._to_result(
                    chunk_id,
                    results["documents"][0][i],
                    results["metadatas"][0][i] or {},
                    similarity,
                    SearchMode.VECTOR,
                ))
        hits.sort(key=lambda r: r.score, reverse=True)
        return hits

    async def keyword_search(
        self,
        project_id: str,
        query_text: str,
        k: int,
        filters: Optional[SearchFilters] = None,
    ) -> List[RetrievalResult]:
        query_tokens = list(dict.fromkeys(tokenize(query_text)))
        if k <= 0 or not query_tokens:
            return []

        corpus = await self._run(
            "get", where=self._scope(project_id, filters), include=["documents", "metadatas"]
        )
        records = sorted(
            zip(corpus["ids"], corpus["documents"], corpus["metadatas"]),
            key=lambda r: ((r[2] or {}).get("document_id", ""), int((r[2] or {}).get("chunk_index", 0))),
        )
        if not records:
            return []

        tokenized = [tokenize(content) for _, content, _ in records]
        required = set(query_tokens)
        matching = [i for i, tokens in enumerate(tokenized) if required.issubset(tokens)]
        if not matching:
            return []

        bm25 = _PositiveIdfBM25(tokenized)
        scores = bm25.get_scores(query_tokens)

        # sorted() is stable: equal scores keep (document_id, chunk_index) order
        ranked = sorted(matching, key=lambda i: float(scores[i]), reverse=True)[:k]
        return [
            self._to_result(records[i][0], records[i][1], records[i][2] or {},
                            float(scores[i]), SearchMode.KEYWORD)
            for i in ranked
        ]

    async def get_document_chunks(
        self, document_id: str, limit: int, offset: int = 0
    ) -> Tuple[List[RetrievalResult], int]:
        records = await self._run(
            "get", where={"document_id": document_id}, include=["documents", "metadatas"]
        )
        rows = sorted(
            zip(records["ids"], records["documents"], records["metadatas"]),
            key=lambda r: int((r[2] or {}).get("chunk_index", 0)),
        )
        page = rows[offset:offset + limit]
        return (
            [self._to_result(cid, content, md or {}, 0.0, None)
             for cid, content, md in page],
            len(rows),
        )


class ChromaQueryIndex(_ChromaCollection, IQueryIndex):
    """Past questions embedded for "similar questions" lookups"""

    def __init__(self, client: Any, collection_name: str = settings.QUERY_COLLECTION_NAME):
        super().__init__(client, collection_name)

    async def add_query(self, query: Query, vector: List[float]) -> None:
        await self._run(
            "upsert",
            ids=[query.id],
            embeddings=[list(vector)],
            documents=[query.text],
            metadatas=[{
                "project_id": query.project_id,
                "user_id": query.user_id,
                "language": query.language,
                "created_at": query.created_at.isoformat(),
            }],
        )

    async def search(self, project_id: str, vector: List[float], limit: int) -> List[SimilarQuery]:
        where = {"project_id": project_id}
        available = await self._count_where(where)
        if available == 0 or limit <= 0:
            return []
        results = await self._run(
            "query",
            query_embeddings=[list(vector)],
            n_results=min(limit, available),
            where=where,
            include=["metadatas", "documents", "distances"],
        )
        similar = []
        if results["ids"] and results["ids"][0]:
            for i, query_id in enumerate(results["ids"][0]):
                md = results["metadatas"][0][i] or {}
                similar.append(SimilarQuery(
                    query_id=query_id,
                    text=results["documents"][0][i],
                    score=distance_to_similarity(results["distances"][0][i]),
                    created_at=md.get("created_at"),
                ))
        return similar

    async def delete_query(self, query_id: str) -> None:
        await self._run("delete", ids=[query_id])
