# services/query_orchestrator.py
"""Question answering: query -> retrieval -> context -> answer -> stored response"""
import logging
from typing import List, Optional, Tuple

from config import settings
from core.domain import (
    ModelParams, Query, QueryOptions, QueryResult, Response, RetrievalResult,
    new_id, utc_now,
)
from core.errors import (
    AnswerGenerationError, NoRelevantContentError, NotFoundError, ValidationError,
    timeout_error,
)
from core.interfaces import IAnswerGenerator, IProjectSettingsRepository, IQueryRepository
from services.search_engine import HybridSearchEngine
from utils.common import call_with_timeout, estimate_tokens

logger = logging.getLogger(settings.LOGGER_NAME)

MIN_RATING = 1
MAX_RATING = 5


def build_context(results: List[RetrievalResult]) -> str:
    """Rank-ordered source blocks, each tagged with its document and chunk."""
    blocks = []
    for result in results:
        name = result.metadata.document_name or result.document_id
        blocks.append(f"[Source: {name}, chunk: {result.chunk_index}]\n{result.content}")
    return "\n\n".join(blocks)


class QueryOrchestrator:
    def __init__(
        self,
        search_engine: HybridSearchEngine,
        answer_generator: IAnswerGenerator,
        query_repo: IQueryRepository,
        settings_repo: IProjectSettingsRepository,
        timeout: float = settings.PROVIDER_TIMEOUT_SECONDS,
    ):
        self.search_engine = search_engine
        self.answer_generator = answer_generator
        self.query_repo = query_repo
        self.settings_repo = settings_repo
        self.timeout = timeout

    def _model_params(self, options: QueryOptions) -> ModelParams:
        return ModelParams(
            provider=options.provider or settings.LLM_PROVIDER,
            model=options.model or settings.LLM_MODEL,
            temperature=settings.LLM_TEMPERATURE if options.temperature is None else options.temperature,
            max_tokens=options.max_tokens or settings.LLM_MAX_TOKENS,
        )

    async def submit_query(
        self,
        project_id: str,
        user_id: str,
        text: str,
        options: Optional[QueryOptions] = None,
    ) -> QueryResult:
        """
        Answer a question from the project's documents.

        The query is stored before retrieval, so it survives even when nothing
        relevant is found (NoRelevantContentError, no response is stored).
        """
        options = options or QueryOptions()
        if not text or not text.strip():
            raise ValidationError("Query text must not be empty")
        if not user_id:
            raise ValidationError("A user id is required")

        query = await self.query_repo.create_query(Query(
            id=new_id(),
            user_id=user_id,
            project_id=project_id,
            text=text.strip(),
            language=options.language or settings.DEFAULT_QUERY_LANGUAGE,
        ))

        project = await self.settings_repo.get(project_id)
        limit = options.max_chunks or project.max_documents_per_query
        threshold = (
            project.similarity_threshold
            if options.similarity_threshold is None else options.similarity_threshold
        )
        results = await self.search_engine.search(
            project_id, query.text, limit=limit, threshold=threshold,
            filters=options.filters, mode=options.search_mode,
        )
        if not results:
            logger.info(f"[QUERY] {query.id}: no relevant content")
            raise NoRelevantContentError("No relevant content found for this question")

        params = self._model_params(options)
        answer = await call_with_timeout(
            self.answer_generator.generate(query.text, build_context(results), params),
            self.timeout,
            timeout_error(AnswerGenerationError),
        )

        response = await self.query_repo.create_response(Response(
            id=new_id(),
            query_id=query.id,
            answer_text=answer,
            model_identifier=f"{params.provider}/{params.model}",
            model_params=params.to_dict(),
            token_count=estimate_tokens(answer),
            source_chunks=[r.to_dict() for r in results],
            created_at=utc_now(),
        ))
        logger.info(f"[QUERY] {query.id}: answered from {len(results)} chunks")

        try:
            await self.search_engine.record_query(query)
        except Exception as e:
            # The answer is already stored; a missing history entry only affects suggestions
            logger.warning(f"[QUERY] {query.id}: could not record query history: {e}")

        return QueryResult(query=query, response=response, sources=results)

    async def submit_feedback(
        self,
        query_id: str,
        response_id: str,
        rating: int,
        comment: Optional[str] = None,
    ) -> Response:
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationError(f"rating must be between {MIN_RATING} and {MAX_RATING}")
        response = await self.query_repo.get_response(response_id)
        if response is None or response.query_id != query_id:
            raise NotFoundError(f"Response {response_id} not found for query {query_id}")
        updated = await self.query_repo.set_feedback(response_id, rating, comment)
        if updated is None:
            raise NotFoundError(f"Response {response_id} not found")
        logger.info(f"[QUERY] feedback {rating} recorded for response {response_id}")
        return updated

    async def get_query(self, query_id: str) -> Tuple[Query, List[Response]]:
        query = await self.query_repo.get_query(query_id)
        if query is None:
            raise NotFoundError(f"Query {query_id} not found")
        return query, await self.query_repo.list_responses(query_id)

    async def list_queries(self, project_id: str, limit: int = 20,
                           offset: int = 0) -> List[Query]:
        if limit <= 0 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        return await self.query_repo.list_queries(project_id, limit, offset)

    async def delete_query(self, query_id: str) -> None:
        """Remove a query, its responses and its similar-questions entry."""
        if not await self.query_repo.delete_query(query_id):
            raise NotFoundError(f"Query {query_id} not found")
        try:
            await self.search_engine.forget_query(query_id)
        except Exception as e:
            # The records are gone; a stale history entry only affects suggestions
            logger.warning(f"[QUERY] {query_id}: could not remove query history: {e}")
        logger.info(f"[QUERY] {query_id}: deleted")
