# api/schemas.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from config import settings
from core.domain import (
    DocumentStatus, QueryOptions, RetrievalResult, SearchFilters, SearchMode, TaskStatus,
)
from utils.common import make_snippet


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Documents ----------

class ProcessRequest(CamelModel):
    force: bool = False

class ProcessingAccepted(CamelModel):
    document_id: str
    status: DocumentStatus
    task_id: Optional[str] = None

class DocumentStatusResponse(CamelModel):
    document_id: str
    name: str
    status: DocumentStatus
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None

class ReindexAccepted(CamelModel):
    project_id: str
    documents_count: int
    task_id: str

class ChunkItem(CamelModel):
    chunk_id: str
    chunk_index: int
    content: str
    document_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

class ChunkListResponse(CamelModel):
    document_id: str
    chunks: List[ChunkItem]
    total: int
    limit: int
    offset: int


# ---------- Search ----------

class SearchFiltersModel(CamelModel):
    document_ids: Optional[List[str]] = None

    def to_domain(self) -> SearchFilters:
        return SearchFilters(document_ids=self.document_ids)

class SearchRequest(CamelModel):
    project_id: str
    query: str
    limit: Optional[int] = None
    threshold: Optional[float] = None
    filters: Optional[SearchFiltersModel] = None

class SearchResultItem(CamelModel):
    chunk_id: str
    document_id: str
    document_name: Optional[str] = None
    chunk_index: int
    content: str
    snippet: str
    score: float
    source: SearchMode

    @classmethod
    def from_result(cls, result: RetrievalResult) -> 'SearchResultItem':
        return cls(
            chunk_id=result.chunk_id,
            document_id=result.document_id,
            document_name=result.metadata.document_name,
            chunk_index=result.chunk_index,
            content=result.content,
            snippet=make_snippet(result.content, settings.SNIPPET_LENGTH),
            score=round(result.score, 4),
            source=result.source,
        )

class SearchResponse(CamelModel):
    query: str
    mode: SearchMode
    results: List[SearchResultItem]
    total: int

class SimilarQueriesRequest(CamelModel):
    project_id: str
    query: str
    limit: Optional[int] = None

class SimilarQueryItem(CamelModel):
    query_id: str
    text: str
    score: float
    created_at: Optional[str] = None

class SimilarQueriesResponse(CamelModel):
    query: str
    results: List[SimilarQueryItem]


# ---------- Queries ----------

class QueryOptionsModel(CamelModel):
    max_chunks: Optional[int] = None
    similarity_threshold: Optional[float] = None
    search_mode: SearchMode = SearchMode.HYBRID
    document_ids: Optional[List[str]] = None
    language: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_domain(self) -> QueryOptions:
        return QueryOptions(
            max_chunks=self.max_chunks,
            similarity_threshold=self.similarity_threshold,
            search_mode=self.search_mode,
            filters=SearchFilters(document_ids=self.document_ids) if self.document_ids else None,
            language=self.language,
            provider=self.provider,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

class QueryRequest(CamelModel):
    project_id: str
    query: str
    options: Optional[QueryOptionsModel] = None

class QueryAnswerResponse(CamelModel):
    id: str
    query: str
    answer: str
    response_id: str
    model_identifier: str
    token_count: int
    sources: List[SearchResultItem]
    created_at: datetime

class FeedbackRequest(CamelModel):
    rating: int
    comment: Optional[str] = None

class FeedbackResponse(CamelModel):
    query_id: str
    response_id: str
    rating: int
    comment: Optional[str] = None

class ResponseItem(CamelModel):
    id: str
    answer: str
    model_identifier: str
    token_count: int
    sources: List[Dict[str, Any]]
    feedback_rating: Optional[int] = None
    feedback_comment: Optional[str] = None
    created_at: datetime

class QueryDetailResponse(CamelModel):
    id: str
    project_id: str
    user_id: str
    query: str
    language: str
    created_at: datetime
    responses: List[ResponseItem]

class QuerySummary(CamelModel):
    id: str
    user_id: str
    query: str
    language: str
    created_at: datetime

class QueryListResponse(CamelModel):
    project_id: str
    queries: List[QuerySummary]
    limit: int
    offset: int


# ---------- Projects / tasks / health ----------

class ProjectSettingsModel(CamelModel):
    chunk_size: int
    chunk_overlap: int
    similarity_threshold: float
    max_documents_per_query: int

class TaskStatusResponse(CamelModel):
    task_id: str
    kind: str
    subject_id: str
    status: TaskStatus
    result: Optional[Any] = None
    error: Optional[str] = None
    created_at: datetime
    finished_at: Optional[datetime] = None

class HealthResponse(CamelModel):
    status: str
    chunks_indexed: int
    pending_tasks: int
    version: str
