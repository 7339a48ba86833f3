# core/domain.py
"""Domain types shared across the indexing pipeline and retrieval engine."""
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional

# ============= Enums =============

class ErrorCode(str, Enum):
    """Error codes for user-facing error messages."""
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_FOUND = "NOT_FOUND"
    NO_TEXT_FOUND = "NO_TEXT_FOUND"
    NO_RELEVANT_CONTENT = "NO_RELEVANT_CONTENT"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    BLOB_UNAVAILABLE = "BLOB_UNAVAILABLE"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    INDEX_FAILED = "INDEX_FAILED"
    PARTIAL_INDEX_FAILURE = "PARTIAL_INDEX_FAILURE"
    GENERATION_FAILED = "GENERATION_FAILED"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROCESSING_CANCELLED = "PROCESSING_CANCELLED"
    PROCESSING_FAILED = "PROCESSING_FAILED"


class DocumentStatus(str, Enum):
    """Document processing lifecycle."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def can_transition_to(self, target: 'DocumentStatus') -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS = {
    DocumentStatus.PENDING: {DocumentStatus.PROCESSING},
    DocumentStatus.PROCESSING: {DocumentStatus.COMPLETED, DocumentStatus.FAILED},
    DocumentStatus.COMPLETED: {DocumentStatus.PROCESSING},
    DocumentStatus.FAILED: {DocumentStatus.PROCESSING},
}


class SearchMode(str, Enum):
    VECTOR = "vector"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def make_chunk_id(document_id: str, index: int) -> str:
    """Deterministic chunk id; rewriting a document overwrites the same keys."""
    return f"{document_id}-chunk-{index}"


# ============= Domain Models =============

@dataclass
class Document:
    """Domain model for documents (owned by the document store)"""
    id: str
    project_id: str
    name: str
    mime_type: str
    source_ref: str
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    is_deleted: bool = False


@dataclass
class ChunkMetadata:
    """Named chunk attributes plus one open extension map."""
    document_name: Optional[str] = None
    source_mime_type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ChunkMetadata':
        data = data or {}
        return cls(
            document_name=data.get("document_name"),
            source_mime_type=data.get("source_mime_type"),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class TextSpan:
    """A contiguous slice of source text: text[start_offset:end_offset] == content."""
    content: str
    start_offset: int
    end_offset: int


@dataclass
class Chunk:
    """Domain model for document chunks"""
    id: str
    document_id: str
    project_id: str
    content: str
    index: int
    start_offset: int
    end_offset: int
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)
    embedding: Optional[List[float]] = None  # Vector of float numbers

    def __post_init__(self):
        if not self.content:
            raise ValueError("Chunk content must not be empty")
        if self.start_offset >= self.end_offset:
            raise ValueError("Chunk start_offset must be less than end_offset")
        if self.index < 0:
            raise ValueError("Chunk index must be non-negative")


@dataclass
class IndexEntry:
    """Persisted form of a chunk inside the vector index."""
    id: str
    document_id: str
    project_id: str
    content: str
    chunk_index: int
    start_offset: int
    end_offset: int
    embedding: List[float]
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> 'IndexEntry':
        if chunk.embedding is None:
            raise ValueError(f"Chunk {chunk.id} has no embedding")
        return cls(
            id=chunk.id,
            document_id=chunk.document_id,
            project_id=chunk.project_id,
            content=chunk.content,
            chunk_index=chunk.index,
            start_offset=chunk.start_offset,
            end_offset=chunk.end_offset,
            embedding=chunk.embedding,
            metadata=chunk.metadata,
        )


@dataclass
class RetrievalResult:
    """Ephemeral search hit. Snapshotted into responses via to_dict()."""
    chunk_id: str
    document_id: str
    project_id: str
    content: str
    chunk_index: int
    score: float
    # None for plain listings that were not produced by a search
    source: Optional[SearchMode] = None
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "project_id": self.project_id,
            "content": self.content,
            "chunk_index": self.chunk_index,
            "score": self.score,
            "source": self.source.value if self.source else None,
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class SearchFilters:
    document_ids: Optional[List[str]] = None


@dataclass
class Query:
    """Immutable once persisted."""
    id: str
    user_id: str
    project_id: str
    text: str
    language: str = "en"
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class ModelParams:
    provider: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 1000

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Response:
    """Generated answer for a query. Feedback is the only later mutation."""
    id: str
    query_id: str
    answer_text: str
    model_identifier: str
    model_params: Dict[str, Any]
    token_count: int
    source_chunks: List[Dict[str, Any]]
    feedback_rating: Optional[int] = None
    feedback_comment: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class QueryOptions:
    max_chunks: Optional[int] = None
    similarity_threshold: Optional[float] = None
    search_mode: SearchMode = SearchMode.HYBRID
    filters: Optional[SearchFilters] = None
    language: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class QueryResult:
    query: Query
    response: Response
    sources: List[RetrievalResult]


@dataclass
class ProjectSettings:
    project_id: str
    chunk_size: int = 1000
    chunk_overlap: int = 0
    similarity_threshold: float = 0.7
    max_documents_per_query: int = 5


@dataclass
class BulkWriteReport:
    indexed: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def failed_ids(self) -> List[str]:
        return list(self.failures.keys())

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class ReindexReport:
    project_id: str
    total: int = 0
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


@dataclass
class SimilarQuery:
    query_id: str
    text: str
    score: float
    created_at: Optional[str] = None
