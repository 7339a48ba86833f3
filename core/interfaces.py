# core/interfaces.py
"""Core interfaces for the RAG system"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from core.domain import (
    BulkWriteReport, Document, DocumentStatus, IndexEntry, ModelParams,
    ProjectSettings, Query, Response, RetrievalResult, SearchFilters, SimilarQuery,
)

# ============= Embedding Interface =============
class IEmbeddingService(ABC):
    """Interface for embedding generation"""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text"""
        pass

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed many texts; output order and length match the input"""
        pass

# ============= Index Interfaces =============
class IIndexStore(ABC):
    """Interface for the chunk vector/lexical index"""

    @abstractmethod
    async def bulk_upsert(self, entries: List[IndexEntry]) -> BulkWriteReport:
        pass

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> None:
        pass

    @abstractmethod
    async def vector_search(
        self,
        project_id: str,
        query_vector: List[float],
        k: int,
        filters: Optional[SearchFilters] = None,
    ) -> List[RetrievalResult]:
        pass

    @abstractmethod
    async def keyword_search(
        self,
        project_id: str,
        query_text: str,
        k: int,
        filters: Optional[SearchFilters] = None,
    ) -> List[RetrievalResult]:
        pass

    @abstractmethod
    async def get_document_chunks(
        self, document_id: str, limit: int, offset: int = 0
    ) -> Tuple[List[RetrievalResult], int]:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass


class IQueryIndex(ABC):
    """Interface for the historical query index (similar questions)"""

    @abstractmethod
    async def add_query(self, query: Query, vector: List[float]) -> None:
        pass

    @abstractmethod
    async def search(self, project_id: str, vector: List[float], limit: int) -> List[SimilarQuery]:
        pass

    @abstractmethod
    async def delete_query(self, query_id: str) -> None:
        pass

# ============= Extraction Interface =============
class ITextExtractor(ABC):
    """Turns raw document bytes into plain text"""

    @abstractmethod
    async def extract(self, content: bytes) -> str:
        pass

# ============= Collaborator Interfaces =============
class IDocumentStore(ABC):
    """Document records; the pipeline only reads them and writes status"""

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    async def set_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: Optional[str] = None,
        processed_at: Optional[datetime] = None,
    ) -> None:
        pass

    @abstractmethod
    async def list_by_project(self, project_id: str) -> List[Document]:
        pass

    @abstractmethod
    async def list_by_status(self, status: DocumentStatus) -> List[Document]:
        pass


class IBlobStore(ABC):
    """Raw document bytes by opaque reference"""

    @abstractmethod
    async def fetch(self, source_ref: str) -> bytes:
        pass


class IAnswerGenerator(ABC):
    """Pluggable LLM answer generation"""

    @abstractmethod
    async def generate(self, query: str, context: str, params: ModelParams) -> str:
        pass


class IProjectSettingsRepository(ABC):

    @abstractmethod
    async def get(self, project_id: str) -> ProjectSettings:
        """Stored settings, or defaults when the project has none"""
        pass

    @abstractmethod
    async def save(self, project_settings: ProjectSettings) -> ProjectSettings:
        pass


class IQueryRepository(ABC):
    """Queries and their generated responses"""

    @abstractmethod
    async def create_query(self, query: Query) -> Query:
        pass

    @abstractmethod
    async def get_query(self, query_id: str) -> Optional[Query]:
        pass

    @abstractmethod
    async def list_queries(self, project_id: str, limit: int = 20, offset: int = 0) -> List[Query]:
        pass

    @abstractmethod
    async def create_response(self, response: Response) -> Response:
        pass

    @abstractmethod
    async def get_response(self, response_id: str) -> Optional[Response]:
        pass

    @abstractmethod
    async def list_responses(self, query_id: str) -> List[Response]:
        pass

    @abstractmethod
    async def set_feedback(
        self, response_id: str, rating: int, comment: Optional[str] = None
    ) -> Optional[Response]:
        pass

    @abstractmethod
    async def delete_query(self, query_id: str) -> bool:
        """Delete a query and its responses; False if it did not exist."""
        pass
