# services/factory.py
"""Builds and wires every service; owns their lifecycle."""
import logging
from dataclasses import dataclass
from typing import Any, Optional

import chromadb
from chromadb.config import Settings as ChromaSettings
from sqlalchemy.ext.asyncio import AsyncEngine

from config import settings
from core.interfaces import IAnswerGenerator, IBlobStore, IDocumentStore, IEmbeddingService
from database.session import build_engine, build_sessionmaker, init_db
from infrastructure.blob_storage import LocalBlobStore
from infrastructure.embedding_services import OpenAIEmbeddingService, SentenceTransformerEmbedding
from infrastructure.index_store import ChromaIndexStore, ChromaQueryIndex
from infrastructure.repositories import (
    SQLDocumentStore, SQLProjectSettingsRepository, SQLQueryRepository,
)
from services.background_tasks import BackgroundTaskRunner
from services.document_processor import DocumentProcessor
from services.llm_service import AnswerGeneratorRouter, OllamaAnswerGenerator, OpenAIAnswerGenerator
from services.query_orchestrator import QueryOrchestrator
from services.search_engine import HybridSearchEngine

logger = logging.getLogger(settings.LOGGER_NAME)

# Provider functions for each component
def get_chroma_client(path: str = settings.VECTOR_DB_PATH) -> Any:
    """Create vector store client based on configuration."""
    if settings.VECTOR_STORE_TYPE == "chromadb":
        return chromadb.PersistentClient(
            path=path,
            settings=ChromaSettings(anonymized_telemetry=False),
        )
    raise ValueError(f"Unknown vector store type: {settings.VECTOR_STORE_TYPE}")


def get_embedding_service() -> IEmbeddingService:
    """Create embedding service based on configuration."""
    if settings.EMBEDDING_PROVIDER == "sentence_transformers":
        return SentenceTransformerEmbedding(settings.EMBEDDING_MODEL_NAME)
    if settings.EMBEDDING_PROVIDER == "openai":
        return OpenAIEmbeddingService()
    raise ValueError(f"Unknown embedding provider: {settings.EMBEDDING_PROVIDER}")


def get_answer_generator() -> IAnswerGenerator:
    """Every configured LLM backend, selected per request by provider name."""
    generators = {"ollama": OllamaAnswerGenerator()}
    if settings.OPENAI_API_KEY:
        generators["openai"] = OpenAIAnswerGenerator()
    return AnswerGeneratorRouter(generators)


def get_blob_store() -> IBlobStore:
    return LocalBlobStore(base_path=settings.UPLOADS_DIR)


@dataclass
class ServiceContainer:
    """Everything the HTTP layer needs, constructed once per application."""
    document_store: IDocumentStore
    settings_repo: SQLProjectSettingsRepository
    query_repo: SQLQueryRepository
    index_store: ChromaIndexStore
    search_engine: HybridSearchEngine
    processor: DocumentProcessor
    orchestrator: QueryOrchestrator
    runner: BackgroundTaskRunner
    engine: Optional[AsyncEngine] = None

    async def startup(self) -> None:
        if self.engine is not None:
            await init_db(self.engine)
        await self.processor.recover_interrupted()

    async def shutdown(self) -> None:
        logger.info("Shutting down background tasks...")
        await self.runner.shutdown()
        if self.engine is not None:
            await self.engine.dispose()


def build_container(
    engine: Optional[AsyncEngine] = None,
    chroma_client: Any = None,
    embedding_service: Optional[IEmbeddingService] = None,
    blob_store: Optional[IBlobStore] = None,
    answer_generator: Optional[IAnswerGenerator] = None,
    document_store: Optional[IDocumentStore] = None,
) -> ServiceContainer:
    """
    Compose the service graph. Any collaborator can be passed in to override
    the configured one, which is how tests swap in fakes.
    """
    engine = engine or build_engine()
    session_factory = build_sessionmaker(engine)
    chroma_client = chroma_client or get_chroma_client()
    embedding_service = embedding_service or get_embedding_service()

    document_store = document_store or SQLDocumentStore(session_factory)
    settings_repo = SQLProjectSettingsRepository(session_factory)
    query_repo = SQLQueryRepository(session_factory)
    index_store = ChromaIndexStore(chroma_client)
    search_engine = HybridSearchEngine(
        embedding_service, index_store, query_index=ChromaQueryIndex(chroma_client)
    )
    processor = DocumentProcessor(
        document_store=document_store,
        blob_store=blob_store or get_blob_store(),
        embedding_service=embedding_service,
        index_store=index_store,
        settings_repo=settings_repo,
    )
    orchestrator = QueryOrchestrator(
        search_engine=search_engine,
        answer_generator=answer_generator or get_answer_generator(),
        query_repo=query_repo,
        settings_repo=settings_repo,
    )
    return ServiceContainer(
        document_store=document_store,
        settings_repo=settings_repo,
        query_repo=query_repo,
        index_store=index_store,
        search_engine=search_engine,
        processor=processor,
        orchestrator=orchestrator,
        runner=BackgroundTaskRunner(),
        engine=engine,
    )
