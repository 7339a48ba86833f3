"""Shared pytest fixtures: deterministic embeddings, fake collaborators, real Chroma + SQLite."""

import asyncio
import hashlib
import math
from typing import Dict, List, Optional

import chromadb
import pytest
import pytest_asyncio
from chromadb.config import Settings as ChromaSettings

from core.domain import Document, DocumentStatus, ModelParams, ProjectSettings, new_id
from core.errors import NotFoundError
from core.interfaces import IAnswerGenerator, IBlobStore
from database.session import build_engine
from infrastructure.embedding_services import BatchingEmbeddingService
from infrastructure.index_store import ChromaIndexStore, ChromaQueryIndex
from services.factory import ServiceContainer, build_container
from utils.common import tokenize

DIMENSION = 256


def hash_embed(text: str, dimension: int = DIMENSION) -> List[float]:
    """Bag-of-words vector over hashed buckets, L2 normalised."""
    vector = [0.0] * dimension
    for token in tokenize(text):
        bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % dimension
        vector[bucket] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        vector[0] = 1.0
        return vector
    return [v / norm for v in vector]


class HashingEmbeddingService(BatchingEmbeddingService):
    """Deterministic offline embeddings; records every provider call."""

    def __init__(self, dimension: int = DIMENSION, **kwargs):
        super().__init__(**kwargs)
        self.dimension = dimension
        self.calls: List[List[str]] = []

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [hash_embed(t, self.dimension) for t in texts]


class WrongDimensionEmbeddingService(HashingEmbeddingService):
    """Returns a short vector for any text containing `marker`."""

    def __init__(self, marker: str, **kwargs):
        super().__init__(**kwargs)
        self.marker = marker

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        vectors = await super()._embed_texts(texts)
        return [
            hash_embed(t, self.dimension // 2) if self.marker in t else v
            for t, v in zip(texts, vectors)
        ]


class InMemoryBlobStore(IBlobStore):
    def __init__(self):
        self.blobs: Dict[str, bytes] = {}

    def put(self, source_ref: str, content: bytes) -> None:
        self.blobs[source_ref] = content

    async def fetch(self, source_ref: str) -> bytes:
        if source_ref not in self.blobs:
            raise NotFoundError(f"Blob not found: {source_ref}")
        return self.blobs[source_ref]


class BlockingBlobStore(InMemoryBlobStore):
    """fetch() waits until released; `started` is set once a fetch begins."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch(self, source_ref: str) -> bytes:
        self.started.set()
        await self.release.wait()
        return await super().fetch(source_ref)


class RecordingAnswerGenerator(IAnswerGenerator):
    def __init__(self, answer: str = "The answer is in the documents."):
        self.answer = answer
        self.calls: List[Dict] = []

    async def generate(self, query: str, context: str, params: ModelParams) -> str:
        self.calls.append({"query": query, "context": context, "params": params})
        return self.answer


@pytest.fixture
def embedding_service() -> HashingEmbeddingService:
    return HashingEmbeddingService()


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def answer_generator() -> RecordingAnswerGenerator:
    return RecordingAnswerGenerator()


@pytest.fixture
def chroma_client(tmp_path):
    return chromadb.PersistentClient(
        path=str(tmp_path / "chroma"),
        settings=ChromaSettings(anonymized_telemetry=False, allow_reset=True),
    )


@pytest.fixture
def index_store(chroma_client) -> ChromaIndexStore:
    return ChromaIndexStore(chroma_client, collection_name="test_chunks")


@pytest.fixture
def query_index(chroma_client) -> ChromaQueryIndex:
    return ChromaQueryIndex(chroma_client, collection_name="test_queries")


def make_container(tmp_path, chroma_client, embedding_service, blob_store, answer_generator) -> ServiceContainer:
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    return build_container(
        engine=engine,
        chroma_client=chroma_client,
        embedding_service=embedding_service,
        blob_store=blob_store,
        answer_generator=answer_generator,
    )


@pytest_asyncio.fixture
async def container(tmp_path, chroma_client, embedding_service, blob_store, answer_generator):
    services = make_container(tmp_path, chroma_client, embedding_service, blob_store, answer_generator)
    await services.startup()
    yield services
    await services.shutdown()


async def seed_document(
    services: ServiceContainer,
    blobs: InMemoryBlobStore,
    project_id: str,
    name: str,
    text: Optional[str],
    mime_type: str = "text/plain",
    status: DocumentStatus = DocumentStatus.PENDING,
) -> Document:
    """Create a document row and, unless text is None, its blob."""
    document_id = new_id()
    source_ref = f"{project_id}/{document_id}.txt"
    if text is not None:
        blobs.put(source_ref, text.encode("utf-8"))
    return await services.document_store.create_document(Document(
        id=document_id,
        project_id=project_id,
        name=name,
        mime_type=mime_type,
        source_ref=source_ref,
        status=status,
    ))


async def set_chunk_policy(services: ServiceContainer, project_id: str, size: int, overlap: int = 0,
                           threshold: float = 0.7, max_chunks: int = 5) -> None:
    await services.settings_repo.save(ProjectSettings(
        project_id=project_id,
        chunk_size=size,
        chunk_overlap=overlap,
        similarity_threshold=threshold,
        max_documents_per_query=max_chunks,
    ))


def token_text(count: int, prefix: str = "token", width: int = 4, end: str = ".") -> str:
    """'token0000 token0001 ...' - one space between tokens, no other separators."""
    return " ".join(f"{prefix}{i:0{width}d}" for i in range(count)) + end
