# infrastructure/embedding_services.py
"""Batched embedding generation over pluggable providers"""
import asyncio
import logging
from abc import abstractmethod
from typing import List, Optional

import numpy as np
import openai
from sentence_transformers import SentenceTransformer

from core.errors import EmbeddingProviderError, timeout_error
from core.interfaces import IEmbeddingService
from config import settings
from utils.common import call_with_timeout

logger = logging.getLogger(settings.LOGGER_NAME)


class BatchingEmbeddingService(IEmbeddingService):
    """
    Shared batching logic for every provider.

    embed_batch() splits the input into sub-batches of `batch_size`, runs them
    concurrently (at most `max_concurrency` in flight) and reassembles vectors
    by original index, so output order always matches input order. Provider
    errors, timeouts and length mismatches all surface as EmbeddingProviderError.
    """

    def __init__(
        self,
        batch_size: int = settings.EMBEDDING_BATCH_SIZE,
        max_concurrency: int = settings.EMBEDDING_MAX_CONCURRENCY,
        timeout: float = settings.PROVIDER_TIMEOUT_SECONDS,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size
        self.max_concurrency = max(1, max_concurrency)
        self.timeout = timeout

    @abstractmethod
    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        """One provider call for one sub-batch"""
        pass

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        batches = [
            (start, texts[start:start + self.batch_size])
            for start in range(0, len(texts), self.batch_size)
        ]
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results: List[Optional[List[float]]] = [None] * len(texts)

        async def run(start: int, batch: List[str]) -> None:
            async with semaphore:
                vectors = await self._call_provider(batch)
            for offset, vector in enumerate(vectors):
                results[start + offset] = vector

        await asyncio.gather(*(run(start, batch) for start, batch in batches))

        logger.debug(f"[EMBED] {len(texts)} texts in {len(batches)} batches")
        return results  # type: ignore[return-value]

    async def _call_provider(self, batch: List[str]) -> List[List[float]]:
        try:
            vectors = await call_with_timeout(
                self._embed_texts(batch),
                self.timeout,
                timeout_error(EmbeddingProviderError),
            )
        except EmbeddingProviderError:
            raise
        except Exception as e:
            logger.error(f"Embedding provider call failed: {e}")
            raise EmbeddingProviderError(f"Embedding provider failed: {e}") from e

        if len(vectors) != len(batch):
            raise EmbeddingProviderError(
                f"Embedding provider returned {len(vectors)} vectors for {len(batch)} texts"
            )
        return [list(map(float, vector)) for vector in vectors]


class SentenceTransformerEmbedding(BatchingEmbeddingService):
    """
    Local sentence-transformers model with L2 normalization (unit vectors).

    With unit vectors cosine similarity equals the dot product, which keeps
    index scores comparable across documents and queries.
    """

    _model: Optional[SentenceTransformer] = None  # Singleton cache

    def __init__(self, model_name: str = settings.EMBEDDING_MODEL_NAME, **kwargs):
        """Initializes the service, loading the heavy model only once."""
        super().__init__(**kwargs)

        if SentenceTransformerEmbedding._model is None:
            try:
                logger.info(f"Attempting to load model {model_name} from local cache...")
                SentenceTransformerEmbedding._model = SentenceTransformer(
                    model_name,
                    local_files_only=True
                )
                logger.info(f"Successfully loaded {model_name} from local cache.")

            except Exception as e:
                logger.warning(
                    f"Model {model_name} not found in cache. Attempting online download. "
                    f"This may take a few minutes. Error: {e}"
                )
                SentenceTransformerEmbedding._model = SentenceTransformer(model_name)
                logger.info(f"Successfully downloaded and loaded {model_name}.")

        self.model = SentenceTransformerEmbedding._model

    @staticmethod
    def _l2_normalize(arr: np.ndarray) -> np.ndarray:
        """L2 normalize an (N, D) array of vectors to unit length."""
        norms = np.linalg.norm(arr, axis=1, keepdims=True)
        norms[norms == 0] = 1e-12  # Avoid division by zero
        return arr / norms

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        raw = await asyncio.to_thread(
            self.model.encode,
            texts,
            convert_to_tensor=False
        )
        normalized = self._l2_normalize(np.array(raw, dtype="float32").reshape(len(texts), -1))
        return normalized.tolist()


class OpenAIEmbeddingService(BatchingEmbeddingService):
    """Embedding provider backed by an OpenAI-compatible embeddings API."""

    def __init__(
        self,
        api_key: Optional[str] = settings.OPENAI_API_KEY,
        model: str = settings.OPENAI_EMBEDDING_MODEL,
        base_url: Optional[str] = settings.OPENAI_BASE_URL,
        **kwargs,
    ):
        super().__init__(**kwargs)
        client_kwargs: dict = {"api_key": api_key}
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = model

    async def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        try:
            response = await self._client.embeddings.create(input=texts, model=self._model)
        except openai.APIError as e:
            raise EmbeddingProviderError(f"OpenAI embeddings API error: {e}") from e
        # The API may return items out of order; each carries its input index
        data = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in data]
