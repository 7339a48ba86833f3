# core/errors.py
"""Typed errors raised by the pipeline, the retrieval engine and collaborators."""
from typing import List, Optional

from core.domain import ErrorCode


class RAGError(Exception):
    """Base error carrying a specific error code"""

    default_code = ErrorCode.PROCESSING_FAILED

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None):
        self.message = message
        self.error_code = error_code or self.default_code
        super().__init__(message)

    def __str__(self):
        # Format used for logging and the document error_message column
        return f"[{self.error_code.value}] {self.message}"


class ValidationError(RAGError):
    """Bad input; nothing was mutated."""
    default_code = ErrorCode.VALIDATION_FAILED


class InvalidStatusTransitionError(ValidationError):
    default_code = ErrorCode.INVALID_TRANSITION


class NotFoundError(RAGError):
    default_code = ErrorCode.NOT_FOUND


class NoRelevantContentError(RAGError):
    """Retrieval returned nothing usable; not a system failure."""
    default_code = ErrorCode.NO_RELEVANT_CONTENT


class DocumentProcessingError(RAGError):
    """Raised when a pipeline stage fails with a specific error code"""
    default_code = ErrorCode.PROCESSING_FAILED


class ProviderError(RAGError):
    """An external backend was unreachable, rejected the call or timed out."""
    default_code = ErrorCode.PROCESSING_FAILED


class EmbeddingProviderError(ProviderError):
    default_code = ErrorCode.EMBEDDING_FAILED


class IndexStoreError(ProviderError):
    default_code = ErrorCode.INDEX_FAILED


class AnswerGenerationError(ProviderError):
    default_code = ErrorCode.GENERATION_FAILED


class BlobStoreError(ProviderError):
    default_code = ErrorCode.BLOB_UNAVAILABLE


class PartialIndexFailureError(ProviderError):
    default_code = ErrorCode.PARTIAL_INDEX_FAILURE

    def __init__(self, failed_ids: List[str], message: Optional[str] = None):
        self.failed_ids = list(failed_ids)
        super().__init__(message or f"{len(self.failed_ids)} index entries failed to write")


def timeout_error(cls):
    """Factory for call_with_timeout: builds `cls` with the timeout code."""
    return lambda message: cls(message, ErrorCode.PROVIDER_TIMEOUT)
