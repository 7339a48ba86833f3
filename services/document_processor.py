# services/document_processor.py
"""Document indexing pipeline and status state machine"""
import asyncio
import logging
from typing import List, Optional, Tuple

from config import settings
from core.domain import (
    Chunk, ChunkMetadata, Document, DocumentStatus, ErrorCode, IndexEntry,
    ReindexReport, RetrievalResult, make_chunk_id, utc_now,
)
from core.errors import (
    BlobStoreError, DocumentProcessingError, InvalidStatusTransitionError,
    NotFoundError, PartialIndexFailureError, RAGError, ValidationError, timeout_error,
)
from core.interfaces import (
    IBlobStore, IDocumentStore, IEmbeddingService, IIndexStore, IProjectSettingsRepository,
)
from infrastructure.text_extractors import TextExtractorRegistry, build_default_registry
from services.chunk_splitter import ChunkSplitter
from utils.common import call_with_timeout

logger = logging.getLogger(settings.LOGGER_NAME)


class DocumentProcessor:
    """
    Runs documents through fetch -> extract -> split -> embed -> index.

    Status moves PENDING -> PROCESSING -> COMPLETED | FAILED, and a finished
    document may be taken back to PROCESSING. A failed round deletes whatever
    it wrote, so a FAILED document never has visible index entries. Failures
    are recorded, never retried.
    """

    def __init__(
        self,
        document_store: IDocumentStore,
        blob_store: IBlobStore,
        embedding_service: IEmbeddingService,
        index_store: IIndexStore,
        settings_repo: IProjectSettingsRepository,
        splitter: Optional[ChunkSplitter] = None,
        extractors: Optional[TextExtractorRegistry] = None,
        provider_timeout: float = settings.PROVIDER_TIMEOUT_SECONDS,
        processing_timeout: float = settings.PROCESSING_TIMEOUT_SECONDS,
        reindex_concurrency: int = settings.REINDEX_MAX_CONCURRENCY,
    ):
        self.document_store = document_store
        self.blob_store = blob_store
        self.embedding_service = embedding_service
        self.index_store = index_store
        self.settings_repo = settings_repo
        self.splitter = splitter or ChunkSplitter()
        self.extractors = extractors or build_default_registry()
        self.provider_timeout = provider_timeout
        self.processing_timeout = processing_timeout
        self.reindex_concurrency = max(1, reindex_concurrency)

    # ---------- State machine ----------

    async def get_document(self, document_id: str) -> Document:
        document = await self.document_store.get_document(document_id)
        if document is None or document.is_deleted:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def begin(self, document_id: str) -> Document:
        """Validate the transition and mark the document PROCESSING."""
        document = await self.get_document(document_id)
        if not document.status.can_transition_to(DocumentStatus.PROCESSING):
            raise InvalidStatusTransitionError(
                f"Document {document_id} cannot move from {document.status.value} to processing"
            )
        await self.document_store.set_status(document_id, DocumentStatus.PROCESSING)
        document.status = DocumentStatus.PROCESSING
        document.error_message = None
        logger.info(f"[PROCESS] {document_id}: {document.name} -> processing")
        return document

    # ---------- Public operations ----------

    async def process(self, document_id: str, force: bool = False,
                      timeout: Optional[float] = None) -> Document:
        """
        Process a document. A COMPLETED document is returned untouched unless
        force is set; a forced run replaces its previous entries.
        """
        document = await self.get_document(document_id)
        if document.status == DocumentStatus.COMPLETED and not force:
            logger.info(f"[PROCESS] {document_id} already completed, skipping")
            return document
        document = await self.begin(document_id)
        return await self.run(document, timeout=timeout)

    async def reprocess(self, document_id: str, timeout: Optional[float] = None) -> Document:
        """Rebuild a document's entries from scratch (delete, then write)."""
        document = await self.begin(document_id)
        return await self.run(document, timeout=timeout)

    async def run(self, document: Document, timeout: Optional[float] = None) -> Document:
        """
        Execute the pipeline for a document already marked PROCESSING.

        Always ends in COMPLETED or FAILED. Cancellation marks the document
        FAILED and then propagates.
        """
        timeout = self.processing_timeout if timeout is None else timeout
        try:
            chunk_count = await call_with_timeout(
                self._pipeline(document),
                timeout,
                timeout_error(DocumentProcessingError),
            )
        except asyncio.CancelledError:
            await self._mark_failed(
                document,
                DocumentProcessingError("Processing was cancelled", ErrorCode.PROCESSING_CANCELLED),
            )
            raise
        except RAGError as e:
            await self._mark_failed(document, e)
            return document
        except Exception as e:
            logger.exception(f"[PROCESS] {document.id}: unexpected error")
            await self._mark_failed(
                document, DocumentProcessingError(f"Unexpected error: {e}", ErrorCode.PROCESSING_FAILED)
            )
            return document

        processed_at = utc_now()
        await self.document_store.set_status(
            document.id, DocumentStatus.COMPLETED, processed_at=processed_at
        )
        document.status = DocumentStatus.COMPLETED
        document.error_message = None
        document.processed_at = processed_at
        logger.info(f"[PROCESS] {document.id}: completed with {chunk_count} chunks")
        return document

    async def abandon(self, document: Document) -> None:
        """Fail a document whose queued run was cancelled before it started."""
        await self._mark_failed(
            document,
            DocumentProcessingError(
                "Processing was cancelled before it started", ErrorCode.PROCESSING_CANCELLED
            ),
        )

    async def recover_interrupted(self) -> int:
        """
        Fail every document still marked PROCESSING.

        Meant for startup: no run survives a restart, so such documents would
        otherwise stay PROCESSING and refuse to be reprocessed.
        """
        stuck = await self.document_store.list_by_status(DocumentStatus.PROCESSING)
        for document in stuck:
            await self._mark_failed(
                document,
                DocumentProcessingError("Processing was interrupted", ErrorCode.PROCESSING_CANCELLED),
            )
        if stuck:
            logger.warning(f"[PROCESS] Recovered {len(stuck)} interrupted documents")
        return len(stuck)

    async def reindex_project(self, project_id: str) -> ReindexReport:
        """
        Reprocess every live document in the project.

        Runs at most reindex_concurrency documents at once. A document that
        fails (or cannot start) is tallied and never stops its siblings.
        """
        documents = await self.document_store.list_by_project(project_id)
        report = ReindexReport(project_id=project_id, total=len(documents))
        semaphore = asyncio.Semaphore(self.reindex_concurrency)

        async def reindex_one(document: Document) -> None:
            async with semaphore:
                try:
                    result = await self.reprocess(document.id)
                except RAGError as e:
                    report.failed[document.id] = str(e)
                    return
                except Exception as e:
                    logger.error(f"[REINDEX] Unexpected error on document {document.id}: {e}", exc_info=True)
                    report.failed[document.id] = str(e)
                    return
                if result.status == DocumentStatus.COMPLETED:
                    report.succeeded.append(document.id)
                else:
                    report.failed[document.id] = result.error_message or "failed"

        await asyncio.gather(*(reindex_one(d) for d in documents))
        logger.info(
            f"[REINDEX] project {project_id}: {len(report.succeeded)}/{report.total} succeeded, "
            f"{len(report.failed)} failed"
        )
        return report

    async def list_chunks(self, document_id: str, limit: int = 50,
                          offset: int = 0) -> Tuple[List[RetrievalResult], int]:
        await self.get_document(document_id)
        if limit <= 0 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        return await self.index_store.get_document_chunks(document_id, limit, offset)

    # ---------- Pipeline ----------

    async def _pipeline(self, document: Document) -> int:
        content = await self._fetch(document)

        text = await self.extractors.extract(content, document.mime_type)
        if not text or not text.strip():
            raise DocumentProcessingError(
                f"No text could be extracted from {document.name}", ErrorCode.NO_TEXT_FOUND
            )

        project = await self.settings_repo.get(document.project_id)
        spans = self.splitter.split(text, project.chunk_size, project.chunk_overlap)
        chunks = [
            Chunk(
                id=make_chunk_id(document.id, i),
                document_id=document.id,
                project_id=document.project_id,
                content=span.content,
                index=i,
                start_offset=span.start_offset,
                end_offset=span.end_offset,
                metadata=ChunkMetadata(
                    document_name=document.name,
                    source_mime_type=document.mime_type,
                ),
            )
            for i, span in enumerate(spans)
        ]
        logger.info(f"[PROCESS] {document.id}: {len(text)} chars -> {len(chunks)} chunks")

        vectors = await self.embedding_service.embed_batch([c.content for c in chunks])
        for chunk, vector in zip(chunks, vectors):
            chunk.embedding = vector

        # Remove the previous generation before writing the new one
        await call_with_timeout(
            self.index_store.delete_by_document(document.id),
            self.provider_timeout,
            timeout_error(DocumentProcessingError),
        )
        report = await call_with_timeout(
            self.index_store.bulk_upsert([IndexEntry.from_chunk(c) for c in chunks]),
            self.provider_timeout,
            timeout_error(DocumentProcessingError),
        )
        if not report.ok:
            raise PartialIndexFailureError(report.failed_ids)
        return len(chunks)

    async def _fetch(self, document: Document) -> bytes:
        try:
            return await call_with_timeout(
                self.blob_store.fetch(document.source_ref),
                self.provider_timeout,
                timeout_error(BlobStoreError),
            )
        except NotFoundError as e:
            raise BlobStoreError(str(e.message)) from e

    async def _mark_failed(self, document: Document, error: RAGError) -> None:
        """Delete anything this round wrote, then record FAILED with the error."""
        try:
            await self.index_store.delete_by_document(document.id)
        except Exception as cleanup_error:
            logger.warning(f"[PROCESS] {document.id}: cleanup failed: {cleanup_error}")
        await self.document_store.set_status(
            document.id, DocumentStatus.FAILED, error_message=str(error)
        )
        document.status = DocumentStatus.FAILED
        document.error_message = str(error)
        logger.error(f"[PROCESS] {document.id}: failed: {error}")
