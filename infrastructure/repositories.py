# infrastructure/repositories.py
"""Database repository implementations"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import settings
from core.domain import (
    Document, DocumentStatus, ProjectSettings, Query, Response,
)
from core.errors import ValidationError
from core.interfaces import IDocumentStore, IProjectSettingsRepository, IQueryRepository
from database.session import (
    AsyncSessionLocal, DocumentEntity, ProjectSettingsEntity, QueryEntity,
    ResponseEntity, get_session,
)

logger = logging.getLogger(settings.LOGGER_NAME)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLDocumentStore(IDocumentStore):
    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.session_factory = session_factory

    def _to_domain(self, db_doc: Optional[DocumentEntity]) -> Optional[Document]:
        """Converts an SQLAlchemy entity to a domain model."""
        if db_doc is None:
            return None
        return Document(
            id=db_doc.id,  # type: ignore
            project_id=db_doc.project_id,  # type: ignore
            name=db_doc.name,  # type: ignore
            mime_type=db_doc.mime_type,  # type: ignore
            source_ref=db_doc.source_ref,  # type: ignore
            status=DocumentStatus(db_doc.status),
            error_message=db_doc.error_message,  # type: ignore
            processed_at=_aware(db_doc.processed_at),  # type: ignore
            is_deleted=bool(db_doc.is_deleted),
        )

    async def create_document(self, document: Document) -> Document:
        async with get_session(self.session_factory) as session:
            db_doc = DocumentEntity(
                id=document.id,
                project_id=document.project_id,
                name=document.name,
                mime_type=document.mime_type,
                source_ref=document.source_ref,
                status=document.status.value,
                error_message=document.error_message,
                processed_at=document.processed_at,
                is_deleted=document.is_deleted,
            )
            session.add(db_doc)
            await session.commit()
            logger.info(f"Created document {document.id} in database")
            return self._to_domain(db_doc)  # type: ignore[return-value]

    async def get_document(self, document_id: str) -> Optional[Document]:
        async with get_session(self.session_factory) as session:
            return self._to_domain(await session.get(DocumentEntity, document_id))

    async def set_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: Optional[str] = None,
        processed_at: Optional[datetime] = None,
    ) -> None:
        async with get_session(self.session_factory) as session:
            db_doc = await session.get(DocumentEntity, document_id)
            if db_doc is None:
                logger.warning(f"set_status on unknown document {document_id}")
                return
            db_doc.status = status.value  # type: ignore
            db_doc.error_message = error_message  # type: ignore
            if processed_at is not None:
                db_doc.processed_at = processed_at  # type: ignore
            await session.commit()

    async def list_by_project(self, project_id: str) -> List[Document]:
        async with get_session(self.session_factory) as session:
            result = await session.execute(
                select(DocumentEntity)
                .where(DocumentEntity.project_id == project_id)
                .where(DocumentEntity.is_deleted.is_(False))
                .order_by(DocumentEntity.created_at)
            )
            return [self._to_domain(d) for d in result.scalars().all()]  # type: ignore[misc]

    async def list_by_status(self, status: DocumentStatus) -> List[Document]:
        async with get_session(self.session_factory) as session:
            result = await session.execute(
                select(DocumentEntity)
                .where(DocumentEntity.status == status.value)
                .where(DocumentEntity.is_deleted.is_(False))
                .order_by(DocumentEntity.created_at)
            )
            return [self._to_domain(d) for d in result.scalars().all()]  # type: ignore[misc]


class SQLProjectSettingsRepository(IProjectSettingsRepository):
    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.session_factory = session_factory

    @staticmethod
    def defaults(project_id: str) -> ProjectSettings:
        return ProjectSettings(
            project_id=project_id,
            chunk_size=settings.CHUNK_SIZE,
            chunk_overlap=settings.CHUNK_OVERLAP,
            similarity_threshold=settings.SEARCH_SCORE_THRESHOLD,
            max_documents_per_query=settings.DEFAULT_SEARCH_RESULTS,
        )

    async def get(self, project_id: str) -> ProjectSettings:
        async with get_session(self.session_factory) as session:
            row = await session.get(ProjectSettingsEntity, project_id)
            if row is None:
                return self.defaults(project_id)
            return ProjectSettings(
                project_id=row.project_id,  # type: ignore
                chunk_size=row.chunk_size,  # type: ignore
                chunk_overlap=row.chunk_overlap,  # type: ignore
                similarity_threshold=row.similarity_threshold,  # type: ignore
                max_documents_per_query=row.max_documents_per_query,  # type: ignore
            )

    @staticmethod
    def validate(project_settings: ProjectSettings) -> None:
        if project_settings.chunk_size <= 0:
            raise ValidationError("chunk_size must be positive")
        if not 0 <= project_settings.chunk_overlap < project_settings.chunk_size:
            raise ValidationError("chunk_overlap must be in [0, chunk_size)")
        if not 0.0 <= project_settings.similarity_threshold <= 1.0:
            raise ValidationError("similarity_threshold must be within [0, 1]")
        if project_settings.max_documents_per_query <= 0:
            raise ValidationError("max_documents_per_query must be positive")

    async def save(self, project_settings: ProjectSettings) -> ProjectSettings:
        self.validate(project_settings)
        async with get_session(self.session_factory) as session:
            await session.merge(ProjectSettingsEntity(
                project_id=project_settings.project_id,
                chunk_size=project_settings.chunk_size,
                chunk_overlap=project_settings.chunk_overlap,
                similarity_threshold=project_settings.similarity_threshold,
                max_documents_per_query=project_settings.max_documents_per_query,
            ))
            await session.commit()
        return project_settings


class SQLQueryRepository(IQueryRepository):
    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.session_factory = session_factory

    @staticmethod
    def _query_to_domain(row: Optional[QueryEntity]) -> Optional[Query]:
        if row is None:
            return None
        return Query(
            id=row.id,  # type: ignore
            user_id=row.user_id,  # type: ignore
            project_id=row.project_id,  # type: ignore
            text=row.text,  # type: ignore
            language=row.language,  # type: ignore
            created_at=_aware(row.created_at),  # type: ignore
        )

    @staticmethod
    def _response_to_domain(row: Optional[ResponseEntity]) -> Optional[Response]:
        if row is None:
            return None
        return Response(
            id=row.id,  # type: ignore
            query_id=row.query_id,  # type: ignore
            answer_text=row.answer_text,  # type: ignore
            model_identifier=row.model_identifier,  # type: ignore
            model_params=dict(row.model_params or {}),
            token_count=row.token_count,  # type: ignore
            source_chunks=list(row.source_chunks or []),
            feedback_rating=row.feedback_rating,  # type: ignore
            feedback_comment=row.feedback_comment,  # type: ignore
            created_at=_aware(row.created_at),  # type: ignore
        )

    async def create_query(self, query: Query) -> Query:
        async with get_session(self.session_factory) as session:
            session.add(QueryEntity(
                id=query.id,
                user_id=query.user_id,
                project_id=query.project_id,
                text=query.text,
                language=query.language,
                created_at=query.created_at,
            ))
            await session.commit()
        return query

    async def get_query(self, query_id: str) -> Optional[Query]:
        async with get_session(self.session_factory) as session:
            return self._query_to_domain(await session.get(QueryEntity, query_id))

    async def list_queries(self, project_id: str, limit: int = 20, offset: int = 0) -> List[Query]:
        async with get_session(self.session_factory) as session:
            result = await session.execute(
                select(QueryEntity)
                .where(QueryEntity.project_id == project_id)
                .order_by(QueryEntity.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return [self._query_to_domain(q) for q in result.scalars().all()]  # type: ignore[misc]

    async def create_response(self, response: Response) -> Response:
        async with get_session(self.session_factory) as session:
            session.add(ResponseEntity(
                id=response.id,
                query_id=response.query_id,
                answer_text=response.answer_text,
                model_identifier=response.model_identifier,
                model_params=response.model_params,
                token_count=response.token_count,
                source_chunks=response.source_chunks,
                feedback_rating=response.feedback_rating,
                feedback_comment=response.feedback_comment,
                created_at=response.created_at,
            ))
            await session.commit()
        return response

    async def get_response(self, response_id: str) -> Optional[Response]:
        async with get_session(self.session_factory) as session:
            return self._response_to_domain(await session.get(ResponseEntity, response_id))

    async def list_responses(self, query_id: str) -> List[Response]:
        async with get_session(self.session_factory) as session:
            result = await session.execute(
                select(ResponseEntity)
                .where(ResponseEntity.query_id == query_id)
                .order_by(ResponseEntity.created_at)
            )
            return [self._response_to_domain(r) for r in result.scalars().all()]  # type: ignore[misc]

    async def set_feedback(
        self, response_id: str, rating: int, comment: Optional[str] = None
    ) -> Optional[Response]:
        async with get_session(self.session_factory) as session:
            row = await session.get(ResponseEntity, response_id)
            if row is None:
                return None
            row.feedback_rating = rating  # type: ignore
            row.feedback_comment = comment  # type: ignore
            await session.commit()
            return self._response_to_domain(row)

    async def delete_query(self, query_id: str) -> bool:
        async with get_session(self.session_factory) as session:
            row = await session.get(QueryEntity, query_id)
            if row is None:
                return False
            await session.execute(delete(ResponseEntity).where(ResponseEntity.query_id == query_id))
            await session.delete(row)
            await session.commit()
        logger.info(f"Deleted query {query_id} and its responses")
        return True
