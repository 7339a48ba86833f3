# database/session.py

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_engine(database_url: str = settings.DATABASE_URL) -> AsyncEngine:
    """Create the async engine; pool sizing only applies to server databases."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False)
    return create_async_engine(
        database_url,
        echo=False,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True  # Check connection health before using
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


# Setup SQLAlchemy async engine and session maker
async_engine = build_engine()
AsyncSessionLocal = build_sessionmaker(async_engine)
Base = declarative_base()

# --- SQLAlchemy Models ---

class DocumentEntity(Base):
    __tablename__ = "documents"
    id = Column(String, primary_key=True)
    project_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False, default="text/plain")
    source_ref = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class ProjectSettingsEntity(Base):
    __tablename__ = "project_settings"
    project_id = Column(String, primary_key=True)
    chunk_size = Column(Integer, nullable=False)
    chunk_overlap = Column(Integer, nullable=False)
    similarity_threshold = Column(Float, nullable=False)
    max_documents_per_query = Column(Integer, nullable=False)


class QueryEntity(Base):
    __tablename__ = "queries"
    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False)
    project_id = Column(String, index=True, nullable=False)
    text = Column(Text, nullable=False)
    language = Column(String, nullable=False, default="en")
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)


class ResponseEntity(Base):
    __tablename__ = "responses"
    id = Column(String, primary_key=True)
    query_id = Column(String, ForeignKey("queries.id"), index=True, nullable=False)
    answer_text = Column(Text, nullable=False)
    model_identifier = Column(String, nullable=False)
    model_params = Column(JSON, nullable=False, default=dict)
    token_count = Column(Integer, nullable=False, default=0)
    source_chunks = Column(JSON, nullable=False, default=list)
    feedback_rating = Column(Integer, nullable=True)
    feedback_comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


async def init_db(engine: AsyncEngine = async_engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized")


# ============= Session Factory =============

@asynccontextmanager
async def get_session(
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a new database session with proper cleanup.

    Used by repositories and background tasks where request-scoped sessions
    are unavailable. Ensures rollback on errors and explicit closure.
    """
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
