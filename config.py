# config.py
"""Application configuration"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from utils.common import get_log_file_path, get_project_root

class Settings(BaseSettings):
    """Application configuration"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logger configuration
    LOG_FILE_PATH: str = get_log_file_path()
    LOGGER_NAME: str = "docrag"
    LOG_LEVEL: str = "INFO"
    LOG_MAX_BYTES: int = 5 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 5

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./docrag.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour

    # Vector store
    VECTOR_DB_PATH: str = "./vector_db"
    VECTOR_STORE_TYPE: str = "chromadb"
    CHUNK_COLLECTION_NAME: str = "rag_embeddings"
    QUERY_COLLECTION_NAME: str = "rag_queries"
    # 0 = take the dimension from the first vectors written
    EMBEDDING_DIMENSION: int = 0

    # Embeddings
    EMBEDDING_PROVIDER: str = "sentence_transformers"  # or "openai"
    EMBEDDING_MODEL_NAME: str = "paraphrase-multilingual-mpnet-base-v2"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_BATCH_SIZE: int = 100
    EMBEDDING_MAX_CONCURRENCY: int = 4

    # Answer generation
    LLM_PROVIDER: str = "ollama"  # or "openai"
    LLM_MODEL: str = "llama3"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 1000
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None

    # Document processing
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 0
    UPLOADS_DIR: str = f"{get_project_root()}/uploads"
    TEXT_MIME_TYPES: List[str] = ["text/plain", "text/markdown", "text/csv"]
    PDF_MIME_TYPES: List[str] = ["application/pdf"]

    # Search defaults
    DEFAULT_SEARCH_RESULTS: int = 5
    MAX_SEARCH_RESULTS: int = 50
    SEARCH_SCORE_THRESHOLD: float = 0.7
    SEARCH_CANDIDATE_MULTIPLIER: int = 2
    HYBRID_KEYWORD_BOOST: float = 0.2
    SIMILAR_QUERIES_LIMIT: int = 5
    SNIPPET_LENGTH: int = 300
    DEFAULT_QUERY_LANGUAGE: str = "en"

    # Timeouts
    PROVIDER_TIMEOUT_SECONDS: float = 60.0
    PROCESSING_TIMEOUT_SECONDS: float = 600.0

    # Concurrency
    REINDEX_MAX_CONCURRENCY: int = 3
    BACKGROUND_MAX_CONCURRENCY: int = 3

    # App metadata
    APP_TITLE: str = "Document RAG Core"
    APP_VERSION: str = "1.0.0"

settings = Settings()
