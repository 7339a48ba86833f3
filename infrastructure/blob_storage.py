# infrastructure/blob_storage.py
import asyncio
import logging
from pathlib import Path
from typing import Union

from config import settings
from core.errors import BlobStoreError, NotFoundError
from core.interfaces import IBlobStore

logger = logging.getLogger(settings.LOGGER_NAME)

class LocalBlobStore(IBlobStore):
    """Reads document bytes from the local upload directory."""

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path)
        # Create the directory if it doesn't exist
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Blob directory ensured at: {self.base_path}")
        except OSError as e:
            logger.error(f"Could not create blob directory at {self.base_path}: {e}")
            raise

    def _safe_path(self, source_ref: str) -> Path:
        """Resolve source_ref inside base_path; refuse anything that escapes it."""
        base = self.base_path.resolve()
        full = (base / source_ref).resolve()
        try:
            full.relative_to(base)
        except ValueError:
            raise BlobStoreError(f"Invalid blob reference: {source_ref}")
        return full

    async def fetch(self, source_ref: str) -> bytes:
        path = self._safe_path(source_ref)
        if not path.is_file():
            raise NotFoundError(f"Blob not found: {source_ref}")
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            logger.error(f"Failed to read blob {path}: {e}")
            raise BlobStoreError(f"Failed to read blob {source_ref}: {e}") from e

    async def save(self, source_ref: str, content: bytes) -> str:
        """Write bytes under source_ref (used for seeding and tests)."""
        path = self._safe_path(source_ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, content)
        logger.info(f"Successfully saved blob to {path}")
        return source_ref
