# infrastructure/text_extractors.py
"""Text extraction from raw document bytes, selected by mime type."""
import asyncio
import logging
from typing import Dict, Iterable, Optional

import fitz  # PyMuPDF

from config import settings
from core.domain import ErrorCode
from core.errors import DocumentProcessingError
from core.interfaces import ITextExtractor

logger = logging.getLogger(settings.LOGGER_NAME)


class PlainTextExtractor(ITextExtractor):
    """Decodes bytes as UTF-8, replacing undecodable sequences."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    async def extract(self, content: bytes) -> str:
        # utf-8-sig drops a leading BOM so offsets start at the first real character
        encoding = "utf-8-sig" if self.encoding.lower() == "utf-8" else self.encoding
        return content.decode(encoding, errors="replace")


class PdfTextExtractor(ITextExtractor):
    """PyMuPDF text layer extraction; pages are joined by blank lines."""

    def _extract_sync(self, content: bytes) -> str:
        try:
            with fitz.open(stream=content, filetype="pdf") as doc:
                pages = [page.get_text() for page in doc]
        except Exception as e:
            raise DocumentProcessingError(
                f"Could not read PDF: {e}", ErrorCode.EXTRACTION_FAILED
            ) from e
        return "\n\n".join(p.strip() for p in pages if p and p.strip())

    async def extract(self, content: bytes) -> str:
        return await asyncio.to_thread(self._extract_sync, content)


class TextExtractorRegistry:
    """
    Chooses an extractor by mime type.

    Unknown mime types fall back to plain-text decoding so that any textual
    upload can still be indexed.
    """

    def __init__(self, fallback: Optional[ITextExtractor] = None):
        self._extractors: Dict[str, ITextExtractor] = {}
        self._fallback = fallback or PlainTextExtractor()

    def register(self, mime_types: Iterable[str], extractor: ITextExtractor) -> None:
        for mime in mime_types:
            self._extractors[mime.lower()] = extractor

    def get(self, mime_type: Optional[str]) -> ITextExtractor:
        key = (mime_type or "").split(";")[0].strip().lower()
        extractor = self._extractors.get(key)
        if extractor is None:
            logger.debug(f"No extractor for '{mime_type}', using plain text")
            return self._fallback
        return extractor

    async def extract(self, content: bytes, mime_type: Optional[str]) -> str:
        return await self.get(mime_type).extract(content)


def build_default_registry() -> TextExtractorRegistry:
    registry = TextExtractorRegistry()
    registry.register(settings.TEXT_MIME_TYPES, PlainTextExtractor())
    registry.register(settings.PDF_MIME_TYPES, PdfTextExtractor())
    return registry
