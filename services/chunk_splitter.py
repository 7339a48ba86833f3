# services/chunk_splitter.py
"""Deterministic text segmentation with source offsets"""
import logging
from functools import lru_cache
from typing import List

from langchain_text_splitters import RecursiveCharacterTextSplitter

from config import settings
from core.domain import TextSpan
from core.errors import ValidationError

logger = logging.getLogger(settings.LOGGER_NAME)

# Paragraphs first, then lines, sentences, words, characters
SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


@lru_cache(maxsize=32)
def _get_splitter(target_size: int) -> RecursiveCharacterTextSplitter:
    # strip_whitespace=False keeps every piece an exact substring of the input.
    # Overlap is applied afterwards on offsets; the splitter only keeps whole
    # separator pieces as overlap and would silently drop it for long sentences.
    return RecursiveCharacterTextSplitter(
        chunk_size=target_size,
        chunk_overlap=0,
        separators=SEPARATORS,
        keep_separator=True,
        strip_whitespace=False,
        length_function=len,
    )


class ChunkSplitter:
    """
    Splits text into bounded, boundary-preferring spans.

    Pure and deterministic: the same (text, target_size, overlap) always yields
    the same spans. With overlap=0 the spans tile the input exactly, so joining
    their contents reproduces the original text.
    """

    def __init__(self, default_size: int = settings.CHUNK_SIZE,
                 default_overlap: int = settings.CHUNK_OVERLAP):
        self.default_size = default_size
        self.default_overlap = default_overlap

    def split(self, text: str, target_size: int = None, overlap: int = None) -> List[TextSpan]:
        target_size = self.default_size if target_size is None else target_size
        overlap = self.default_overlap if overlap is None else overlap

        if target_size <= 0:
            raise ValidationError(f"target_size must be positive, got {target_size}")
        if overlap < 0 or overlap >= target_size:
            raise ValidationError(
                f"overlap must be in [0, target_size), got {overlap} for size {target_size}"
            )

        if not text:
            return []
        if len(text) <= target_size:
            return [TextSpan(content=text, start_offset=0, end_offset=len(text))]

        # Base spans leave room for the overlap, so extended spans stay within target_size
        pieces = _get_splitter(target_size - overlap).split_text(text)
        spans = self._apply_overlap(text, self._locate(text, pieces), overlap)
        logger.debug(f"[SPLIT] {len(text)} chars -> {len(spans)} spans (overlap {overlap})")
        return spans

    @staticmethod
    def _locate(text: str, pieces: List[str]) -> List[TextSpan]:
        """Recover offsets by searching forward from the previous span's end."""
        spans: List[TextSpan] = []
        position = 0
        for piece in pieces:
            if not piece:
                continue
            found = text.find(piece, position)
            if found < 0:
                # Should not happen with strip_whitespace=False
                raise ValueError("Split produced text that is not a substring of the input")
            position = found + len(piece)
            spans.append(TextSpan(content=piece, start_offset=found, end_offset=position))
        return spans

    @staticmethod
    def _apply_overlap(text: str, spans: List[TextSpan], overlap: int) -> List[TextSpan]:
        """
        Start each span `overlap` characters before the previous one ends.

        The extension never reaches past the previous base span's start, so a
        short neighbour is repeated whole and starts still strictly increase.
        """
        if overlap == 0 or len(spans) < 2:
            return spans
        result = [spans[0]]
        for previous, current in zip(spans, spans[1:]):
            start = max(previous.start_offset, previous.end_offset - overlap)
            result.append(TextSpan(
                content=text[start:current.end_offset],
                start_offset=start,
                end_offset=current.end_offset,
            ))
        return result
