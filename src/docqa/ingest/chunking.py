"""Chunking utilities for breaking page text into overlapping passages."""
from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .models import ExtractedDocument, Passage

LOGGER = logging.getLogger(__name__)

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*|[.!?]+")
_ALL_CAPS_RE = re.compile(r"^[A-Z][A-Z\s]+$")
_NUMBERED_RE = re.compile(r"^\d+\.\s")
_ROMAN_RE = re.compile(r"^[IVX]+\.\s")

_MAX_SECTION_CHARS = 100
_MAX_COLON_SECTION_CHARS = 50

Span = Tuple[int, int]


@dataclass(slots=True)
class ChunkingConfig:
    max_chars: int = 1000
    overlap_chars: int = 200
    min_chars: int = 100

    def __post_init__(self) -> None:
        if self.max_chars <= 0:
            raise ValueError("max_chars must be a positive integer")
        if self.overlap_chars < 0:
            raise ValueError("overlap_chars must be a non-negative integer")
        if self.min_chars < 0:
            raise ValueError("min_chars must be a non-negative integer")
        if self.min_chars >= self.max_chars:
            raise ValueError("min_chars must be smaller than max_chars")
        if self.overlap_chars >= self.max_chars:
            raise ValueError("overlap_chars must be smaller than max_chars")


def split_sentences(text: str) -> List[Span]:
    """Return ``(start, end)`` spans of sentence-like units in *text*.

    Units end with one or more of ``.``, ``!`` or ``?`` (kept in the span) or
    at the end of the text. Spans exclude surrounding whitespace and empty
    fragments are dropped.
    """

    spans: List[Span] = []
    for match in _SENTENCE_RE.finditer(text):
        start, end = match.span()
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        if end > start:
            spans.append((start, end))
    return spans


def detect_section(text: str) -> Optional[str]:
    """Return the first line of *text* when it looks like a section header."""

    first_line = text.split("\n", 1)[0].strip()
    if not first_line or len(first_line) >= _MAX_SECTION_CHARS:
        return None
    if (
        _ALL_CAPS_RE.match(first_line)
        or _NUMBERED_RE.match(first_line)
        or _ROMAN_RE.match(first_line)
        or (len(first_line) < _MAX_COLON_SECTION_CHARS and first_line.endswith(":"))
    ):
        return first_line
    return None


class PassageChunker:
    """Split page text into sentence-aligned passages with overlapping context."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk_document(self, document: ExtractedDocument) -> List[Passage]:
        passages: List[Passage] = []
        for page in document.pages:
            passages.extend(
                self.chunk_page(page.text, page.page_number, document.document_id, document.name)
            )
        LOGGER.debug(
            "Chunked %s pages of %s into %s passages",
            len(document.pages),
            document.document_id,
            len(passages),
        )
        return passages

    def chunk_page(
        self,
        text: str,
        page_number: int,
        document_id: str,
        document_name: str,
    ) -> List[Passage]:
        passages: List[Passage] = []
        for chunk_index, (start, end, core_start) in enumerate(self._chunk_spans(text)):
            chunk_text = text[start:end]
            passages.append(
                Passage(
                    id=f"{document_id}-page{page_number}-chunk{chunk_index}",
                    document_id=document_id,
                    document_name=document_name,
                    page_number=page_number,
                    chunk_index=chunk_index,
                    text=chunk_text,
                    char_start=start,
                    char_end=end,
                    word_count=len(chunk_text.split()),
                    overlap_chars=core_start - start,
                    section=detect_section(chunk_text),
                )
            )
        return passages

    def _chunk_spans(self, text: str) -> Iterable[Tuple[int, int, int]]:
        sentences = split_sentences(text)
        if not sentences:
            return []

        max_chars = self.config.max_chars
        min_chars = self.config.min_chars
        sentence_starts = [start for start, _ in sentences]

        spans: List[Tuple[int, int, int]] = []
        buffer_start, buffer_end = sentences[0]
        core_start = buffer_start
        for sentence_start, sentence_end in sentences[1:]:
            if sentence_end - buffer_start > max_chars and buffer_end - buffer_start > min_chars:
                spans.append((buffer_start, buffer_end, core_start))
                overlap_start = self._overlap_start(text, sentence_starts, buffer_start, buffer_end)
                buffer_start = sentence_start if overlap_start is None else overlap_start
                core_start = sentence_start
            buffer_end = sentence_end
        spans.append((buffer_start, buffer_end, core_start))
        return spans

    def _overlap_start(
        self,
        text: str,
        sentence_starts: List[int],
        buffer_start: int,
        buffer_end: int,
    ) -> Optional[int]:
        overlap_chars = self.config.overlap_chars
        if overlap_chars == 0:
            return None
        if buffer_end - buffer_start <= overlap_chars:
            return buffer_start

        window_start = buffer_end - overlap_chars
        position = bisect.bisect_left(sentence_starts, window_start)
        if position < len(sentence_starts) and sentence_starts[position] < buffer_end:
            return sentence_starts[position]

        # No sentence starts inside the window: fall back to the raw tail.
        while window_start < buffer_end and text[window_start].isspace():
            window_start += 1
        return window_start


__all__ = ["ChunkingConfig", "PassageChunker", "detect_section", "split_sentences"]
