"""Data models used by the ingestion pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SourceDocument:
    """Raw document bytes as handed over by the storage layer."""

    id: str
    name: str
    data: bytes
    mime_type: Optional[str] = None
    uploaded_at: datetime = field(default_factory=_utcnow)

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(slots=True)
class PageContent:
    """Represents text extracted from a page in the source document."""

    page_number: int
    text: str


@dataclass(slots=True)
class ExtractedDocument:
    """Page-ordered text of one document."""

    document_id: str
    name: str
    pages: List[PageContent]
    total_pages: int
    language: Optional[str] = None
    extracted_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class Passage:
    """Bounded span of page text; the unit of retrieval."""

    id: str
    document_id: str
    document_name: str
    page_number: int
    chunk_index: int
    text: str
    char_start: int
    char_end: int
    word_count: int
    overlap_chars: int = 0
    section: Optional[str] = None

    @property
    def core_text(self) -> str:
        """Text that is not repeated from the previous passage on the page."""

        return self.text[self.overlap_chars :]


@dataclass(frozen=True, slots=True)
class EmbeddedPassage:
    """A passage paired with its embedding vector."""

    passage: Passage
    embedding: List[float]
    embedding_model: str
    embedded_at: datetime = field(default_factory=_utcnow)

    @property
    def id(self) -> str:
        return self.passage.id

    @property
    def document_id(self) -> str:
        return self.passage.document_id


__all__ = [
    "EmbeddedPassage",
    "ExtractedDocument",
    "PageContent",
    "Passage",
    "SourceDocument",
]
