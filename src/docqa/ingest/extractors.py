"""Extractors for supported document types."""
from __future__ import annotations

import io
import logging
from typing import List

from docx import Document as load_docx
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from docqa.errors import ExtractionError

from .models import PageContent

LOGGER = logging.getLogger(__name__)

PAGE_BREAK = "\f"


class PDFExtractor:
    """Extract per-page text from PDF documents."""

    def extract(self, data: bytes, name: str | None = None) -> List[PageContent]:
        try:
            reader = PdfReader(io.BytesIO(data))
            if reader.is_encrypted:
                raise ExtractionError("PDF is encrypted", document_name=name)
            raw_pages = list(reader.pages)
        except ExtractionError:
            raise
        except (PdfReadError, ValueError, KeyError, TypeError, OSError) as error:
            raise ExtractionError(
                f"Failed to read PDF {name or '<unnamed>'}: {error}",
                document_name=name,
                cause=error,
            ) from error

        if not raw_pages:
            raise ExtractionError("PDF contains no pages", document_name=name)

        pages: List[PageContent] = []
        for index, page in enumerate(raw_pages, start=1):
            try:
                text = page.extract_text() or ""
            except Exception as error:  # pragma: no cover - depends on PDF content streams
                LOGGER.warning("Failed to extract text from PDF page %s: %s", index, error)
                text = ""
            pages.append(PageContent(page_number=index, text=text))
        return pages


class DocxExtractor:
    """Extract text from Microsoft Word documents."""

    def extract(self, data: bytes, name: str | None = None) -> List[PageContent]:
        try:
            document = load_docx(io.BytesIO(data))
        except Exception as error:
            raise ExtractionError(
                f"Failed to parse DOCX {name or '<unnamed>'}: {error}",
                document_name=name,
                cause=error,
            ) from error

        text_parts = [paragraph.text for paragraph in document.paragraphs if paragraph.text]
        return [PageContent(page_number=1, text="\n\n".join(text_parts))]


class TextExtractor:
    """Extract text from plaintext documents; form feeds separate pages."""

    def extract(self, data: bytes, name: str | None = None) -> List[PageContent]:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError:
            LOGGER.warning("%s is not valid UTF-8; decoding as latin-1", name or "document")
            text = data.decode("latin-1")

        return [
            PageContent(page_number=index, text=page_text)
            for index, page_text in enumerate(text.split(PAGE_BREAK), start=1)
        ]


__all__ = ["DocxExtractor", "PAGE_BREAK", "PDFExtractor", "TextExtractor"]
