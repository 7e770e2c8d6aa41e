"""High level ingestion pipeline entry point."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from docqa.errors import ExtractionError

from .chunking import ChunkingConfig, PassageChunker
from .extractors import DocxExtractor, PDFExtractor, TextExtractor
from .format_detection import DocumentFormat, DocumentFormatDetector
from .language import LanguageDetector
from .models import ExtractedDocument, PageContent, Passage, SourceDocument
from .normalization import normalize_text

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestPipelineConfig:
    chunk_chars: int = 1000
    overlap_chars: int = 200
    min_chunk_chars: int = 100
    detect_language: bool = True


@dataclass(slots=True)
class PipelineResult:
    """Extraction and chunking output for one document."""

    document: ExtractedDocument
    passages: List[Passage]
    duration_seconds: float


class IngestPipeline:
    """Pipeline orchestrating document extraction, normalisation and chunking."""

    def __init__(self, config: Optional[IngestPipelineConfig] = None) -> None:
        self.config = config or IngestPipelineConfig()
        self.pdf_extractor = PDFExtractor()
        self.docx_extractor = DocxExtractor()
        self.text_extractor = TextExtractor()
        self.chunker = PassageChunker(
            ChunkingConfig(
                max_chars=self.config.chunk_chars,
                overlap_chars=self.config.overlap_chars,
                min_chars=self.config.min_chunk_chars,
            )
        )
        self.language_detector = LanguageDetector()

    def extract(self, source: SourceDocument) -> ExtractedDocument:
        """Turn raw document bytes into normalised, page-ordered text."""

        if not source.data:
            raise ExtractionError(f"Document {source.name} is empty", document_name=source.name)

        document_format = DocumentFormatDetector.detect(source.name, source.mime_type)
        LOGGER.info("Extracting %s (%s) with id %s", source.name, document_format.value, source.id)

        pages = self._extract_pages(source, document_format)
        normalized_pages = [
            PageContent(page_number=page.page_number, text=normalize_text(page.text)) for page in pages
        ]
        language = None
        if self.config.detect_language:
            language = self.language_detector.detect("\n".join(page.text for page in normalized_pages))
        return ExtractedDocument(
            document_id=source.id,
            name=source.name,
            pages=normalized_pages,
            total_pages=len(normalized_pages),
            language=language,
        )

    def run(self, source: SourceDocument) -> PipelineResult:
        """Extract and chunk *source* into embedding-ready passages."""

        started = time.perf_counter()
        document = self.extract(source)
        passages = self.chunker.chunk_document(document)
        LOGGER.info(
            "Generated %s passages from %s pages of %s",
            len(passages),
            document.total_pages,
            source.name,
        )
        return PipelineResult(
            document=document,
            passages=passages,
            duration_seconds=time.perf_counter() - started,
        )

    def _extract_pages(self, source: SourceDocument, document_format: DocumentFormat) -> List[PageContent]:
        if document_format is DocumentFormat.PDF:
            return self.pdf_extractor.extract(source.data, source.name)
        if document_format is DocumentFormat.DOCX:
            return self.docx_extractor.extract(source.data, source.name)
        return self.text_extractor.extract(source.data, source.name)


__all__ = ["IngestPipeline", "IngestPipelineConfig", "PipelineResult"]
