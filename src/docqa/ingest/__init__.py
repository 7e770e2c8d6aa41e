"""Document ingestion: extraction, normalisation and chunking."""

from .chunking import ChunkingConfig, PassageChunker, detect_section, split_sentences
from .models import EmbeddedPassage, ExtractedDocument, PageContent, Passage, SourceDocument
from .pipeline import IngestPipeline, IngestPipelineConfig, PipelineResult

__all__ = [
    "ChunkingConfig",
    "EmbeddedPassage",
    "ExtractedDocument",
    "IngestPipeline",
    "IngestPipelineConfig",
    "PageContent",
    "Passage",
    "PassageChunker",
    "PipelineResult",
    "SourceDocument",
    "detect_section",
    "split_sentences",
]
