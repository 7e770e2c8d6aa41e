"""Service layer: ingestion scheduling and question answering."""

from .rag import APOLOGY_MESSAGE, Answer, AnswerMetadata, AnswerSource, NoResultsDiagnostics, RAGService
from .scheduler import IngestFailure, IngestionPhase, IngestionScheduler, IngestionStatus, IngestReport

__all__ = [
    "APOLOGY_MESSAGE",
    "Answer",
    "AnswerMetadata",
    "AnswerSource",
    "IngestFailure",
    "IngestReport",
    "IngestionPhase",
    "IngestionScheduler",
    "IngestionStatus",
    "NoResultsDiagnostics",
    "RAGService",
]
