"""Shared fixtures: deterministic fake services and in-memory document builders."""
from __future__ import annotations

import re
from typing import List, Sequence

import pytest

from docqa.config import Settings
from docqa.embeddings import BaseEmbeddingClient
from docqa.ingest.models import SourceDocument
from docqa.ingest.pipeline import IngestPipeline, IngestPipelineConfig
from docqa.llm_provider import BaseCompletionClient, Completion
from docqa.services.rag import RAGService
from docqa.services.scheduler import IngestionScheduler
from docqa.vectorstore import PassageIndex

VOCABULARY = (
    "payment",
    "invoice",
    "termination",
    "notice",
    "warranty",
    "liability",
    "delivery",
    "price",
    "apples",
    "oranges",
    "weather",
    "rain",
)

_WORD_RE = re.compile(r"[a-z]+")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class KeywordEmbedder(BaseEmbeddingClient):
    """Counts vocabulary words; texts sharing keywords get high similarity."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []

    @property
    def model_name(self) -> str:
        return "keyword-test"

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        self.calls.append(list(texts))
        vectors: List[List[float]] = []
        for text in texts:
            words = _WORD_RE.findall(text.lower())
            vectors.append([float(sum(1 for word in words if word.startswith(term))) for term in VOCABULARY])
        return vectors


class RecordingCompletion(BaseCompletionClient):
    """Echoes a short answer and keeps the prompts it received."""

    def __init__(self, answer: str = "Grounded answer.", usage: dict[str, int] | None = None) -> None:
        self.answer = answer
        self.usage = usage or {}
        self.prompts: List[str] = []

    @property
    def model_name(self) -> str:
        return "recording-test"

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int) -> Completion:
        self.prompts.append(prompt)
        return Completion(self.answer, dict(self.usage))


def build_pdf(pages: Sequence[str]) -> bytes:
    """Return a minimal valid PDF with one line of Helvetica text per page."""

    page_count = len(pages)
    font_id = 3 + 2 * page_count
    kids = " ".join(f"{3 + 2 * index} 0 R" for index in range(page_count))
    objects: List[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {page_count} >>".encode("ascii"),
    ]
    for index, text in enumerate(pages):
        content_id = 4 + 2 * index
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Contents {content_id} 0 R /Resources << /Font << /F1 {font_id} 0 R >> >> >>"
            ).encode("ascii")
        )
        escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        stream = f"BT /F1 12 Tf 72 720 Td ({escaped}) Tj ET".encode("latin-1")
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")
    objects.append(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")

    output = bytearray(b"%PDF-1.4\n")
    offsets: List[int] = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(output))
        output += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_offset = len(output)
    output += b"xref\n0 %d\n" % (len(objects) + 1)
    output += b"0000000000 65535 f \n"
    for offset in offsets:
        output += b"%010d 00000 n \n" % offset
    output += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (
        len(objects) + 1,
        xref_offset,
    )
    return bytes(output)


def text_document(document_id: str, name: str, pages: Sequence[str]) -> SourceDocument:
    """Plain-text document whose pages are separated by form feeds."""

    return SourceDocument(
        id=document_id,
        name=name,
        data="\f".join(pages).encode("utf-8"),
        mime_type="text/plain",
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_key=None,
        ingest_batch_delay=0.0,
        selection_debounce=0.05,
        audit_log_path=None,
    )


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def completion() -> RecordingCompletion:
    return RecordingCompletion()


@pytest.fixture
def index() -> PassageIndex:
    return PassageIndex()


@pytest.fixture
def pipeline() -> IngestPipeline:
    return IngestPipeline(IngestPipelineConfig(detect_language=False))


@pytest.fixture
def scheduler(pipeline: IngestPipeline, embedder: KeywordEmbedder, index: PassageIndex) -> IngestionScheduler:
    return IngestionScheduler(pipeline, embedder, index, batch_size=3, batch_delay=0.0, debounce=0.05)


@pytest.fixture
def rag_service(
    index: PassageIndex,
    embedder: KeywordEmbedder,
    completion: RecordingCompletion,
    scheduler: IngestionScheduler,
    settings: Settings,
) -> RAGService:
    return RAGService(index, embedder, completion, scheduler, settings)
