from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from docqa.config import Settings
from docqa.embeddings import BaseEmbeddingClient, merge_usage
from docqa.errors import RemoteServiceError
from docqa.ingest.models import SourceDocument
from docqa.llm_provider import BaseCompletionClient
from docqa.logging_config import AUDIT_LOGGER_NAME
from docqa.prompt_builder import build_prompt, format_context
from docqa.question_splitter import split_questions
from docqa.services.scheduler import IngestionScheduler, IngestReport
from docqa.telemetry import (
    emit_exception,
    emit_inference_request,
    emit_inference_result,
    emit_prompt_event,
    emit_retriever_event,
)
from docqa.vectorstore import IndexStats, PassageIndex, SearchResult

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

APOLOGY_MESSAGE = "Sorry, I encountered an error while processing your question. Please try again."
SECTION_SEPARATOR = "\n\n---\n\n"


@dataclass(slots=True)
class AnswerSource:
    """A retrieved passage cited by an answer."""

    document_id: str
    document_name: str
    page_number: int
    text: str
    similarity: float
    passage_id: str


@dataclass(slots=True)
class NoResultsDiagnostics:
    documents_requested: int
    documents_indexed: int
    total_passages: int


@dataclass(slots=True)
class AnswerMetadata:
    processing_time_ms: float
    chunks_used: int
    documents_queried: List[str]
    sub_questions: List[str] = field(default_factory=list)
    diagnostics: Optional[NoResultsDiagnostics] = None
    warnings: List[str] = field(default_factory=list)
    usage: Dict[str, Dict[str, int]] = field(default_factory=dict)


@dataclass(slots=True)
class Answer:
    """Structured result returned from :meth:`RAGService.query`."""

    answer: str
    sources: List[AnswerSource]
    metadata: AnswerMetadata


def no_results_message(diagnostics: NoResultsDiagnostics) -> str:
    return (
        "I couldn't find relevant information in the selected documents to answer your question.\n\n"
        "Diagnostics:\n"
        f"- Documents requested: {diagnostics.documents_requested}\n"
        f"- Documents indexed: {diagnostics.documents_indexed}\n"
        f"- Total passages available: {diagnostics.total_passages}\n\n"
        "Please make sure the documents are uploaded and processed first."
    )


class RAGService:
    """Answer questions from the passages of a selected set of documents."""

    def __init__(
        self,
        index: PassageIndex,
        embedder: BaseEmbeddingClient,
        completion: BaseCompletionClient,
        scheduler: IngestionScheduler,
        settings: Settings | None = None,
    ) -> None:
        self.index = index
        self.embedder = embedder
        self.completion = completion
        self.scheduler = scheduler
        self.settings = settings or Settings()

    async def ask(
        self,
        question: str,
        documents: Sequence[SourceDocument],
        *,
        document_ids: Optional[Iterable[str]] = None,
    ) -> Answer:
        """Ingest any unprocessed *documents*, then answer *question* from them.

        *document_ids* defaults to the ids of *documents*; pass it to query a
        selection that also names documents not available for ingestion.
        """

        report = await self.scheduler.ensure_processed(documents)
        if document_ids is None:
            document_ids = [document.id for document in documents]
        answer = await self.query(question, document_ids)
        answer.metadata.warnings.extend(report.warnings)
        return answer

    async def query(self, question: str, document_ids: Iterable[str]) -> Answer:
        """Answer *question* using only passages of *document_ids*.

        Raises :class:`RemoteServiceError` when the embedding or completion
        service fails; the index is left untouched in that case.
        """

        if question is None or not question.strip():
            raise ValueError("question must not be empty")

        req_id = uuid.uuid4().hex
        selected = list(dict.fromkeys(document_ids))
        sub_questions = split_questions(question)
        LOGGER.info(
            "Query %s over %s document(s) with %s sub-question(s)",
            req_id,
            len(selected),
            len(sub_questions),
        )

        if len(sub_questions) == 1:
            answer = await self._answer_single(sub_questions[0], selected, self.settings.max_chunks, req_id)
        else:
            top_k = math.ceil(self.settings.max_chunks / len(sub_questions))
            parts = [
                await self._answer_single(sub_question, selected, top_k, req_id)
                for sub_question in sub_questions
            ]
            answer = self._combine(sub_questions, parts, selected)

        AUDIT_LOGGER.info(
            {
                "event": "query",
                "req_id": req_id,
                "question": question,
                "document_ids": selected,
                "sources": [source.passage_id for source in answer.sources],
            }
        )
        return answer

    def remove_document(self, document_id: str) -> int:
        removed = self.index.remove_document(document_id)
        LOGGER.info("Removed %s passages of document %s", removed, document_id)
        return removed

    def stats(self) -> IndexStats:
        return self.index.stats()

    async def _answer_single(
        self,
        question: str,
        document_ids: List[str],
        top_k: int,
        req_id: str,
    ) -> Answer:
        started = time.perf_counter()
        results, embedding_usage = await self._retrieve(question, document_ids, top_k, req_id)
        if not results:
            answer = self._no_results_answer(question, document_ids, started)
            answer.metadata.usage = {"embedding": embedding_usage, "completion": {}}
            return answer

        prompt = build_prompt(question, results)
        emit_prompt_event(
            req_id=req_id,
            sources=[result.passage.id for result in results],
            context_chars=len(format_context(results)),
            prompt_len=len(prompt),
        )
        emit_inference_request(
            req_id=req_id,
            model=self.completion.model_name,
            prompt_preview=prompt,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )

        inference_started = time.perf_counter()
        try:
            completion = await self.completion.complete(
                prompt,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
            )
        except RemoteServiceError as error:
            LOGGER.error("Completion failed for query %s: %s", req_id, error)
            emit_exception(module=f"{__name__}.completion", error=error, req_id=req_id)
            raise

        emit_inference_result(
            req_id=req_id,
            duration_ms=(time.perf_counter() - inference_started) * 1000.0,
            model_used=self.completion.model_name,
            answer_preview=completion.text,
            fallback=self.completion.is_stub,
        )

        return Answer(
            answer=completion.text,
            sources=[self._to_source(result) for result in results],
            metadata=AnswerMetadata(
                processing_time_ms=(time.perf_counter() - started) * 1000.0,
                chunks_used=len(results),
                documents_queried=list(document_ids),
                sub_questions=[question],
                usage={"embedding": embedding_usage, "completion": dict(completion.usage)},
            ),
        )

    async def _retrieve(
        self,
        question: str,
        document_ids: List[str],
        top_k: int,
        req_id: str,
    ) -> Tuple[List[SearchResult], Dict[str, int]]:
        started = time.perf_counter()
        results: List[SearchResult] = []
        usage: Dict[str, int] = {}
        if any(self.index.contains(document_id) for document_id in document_ids):
            try:
                vectors, usage = await self.embedder.embed_with_usage([question])
            except RemoteServiceError as error:
                LOGGER.error("Embedding the question failed for query %s: %s", req_id, error)
                emit_exception(module=f"{__name__}.embeddings", error=error, req_id=req_id)
                raise
            results = self.index.search(vectors[0], document_ids, top_k=top_k)

        emit_retriever_event(
            req_id=req_id,
            query=question,
            top_k=top_k,
            document_ids=document_ids,
            results=[
                {
                    "id": result.passage.id,
                    "page": result.passage.page_number,
                    "similarity": round(result.similarity, 4),
                }
                for result in results
            ],
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return results, dict(usage)

    def _no_results_answer(self, question: str, document_ids: List[str], started: float) -> Answer:
        stats = self.index.stats()
        diagnostics = NoResultsDiagnostics(
            documents_requested=len(document_ids),
            documents_indexed=stats.total_documents,
            total_passages=stats.total_passages,
        )
        LOGGER.info(
            "No passages found; requested=%s indexed=%s passages=%s",
            document_ids,
            list(stats.passages_per_document),
            stats.total_passages,
        )
        return Answer(
            answer=no_results_message(diagnostics),
            sources=[],
            metadata=AnswerMetadata(
                processing_time_ms=(time.perf_counter() - started) * 1000.0,
                chunks_used=0,
                documents_queried=list(document_ids),
                sub_questions=[question],
                diagnostics=diagnostics,
            ),
        )

    @staticmethod
    def _combine(sub_questions: List[str], parts: List[Answer], document_ids: List[str]) -> Answer:
        sections = [
            f"**Question {number}: {sub_question}**\n\n{part.answer}"
            for number, (sub_question, part) in enumerate(zip(sub_questions, parts), start=1)
        ]
        diagnostics = next(
            (part.metadata.diagnostics for part in parts if part.metadata.diagnostics is not None),
            None,
        )
        usage = {
            kind: merge_usage(*(part.metadata.usage.get(kind, {}) for part in parts))
            for kind in ("embedding", "completion")
        }
        return Answer(
            answer=SECTION_SEPARATOR.join(sections),
            sources=[source for part in parts for source in part.sources],
            metadata=AnswerMetadata(
                processing_time_ms=sum(part.metadata.processing_time_ms for part in parts),
                chunks_used=sum(part.metadata.chunks_used for part in parts),
                documents_queried=list(document_ids),
                sub_questions=list(sub_questions),
                diagnostics=diagnostics,
                usage=usage,
            ),
        )

    @staticmethod
    def _to_source(result: SearchResult) -> AnswerSource:
        passage = result.passage
        return AnswerSource(
            document_id=passage.document_id,
            document_name=passage.document_name,
            page_number=passage.page_number,
            text=passage.text,
            similarity=result.similarity,
            passage_id=passage.id,
        )


__all__ = [
    "APOLOGY_MESSAGE",
    "Answer",
    "AnswerMetadata",
    "AnswerSource",
    "IngestReport",
    "NoResultsDiagnostics",
    "RAGService",
    "no_results_message",
]
