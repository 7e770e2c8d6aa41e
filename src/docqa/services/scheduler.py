"""Batched, de-duplicated ingestion of documents into the passage index."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from docqa.embeddings import BaseEmbeddingClient
from docqa.ingest.models import SourceDocument
from docqa.ingest.pipeline import IngestPipeline
from docqa.logging_config import AUDIT_LOGGER_NAME
from docqa.telemetry import emit_exception, emit_ingest_event
from docqa.vectorstore import PassageIndex

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)


class IngestionPhase(str, Enum):
    STARTED = "started"
    DOCUMENT_DONE = "document_done"
    DOCUMENT_FAILED = "document_failed"
    BATCH_DONE = "batch_done"
    FINISHED = "finished"


@dataclass(frozen=True, slots=True)
class IngestionStatus:
    """Progress event delivered to scheduler subscribers."""

    phase: IngestionPhase
    processed: int
    total: int
    document_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class IngestFailure:
    document_id: str
    document_name: str
    error_type: str
    message: str


@dataclass(slots=True)
class IngestReport:
    """Aggregate outcome of one :meth:`IngestionScheduler.ensure_processed` call."""

    processed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: List[IngestFailure] = field(default_factory=list)
    discarded: List[str] = field(default_factory=list)

    @property
    def warnings(self) -> List[str]:
        return [f"{failure.document_name}: {failure.message}" for failure in self.failures]


@dataclass(frozen=True, slots=True)
class _DocumentOutcome:
    document_id: str
    indexed: bool
    failure: Optional[IngestFailure] = None


StatusListener = Callable[[IngestionStatus], None]


class IngestionScheduler:
    """Make sure selected documents are in the index before they are queried.

    Documents already indexed are skipped. The rest are ingested in batches
    of ``batch_size`` concurrent documents with a pause of ``batch_delay``
    seconds between batches. One document failing never aborts its siblings.
    """

    def __init__(
        self,
        pipeline: IngestPipeline,
        embedder: BaseEmbeddingClient,
        index: PassageIndex,
        *,
        batch_size: int = 3,
        batch_delay: float = 0.5,
        debounce: float = 1.0,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.pipeline = pipeline
        self.embedder = embedder
        self.index = index
        self.batch_size = batch_size
        self.batch_delay = max(batch_delay, 0.0)
        self.debounce = max(debounce, 0.0)
        self._in_flight: Dict[str, asyncio.Task[_DocumentOutcome]] = {}
        self._active_runs = 0
        self._listeners: List[StatusListener] = []
        self._debounce_timer: Optional[asyncio.Task[IngestReport]] = None
        self._scheduled: Optional[asyncio.Task[IngestReport]] = None
        self.last_report: Optional[IngestReport] = None
        self.last_status: Optional[IngestionStatus] = None

    @property
    def is_ingesting(self) -> bool:
        return self._active_runs > 0 or any(not task.done() for task in self._in_flight.values())

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register *listener* for progress events; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def ensure_processed(self, documents: Iterable[SourceDocument]) -> IngestReport:
        """Ingest every document of *documents* that is not indexed yet.

        Ingestion tasks are shared between concurrent callers and keep running
        when the caller that started them is cancelled.
        """

        self._active_runs += 1
        try:
            return await self._process(documents)
        finally:
            self._active_runs -= 1

    async def _process(self, documents: Iterable[SourceDocument]) -> IngestReport:
        report = IngestReport()
        unique = list({document.id: document for document in documents}.values())

        pending: List[SourceDocument] = []
        joined: List[asyncio.Task[_DocumentOutcome]] = []
        for document in unique:
            task = self._in_flight.get(document.id)
            if task is not None:
                joined.append(task)
            elif self.index.contains(document.id):
                report.skipped.append(document.id)
            else:
                pending.append(document)

        total = len(pending) + len(joined)
        if total == 0:
            self.last_report = report
            return report

        processed = 0
        self._notify(IngestionStatus(IngestionPhase.STARTED, processed, total))

        for batch_number, offset in enumerate(range(0, len(pending), self.batch_size)):
            if batch_number and self.batch_delay:
                await asyncio.sleep(self.batch_delay)
            batch = pending[offset : offset + self.batch_size]
            outcomes = await asyncio.gather(*(asyncio.shield(self._start(document)) for document in batch))
            for outcome in outcomes:
                processed += 1
                self._record(report, outcome, processed, total)
            self._notify(IngestionStatus(IngestionPhase.BATCH_DONE, processed, total))

        if joined:
            outcomes = await asyncio.gather(*(asyncio.shield(task) for task in joined))
            for outcome in outcomes:
                processed += 1
                self._record(report, outcome, processed, total)

        self._notify(IngestionStatus(IngestionPhase.FINISHED, processed, total))
        if report.failures:
            LOGGER.warning(
                "Ingestion finished with %s failure(s): %s",
                len(report.failures),
                "; ".join(report.warnings),
            )
        self.last_report = report
        return report

    def schedule(self, documents: Sequence[SourceDocument]) -> asyncio.Task[IngestReport]:
        """Ingest *documents* once the selection has been stable for ``debounce`` seconds."""

        if self._debounce_timer is not None and not self._debounce_timer.done():
            self._debounce_timer.cancel()
        task = asyncio.create_task(self._run_after_debounce(list(documents)))
        self._debounce_timer = task
        self._scheduled = task
        return task

    async def wait_idle(self) -> Optional[IngestReport]:
        """Wait for the scheduled selection and any in-flight ingestion to finish."""

        while self._scheduled is not None and not self._scheduled.done():
            task = self._scheduled
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        if self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)
        return self.last_report

    async def _run_after_debounce(self, documents: List[SourceDocument]) -> IngestReport:
        await asyncio.sleep(self.debounce)
        if self._debounce_timer is asyncio.current_task():
            # past the debounce window; later selections no longer cancel this run
            self._debounce_timer = None
        return await self.ensure_processed(documents)

    def _start(self, document: SourceDocument) -> asyncio.Task[_DocumentOutcome]:
        task = self._in_flight.get(document.id)
        if task is None:
            task = asyncio.create_task(self._ingest_one(document, self.index.generation(document.id)))
            self._in_flight[document.id] = task
            task.add_done_callback(lambda done, key=document.id: self._forget(key, done))
        return task

    def _forget(self, document_id: str, task: asyncio.Task[_DocumentOutcome]) -> None:
        if self._in_flight.get(document_id) is task:
            del self._in_flight[document_id]

    async def _ingest_one(self, document: SourceDocument, generation: int) -> _DocumentOutcome:
        started = time.perf_counter()
        emit_ingest_event(
            "ingest.document.start",
            document_id=document.id,
            document_name=document.name,
            size_bytes=document.size_bytes,
        )
        try:
            result = await asyncio.to_thread(self.pipeline.run, document)
            embedded = await self.embedder.embed_passages(result.passages)
            indexed = self.index.add_document(document.id, embedded, generation=generation)
        except Exception as error:
            LOGGER.warning("Failed to ingest %s (%s): %s", document.name, document.id, error)
            emit_ingest_event(
                "ingest.document.failed",
                document_id=document.id,
                document_name=document.name,
                size_bytes=document.size_bytes,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=error,
            )
            emit_exception(module=f"{__name__}.ingest", error=error, document_id=document.id)
            return _DocumentOutcome(
                document_id=document.id,
                indexed=False,
                failure=IngestFailure(
                    document_id=document.id,
                    document_name=document.name,
                    error_type=error.__class__.__name__,
                    message=str(error),
                ),
            )

        emit_ingest_event(
            "ingest.document.complete",
            document_id=document.id,
            document_name=document.name,
            size_bytes=document.size_bytes,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            language=result.document.language,
            pages=result.document.total_pages,
            passages=len(embedded),
        )
        if indexed:
            AUDIT_LOGGER.info(
                {
                    "event": "ingest",
                    "document_id": document.id,
                    "document_name": document.name,
                    "pages": result.document.total_pages,
                    "passage_count": len(embedded),
                }
            )
        return _DocumentOutcome(document_id=document.id, indexed=indexed)

    def _record(self, report: IngestReport, outcome: _DocumentOutcome, processed: int, total: int) -> None:
        if outcome.failure is not None:
            report.failures.append(outcome.failure)
            self._notify(
                IngestionStatus(
                    IngestionPhase.DOCUMENT_FAILED,
                    processed,
                    total,
                    document_id=outcome.document_id,
                    error=outcome.failure.message,
                )
            )
            return

        if outcome.indexed:
            report.processed.append(outcome.document_id)
        else:
            report.discarded.append(outcome.document_id)
        self._notify(
            IngestionStatus(
                IngestionPhase.DOCUMENT_DONE,
                processed,
                total,
                document_id=outcome.document_id,
            )
        )

    def _notify(self, status: IngestionStatus) -> None:
        self.last_status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                LOGGER.exception("Ingestion status listener %r failed", listener)


__all__ = [
    "IngestFailure",
    "IngestReport",
    "IngestionPhase",
    "IngestionScheduler",
    "IngestionStatus",
    "StatusListener",
]
