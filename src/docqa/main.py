"""FastAPI application factory.

Run with ``uvicorn --factory docqa.main:create_app``.
"""
from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from docqa.api.rag import router as rag_router
from docqa.config import Settings
from docqa.embeddings import get_embedding_client
from docqa.ingest.pipeline import IngestPipeline, IngestPipelineConfig
from docqa.llm_provider import get_completion_client
from docqa.logging_config import configure_logging
from docqa.services.rag import RAGService
from docqa.services.scheduler import IngestionScheduler
from docqa.storage import DocumentStore
from docqa.telemetry import emit_app_startup_event
from docqa.vectorstore import PassageIndex

LOGGER = logging.getLogger(__name__)


def build_rag_service(settings: Settings) -> RAGService:
    """Wire the index, clients, pipeline and scheduler described by *settings*."""

    index = PassageIndex()
    embedder = get_embedding_client(settings)
    pipeline = IngestPipeline(
        IngestPipelineConfig(
            chunk_chars=settings.chunk_size,
            overlap_chars=settings.chunk_overlap,
            min_chunk_chars=settings.chunk_min_size,
        )
    )
    scheduler = IngestionScheduler(
        pipeline,
        embedder,
        index,
        batch_size=settings.ingest_batch_size,
        batch_delay=settings.ingest_batch_delay,
        debounce=settings.selection_debounce,
    )
    return RAGService(
        index,
        embedder,
        get_completion_client(settings),
        scheduler,
        settings,
    )


def create_app(
    settings: Settings | None = None,
    *,
    rag_service: RAGService | None = None,
    store: DocumentStore | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(os.getenv("DOCQA_LOG_LEVEL", "INFO"), audit_log_path=settings.audit_log_path)

    app = FastAPI(title="Document Q&A API")
    app.state.settings = settings
    app.state.rag_service = rag_service or build_rag_service(settings)
    app.state.document_store = store or DocumentStore()
    app.include_router(rag_router)

    @app.on_event("startup")
    async def _startup() -> None:
        emit_app_startup_event(remote_enabled=settings.remote_enabled)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        service: RAGService = app.state.rag_service
        await service.scheduler.wait_idle()
        await service.embedder.aclose()
        await service.completion.aclose()

    @app.get("/", response_class=PlainTextResponse)
    def read_root() -> str:
        """Healthcheck endpoint for the service."""
        return "ok"

    @app.get("/healthz")
    def healthcheck() -> dict[str, object]:
        """Liveness probe reporting whether the remote language service is configured."""
        service: RAGService = app.state.rag_service
        return {
            "status": "ok",
            "mode": "remote" if settings.remote_enabled else "offline",
            "embedding_model": service.embedder.model_name,
            "completion_model": service.completion.model_name,
        }

    LOGGER.info("Application created (remote_enabled=%s)", settings.remote_enabled)
    return app


__all__ = ["build_rag_service", "create_app"]
