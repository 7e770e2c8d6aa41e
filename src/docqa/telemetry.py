"""Centralised observability helpers for structured lifecycle logging."""

from __future__ import annotations

import logging
import os
import platform
import sys
import traceback
from typing import Any, Iterable, Optional

LOGGER = logging.getLogger("docqa.telemetry")

_ENV_KEYS_TO_LOG: tuple[str, ...] = (
    "DOCQA_API_BASE_URL",
    "DOCQA_EMBEDDING_MODEL",
    "DOCQA_COMPLETION_MODEL",
    "DOCQA_MAX_CHUNKS",
    "DOCQA_TEMPERATURE",
    "DOCQA_CHUNK_SIZE",
    "DOCQA_CHUNK_OVERLAP",
    "DOCQA_INGEST_BATCH_SIZE",
    "DOCQA_INGEST_BATCH_DELAY",
    "DOCQA_SELECTION_DEBOUNCE",
)


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    req_id: str | None = None,
    document_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if req_id:
        event["req_id"] = req_id
    if document_id:
        event["document_id"] = document_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_app_startup_event(*, remote_enabled: bool) -> None:
    env_values = {key: os.getenv(key) for key in _ENV_KEYS_TO_LOG if os.getenv(key) is not None}
    details = {
        "env": env_values,
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "remote_enabled": remote_enabled,
    }
    log_event(LOGGER, "app.startup", details=details, pid=os.getpid())


def emit_ingest_event(
    step: str,
    *,
    document_id: str,
    document_name: str,
    size_bytes: int | None = None,
    duration_ms: float | None = None,
    language: str | None = None,
    pages: int | None = None,
    passages: int | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "document": document_name,
        "size_bytes": size_bytes,
        "language": language,
        "pages": pages,
        "passages": passages,
    }
    level = "warning" if error else "info"
    log_event(
        LOGGER,
        step,
        level=level,
        document_id=document_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


def emit_embeddings_event(
    *, model: str, count: int, batches: int, duration_ms: float, errors: list[str] | None = None
) -> None:
    details = {
        "model": model,
        "count": count,
        "batches": batches,
        "errors": errors or [],
        "per_item_ms": round(duration_ms / count, 3) if count else None,
    }
    log_event(LOGGER, "embeddings.compute", duration_ms=duration_ms, details=details)


def emit_index_event(
    step: str,
    *,
    document_id: str,
    count: int,
    total_passages: int,
    total_documents: int,
) -> None:
    details = {
        "count": count,
        "total_passages": total_passages,
        "total_documents": total_documents,
    }
    log_event(LOGGER, step, document_id=document_id, details=details)


def emit_retriever_event(
    *,
    req_id: str,
    query: str,
    top_k: int,
    document_ids: Iterable[str],
    results: list[dict[str, Any]],
    duration_ms: float,
) -> None:
    details = {
        "query_preview": query[:120],
        "top_k": top_k,
        "document_ids": list(document_ids),
        "results": results,
    }
    log_event(LOGGER, "retriever.search", req_id=req_id, duration_ms=duration_ms, details=details)


def emit_prompt_event(
    *,
    req_id: str,
    sources: Iterable[str],
    context_chars: int,
    prompt_len: int,
) -> None:
    details = {
        "sources": list(sources),
        "context_chars": context_chars,
        "prompt_len": prompt_len,
    }
    log_event(LOGGER, "prompt.compose", req_id=req_id, details=details)


def emit_inference_request(
    *,
    req_id: str,
    model: str,
    prompt_preview: str,
    temperature: float,
    max_tokens: int | None,
) -> None:
    details = {
        "model": model,
        "prompt_preview": prompt_preview[:120],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    log_event(LOGGER, "inference.request", req_id=req_id, details=details)


def emit_inference_result(
    *,
    req_id: str,
    duration_ms: float,
    model_used: str,
    answer_preview: str,
    fallback: bool,
) -> None:
    details = {
        "model_used": model_used,
        "answer_preview": answer_preview[:120],
        "fallback": fallback,
    }
    log_event(LOGGER, "inference.result", req_id=req_id, duration_ms=duration_ms, details=details)


def emit_exception(
    *,
    module: str,
    error: BaseException,
    req_id: str | None = None,
    document_id: str | None = None,
    suggestion: str | None = None,
) -> None:
    details = {"module": module}
    if suggestion:
        details["suggestion"] = suggestion
    log_event(
        LOGGER,
        "exception",
        level="error",
        req_id=req_id,
        document_id=document_id,
        details=details,
        exc=error,
    )


__all__ = [
    "emit_app_startup_event",
    "emit_embeddings_event",
    "emit_exception",
    "emit_index_event",
    "emit_inference_request",
    "emit_inference_result",
    "emit_ingest_event",
    "emit_prompt_event",
    "emit_retriever_event",
    "log_event",
]
