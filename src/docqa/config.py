"""Runtime settings sourced from environment variables."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.mistral.ai/v1"
MAX_EMBEDDING_BATCH_SIZE = 100


def _str_from_env(*names: str, default: str | None = None) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip():
            return value.strip()
    return default


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


@dataclass(frozen=True, slots=True)
class Settings:
    """Configuration consumed by the ingestion and answering pipeline."""

    api_key: str | None = None
    api_base_url: str = DEFAULT_API_BASE_URL
    embedding_model: str = "mistral-embed"
    completion_model: str = "mistral-small-latest"
    max_chunks: int = 5
    temperature: float = 0.7
    max_tokens: int = 1000
    chunk_size: int = 1000
    chunk_overlap: int = 200
    chunk_min_size: int = 100
    embedding_batch_size: int = MAX_EMBEDDING_BATCH_SIZE
    embedding_batch_delay: float = 0.1
    ingest_batch_size: int = 3
    ingest_batch_delay: float = 0.5
    selection_debounce: float = 1.0
    request_timeout: float = 30.0
    audit_log_path: str | None = "logs/ingest_audit.log"

    def __post_init__(self) -> None:
        if self.max_chunks < 1:
            raise ValueError("max_chunks must be at least 1")
        if self.ingest_batch_size < 1:
            raise ValueError("ingest_batch_size must be at least 1")
        if not 1 <= self.embedding_batch_size <= MAX_EMBEDDING_BATCH_SIZE:
            clamped = min(max(self.embedding_batch_size, 1), MAX_EMBEDDING_BATCH_SIZE)
            LOGGER.warning(
                "embedding_batch_size %s is out of range; clamping to %s",
                self.embedding_batch_size,
                clamped,
            )
            object.__setattr__(self, "embedding_batch_size", clamped)

    @property
    def remote_enabled(self) -> bool:
        """Whether a credential for the remote language service is configured."""

        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        audit_log = os.getenv("DOCQA_AUDIT_LOG", "logs/ingest_audit.log").strip()
        return cls(
            api_key=_str_from_env("DOCQA_API_KEY", "MISTRAL_API_KEY"),
            api_base_url=_str_from_env("DOCQA_API_BASE_URL", default=DEFAULT_API_BASE_URL),
            embedding_model=_str_from_env("DOCQA_EMBEDDING_MODEL", default="mistral-embed"),
            completion_model=_str_from_env("DOCQA_COMPLETION_MODEL", default="mistral-small-latest"),
            max_chunks=_int_from_env("DOCQA_MAX_CHUNKS", 5),
            temperature=_float_from_env("DOCQA_TEMPERATURE", 0.7),
            max_tokens=_int_from_env("DOCQA_MAX_TOKENS", 1000),
            chunk_size=_int_from_env("DOCQA_CHUNK_SIZE", 1000),
            chunk_overlap=_int_from_env("DOCQA_CHUNK_OVERLAP", 200),
            chunk_min_size=_int_from_env("DOCQA_CHUNK_MIN_SIZE", 100),
            embedding_batch_size=_int_from_env("DOCQA_EMBEDDING_BATCH_SIZE", MAX_EMBEDDING_BATCH_SIZE),
            embedding_batch_delay=_float_from_env("DOCQA_EMBEDDING_BATCH_DELAY", 0.1),
            ingest_batch_size=_int_from_env("DOCQA_INGEST_BATCH_SIZE", 3),
            ingest_batch_delay=_float_from_env("DOCQA_INGEST_BATCH_DELAY", 0.5),
            selection_debounce=_float_from_env("DOCQA_SELECTION_DEBOUNCE", 1.0),
            request_timeout=_float_from_env("DOCQA_REQUEST_TIMEOUT", 30.0),
            audit_log_path=audit_log or None,
        )


__all__ = ["Settings", "DEFAULT_API_BASE_URL", "MAX_EMBEDDING_BATCH_SIZE"]
