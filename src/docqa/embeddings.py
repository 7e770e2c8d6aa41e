"""Embedding clients and vector similarity helpers."""
from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import numpy as np

from docqa.config import MAX_EMBEDDING_BATCH_SIZE, Settings
from docqa.errors import DimensionMismatchError, EmbeddingServiceError
from docqa.ingest.models import EmbeddedPassage, Passage
from docqa.telemetry import emit_embeddings_event

LOGGER = logging.getLogger(__name__)

FALLBACK_DIMENSION = 256
FALLBACK_MODEL_NAME = "hashing-fallback"

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; ``0.0`` when either has zero magnitude."""

    if len(vec_a) != len(vec_b):
        raise DimensionMismatchError(len(vec_a), len(vec_b))
    a = np.asarray(vec_a, dtype=np.float64)
    b = np.asarray(vec_b, dtype=np.float64)
    magnitude = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if magnitude == 0.0:
        return 0.0
    return float(np.clip(np.dot(a, b) / magnitude, -1.0, 1.0))


def extract_error_message(response: httpx.Response) -> str:
    """Pull a human readable message out of an upstream error response."""

    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase or "Unknown error"

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        for key in ("message", "detail"):
            if payload.get(key):
                return str(payload[key])
    return "Unknown error"


def usage_counts(payload: Any) -> Dict[str, int]:
    """Numeric token counters from the ``usage`` block of a service response."""

    usage = payload.get("usage") if isinstance(payload, dict) else None
    if not isinstance(usage, dict):
        return {}
    return {
        str(key): int(value)
        for key, value in usage.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    }


def merge_usage(*usages: Dict[str, int]) -> Dict[str, int]:
    """Sum token counters key by key."""

    merged: Dict[str, int] = {}
    for usage in usages:
        for key, value in usage.items():
            merged[key] = merged.get(key, 0) + value
    return merged


class BaseEmbeddingClient(ABC):
    """Turns text into fixed-length vectors, preserving input order."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Identifier of the embedding model."""

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Return one vector per input text, in input order."""

    async def embed_with_usage(self, texts: Sequence[str]) -> Tuple[List[List[float]], Dict[str, int]]:
        """Like :meth:`embed`, also returning the token counters billed for the call."""

        return await self.embed(texts), {}

    async def embed_one(self, text: str) -> List[float]:
        vectors = await self.embed([text])
        return vectors[0]

    async def embed_passages(self, passages: Sequence[Passage]) -> List[EmbeddedPassage]:
        if not passages:
            return []
        vectors = await self.embed([passage.text for passage in passages])
        return [
            EmbeddedPassage(passage=passage, embedding=vector, embedding_model=self.model_name)
            for passage, vector in zip(passages, vectors)
        ]

    async def aclose(self) -> None:
        return None


class MistralEmbeddingClient(BaseEmbeddingClient):
    """Client for a Mistral-compatible ``/embeddings`` HTTP endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.mistral.ai/v1",
        model: str = "mistral-embed",
        batch_size: int = MAX_EMBEDDING_BATCH_SIZE,
        batch_delay: float = 0.1,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key:
            raise ValueError("An API key is required for the embedding service")
        if not 1 <= batch_size <= MAX_EMBEDDING_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_EMBEDDING_BATCH_SIZE}")
        self._model = model
        self._batch_size = batch_size
        self._batch_delay = max(batch_delay, 0.0)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )
        self.last_model: Optional[str] = None

    @property
    def model_name(self) -> str:
        return self.last_model or self._model

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        vectors, _ = await self.embed_with_usage(texts)
        return vectors

    async def embed_with_usage(self, texts: Sequence[str]) -> Tuple[List[List[float]], Dict[str, int]]:
        if not texts:
            return [], {}

        started = time.perf_counter()
        vectors: List[List[float]] = []
        usage: Dict[str, int] = {}
        batches = 0
        try:
            for offset in range(0, len(texts), self._batch_size):
                if batches and self._batch_delay:
                    await asyncio.sleep(self._batch_delay)
                batch = list(texts[offset : offset + self._batch_size])
                batch_vectors, batch_usage = await self._embed_batch(batch)
                vectors.extend(batch_vectors)
                usage = merge_usage(usage, batch_usage)
                batches += 1
        except EmbeddingServiceError as error:
            emit_embeddings_event(
                model=self._model,
                count=len(texts),
                batches=batches,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=[str(error)],
            )
            raise

        emit_embeddings_event(
            model=self.model_name,
            count=len(texts),
            batches=batches,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return vectors, usage

    async def _embed_batch(self, batch: List[str]) -> Tuple[List[List[float]], Dict[str, int]]:
        try:
            response = await self._client.post(
                "/embeddings",
                json={"model": self._model, "input": batch},
            )
        except httpx.HTTPError as error:
            raise EmbeddingServiceError(str(error) or error.__class__.__name__, cause=error) from error

        if not response.is_success:
            raise EmbeddingServiceError(
                extract_error_message(response),
                status_code=response.status_code,
            )

        payload: Dict[str, Any] = response.json()
        items = sorted(payload.get("data") or [], key=lambda item: item.get("index", 0))
        if len(items) != len(batch):
            raise EmbeddingServiceError(
                f"expected {len(batch)} embeddings, received {len(items)}",
                status_code=response.status_code,
            )

        self.last_model = payload.get("model") or self._model
        vectors = [[float(value) for value in item["embedding"]] for item in items]
        return vectors, usage_counts(payload)

    async def aclose(self) -> None:
        await self._client.aclose()


class HashingEmbeddingClient(BaseEmbeddingClient):
    """Offline embeddings built from hashed word counts.

    Deterministic across processes, so texts sharing vocabulary score a
    higher cosine similarity. Used when no remote credential is configured.
    """

    def __init__(self, dimension: int = FALLBACK_DIMENSION) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be a positive integer")
        self.dimension = dimension

    @property
    def model_name(self) -> str:
        return FALLBACK_MODEL_NAME

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        started = time.perf_counter()
        vectors = [self._hashed_vector(str(text)) for text in texts]
        emit_embeddings_event(
            model=self.model_name,
            count=len(texts),
            batches=1,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return vectors

    def _hashed_vector(self, text: str) -> List[float]:
        vector = np.zeros(self.dimension, dtype=np.float64)
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:8], "big") % self.dimension
            sign = 1.0 if digest[8] & 1 else -1.0
            vector[bucket] += sign
        return vector.tolist()


def get_embedding_client(
    settings: Settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseEmbeddingClient:
    """Return the remote client when a credential is configured, else the offline fallback."""

    if not settings.remote_enabled:
        LOGGER.info("No API key configured; using deterministic hashing embeddings.")
        return HashingEmbeddingClient()
    return MistralEmbeddingClient(
        settings.api_key or "",
        base_url=settings.api_base_url,
        model=settings.embedding_model,
        batch_size=settings.embedding_batch_size,
        batch_delay=settings.embedding_batch_delay,
        timeout=settings.request_timeout,
        transport=transport,
    )


__all__ = [
    "BaseEmbeddingClient",
    "FALLBACK_DIMENSION",
    "FALLBACK_MODEL_NAME",
    "HashingEmbeddingClient",
    "MistralEmbeddingClient",
    "extract_error_message",
    "get_embedding_client",
    "merge_usage",
    "similarity",
    "usage_counts",
]
