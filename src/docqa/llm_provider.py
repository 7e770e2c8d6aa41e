"""Completion clients used to turn a grounded prompt into an answer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from docqa.config import Settings
from docqa.embeddings import extract_error_message, usage_counts
from docqa.errors import CompletionServiceError

LOGGER = logging.getLogger(__name__)

DEFAULT_STUB_RESPONSE = (
    "The language model is not configured, so no answer can be generated. "
    "The retrieved sources are listed below."
)


@dataclass(frozen=True, slots=True)
class Completion:
    """Generated answer text with the token counters reported for it."""

    text: str
    usage: Dict[str, int] = field(default_factory=dict)


class BaseCompletionClient:
    """Common interface exposed by completion backends."""

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int) -> Completion:
        """Return the generated answer for *prompt*."""

        raise NotImplementedError

    @property
    def model_name(self) -> str:
        return "stub"

    @property
    def is_stub(self) -> bool:
        return False

    async def aclose(self) -> None:
        return None


class CompletionStub(BaseCompletionClient):
    """Fallback returning a fixed notice when no remote model is configured."""

    def __init__(self, message: str = DEFAULT_STUB_RESPONSE) -> None:
        self._message = message

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int) -> Completion:
        return Completion(self._message)

    @property
    def is_stub(self) -> bool:
        return True


class MistralCompletionClient(BaseCompletionClient):
    """Client for a Mistral-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.mistral.ai/v1",
        model: str = "mistral-small-latest",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key:
            raise ValueError("An API key is required for the completion service")
        self._model = model
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )
    @property
    def model_name(self) -> str:
        return self._model

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int) -> Completion:
        body = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        try:
            response = await self._client.post("/chat/completions", json=body)
        except httpx.HTTPError as error:
            raise CompletionServiceError(str(error) or error.__class__.__name__, cause=error) from error

        if not response.is_success:
            raise CompletionServiceError(
                extract_error_message(response),
                status_code=response.status_code,
            )

        payload: Dict[str, Any] = response.json()
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as error:
            raise CompletionServiceError(
                "response did not contain a completion",
                status_code=response.status_code,
                cause=error,
            ) from error

        return Completion(str(content or "").strip(), usage_counts(payload))

    async def aclose(self) -> None:
        await self._client.aclose()


def get_completion_client(
    settings: Settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseCompletionClient:
    """Return the remote completion client, or the stub when no key is configured."""

    if not settings.remote_enabled:
        LOGGER.warning("No API key configured; completion stub responses only.")
        return CompletionStub()
    return MistralCompletionClient(
        settings.api_key or "",
        base_url=settings.api_base_url,
        model=settings.completion_model,
        timeout=settings.request_timeout,
        transport=transport,
    )


__all__ = [
    "BaseCompletionClient",
    "Completion",
    "CompletionStub",
    "DEFAULT_STUB_RESPONSE",
    "MistralCompletionClient",
    "get_completion_client",
]
