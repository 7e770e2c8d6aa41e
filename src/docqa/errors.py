"""Exceptions raised by the retrieval pipeline."""
from __future__ import annotations


class DocQAError(RuntimeError):
    """Base class for pipeline failures."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class ExtractionError(DocQAError):
    """Raised when a document is malformed or of an unsupported format."""

    def __init__(
        self,
        message: str,
        *,
        document_name: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.document_name = document_name


class RemoteServiceError(DocQAError):
    """A call to the embedding or completion service did not succeed."""

    service = "remote"

    def __init__(
        self,
        upstream_message: str,
        *,
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        status = status_code if status_code is not None else "transport"
        super().__init__(f"{self.service} service error: {status} - {upstream_message}", cause=cause)
        self.status_code = status_code
        self.upstream_message = upstream_message


class EmbeddingServiceError(RemoteServiceError):
    service = "embedding"


class CompletionServiceError(RemoteServiceError):
    service = "completion"


class DimensionMismatchError(DocQAError, ValueError):
    """Raised when two vectors of different lengths are compared."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Embeddings must have the same dimension (expected {expected}, got {actual})")
        self.expected = expected
        self.actual = actual


__all__ = [
    "CompletionServiceError",
    "DimensionMismatchError",
    "DocQAError",
    "EmbeddingServiceError",
    "ExtractionError",
    "RemoteServiceError",
]
