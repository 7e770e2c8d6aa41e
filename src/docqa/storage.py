"""In-memory registry of uploaded source documents."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from fastapi import UploadFile

from docqa.ingest.models import SourceDocument

LOGGER = logging.getLogger(__name__)


def _display_name(filename: str | None) -> str:
    """Return the base name of an uploaded file, without any path components."""
    name = Path((filename or "").replace("\\", "/")).name.strip()
    return name or "upload"


class DocumentStore:
    """Keeps uploaded document bytes keyed by a generated id."""

    def __init__(self) -> None:
        self._documents: Dict[str, SourceDocument] = {}

    async def save(self, upload: UploadFile) -> SourceDocument:
        contents = await upload.read()
        await upload.seek(0)
        document = SourceDocument(
            id=uuid4().hex,
            name=_display_name(upload.filename),
            data=contents,
            mime_type=upload.content_type,
        )
        self._documents[document.id] = document
        LOGGER.info("Stored upload %s as %s (%s bytes)", document.name, document.id, document.size_bytes)
        return document

    def get(self, document_id: str) -> Optional[SourceDocument]:
        return self._documents.get(document_id)

    def get_many(self, document_ids: Iterable[str]) -> List[SourceDocument]:
        """Return documents in the requested order; raises ``KeyError`` for unknown ids."""

        requested = list(dict.fromkeys(document_ids))
        missing = [document_id for document_id in requested if document_id not in self._documents]
        if missing:
            raise KeyError(", ".join(missing))
        return [self._documents[document_id] for document_id in requested]

    def remove(self, document_id: str) -> bool:
        return self._documents.pop(document_id, None) is not None

    def list(self) -> List[SourceDocument]:
        return list(self._documents.values())


__all__ = ["DocumentStore"]
