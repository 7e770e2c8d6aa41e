"""Utilities for detecting the format of uploaded documents."""
from __future__ import annotations

import mimetypes
from enum import Enum
from pathlib import Path
from typing import Optional

from docqa.errors import ExtractionError


class DocumentFormat(str, Enum):
    """Supported document formats."""

    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"


class DocumentFormatDetector:
    """Detects the document format based on file name and optional MIME type."""

    _MIME_MAP = {
        "application/pdf": DocumentFormat.PDF,
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DocumentFormat.DOCX,
        "text/plain": DocumentFormat.TXT,
    }

    @classmethod
    def detect(cls, file_name: str, mime_type: Optional[str] = None) -> DocumentFormat:
        """Return the detected document format.

        The detector first considers an explicit MIME type value, falling back to
        `mimetypes.guess_type` and finally checking the file suffix.
        """

        if mime_type:
            base_type = mime_type.split(";", 1)[0].strip().lower()
            if base_type in cls._MIME_MAP:
                return cls._MIME_MAP[base_type]

        guessed_type, _ = mimetypes.guess_type(file_name)
        if guessed_type and guessed_type in cls._MIME_MAP:
            return cls._MIME_MAP[guessed_type]

        suffix = Path(file_name).suffix.lower().lstrip(".")
        try:
            return DocumentFormat(suffix)
        except ValueError as exc:
            raise ExtractionError(
                f"Unsupported file format: {file_name}", document_name=file_name, cause=exc
            ) from exc
