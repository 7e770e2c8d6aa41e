"""Utilities for constructing grounded prompts from retrieved passages."""
from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

from docqa.vectorstore import SearchResult

_PROMPTS_DIR = Path(__file__).resolve().parent / "prompts" / "en"
_SYSTEM_PROMPT_PATH = _PROMPTS_DIR / "system.txt"
_USER_PROMPT_PATH = _PROMPTS_DIR / "user.md"


def _load_template(path: Path) -> str:
    """Read and trim the contents of a template file."""
    return path.read_text(encoding="utf-8").strip()


_SYSTEM_TEXT = _load_template(_SYSTEM_PROMPT_PATH)
_USER_TEMPLATE = _load_template(_USER_PROMPT_PATH)


def format_context(results: Sequence[SearchResult]) -> str:
    """Render ranked passages as labelled context blocks."""

    sections: List[str] = []
    for index, result in enumerate(results, start=1):
        passage = result.passage
        sections.append(
            f"[Source {index} from {passage.document_name}, Page {passage.page_number}]\n{passage.text}"
        )
    return "\n\n".join(sections)


def build_prompt(question: str, results: Sequence[SearchResult]) -> str:
    """Compose the full prompt used for answering a question from *results*."""

    if question is None:
        raise ValueError("question must not be None")

    context_block = format_context(results) or "No context available."
    user_block = _USER_TEMPLATE.format(question=question.strip())
    return f"{_SYSTEM_TEXT}\n\nContext:\n{context_block}\n\n{user_block}".strip()


__all__ = ["build_prompt", "format_context"]
