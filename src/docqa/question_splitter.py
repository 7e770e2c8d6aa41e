"""Heuristic detection of compound (multi-part) questions."""
from __future__ import annotations

import re
from typing import List

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")
_AFTER_QUESTION_MARK_RE = re.compile(r"(?<=\?)")
_FIRST_WORD_RE = re.compile(r"[A-Za-z']+")

QUESTION_WORDS = frozenset(
    {
        "what",
        "who",
        "whom",
        "whose",
        "when",
        "where",
        "why",
        "how",
        "which",
        "is",
        "are",
        "was",
        "were",
        "does",
        "do",
        "did",
        "can",
        "could",
        "should",
        "would",
        "will",
        "explain",
        "summarize",
        "summarise",
        "list",
        "describe",
        "compare",
    }
)


def _candidate_segments(text: str) -> List[str]:
    split_on_question_marks = text.count("?") > 1
    segments: List[str] = []
    for paragraph in _PARAGRAPH_RE.split(text):
        for sentence in _SENTENCE_BOUNDARY_RE.split(paragraph):
            pieces = _AFTER_QUESTION_MARK_RE.split(sentence) if split_on_question_marks else [sentence]
            segments.extend(" ".join(piece.split()) for piece in pieces if piece.strip())
    return segments


def looks_like_question(segment: str) -> bool:
    if segment.endswith("?"):
        return True
    match = _FIRST_WORD_RE.match(segment)
    return bool(match and match.group(0).lower() in QUESTION_WORDS)


def split_questions(text: str) -> List[str]:
    """Return the independent questions encoded in *text*.

    Segments that do not read as questions are treated as context and
    prepended to the next question (or appended to the last one when they
    trail). Text with fewer than two questions is returned whole.
    """

    stripped = (text or "").strip()
    if not stripped:
        return []

    questions: List[str] = []
    context: List[str] = []
    for segment in _candidate_segments(stripped):
        if looks_like_question(segment):
            questions.append(" ".join(context + [segment]))
            context = []
        else:
            context.append(segment)

    if context and questions:
        questions[-1] = " ".join([questions[-1]] + context)

    if len(questions) < 2:
        return [stripped]
    return questions


__all__ = ["QUESTION_WORDS", "looks_like_question", "split_questions"]
