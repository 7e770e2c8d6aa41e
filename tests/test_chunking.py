from __future__ import annotations

import re

import pytest

from docqa.ingest.chunking import ChunkingConfig, PassageChunker, detect_section, split_sentences
from docqa.ingest.models import ExtractedDocument, PageContent


def _squash(text: str) -> str:
    return re.sub(r"\s+", "", text)


def _long_page(sentences: int = 60) -> str:
    return " ".join(
        f"Sentence number {index} talks about topic {index % 7} in some detail." for index in range(sentences)
    )


def test_split_sentences_keeps_terminal_punctuation() -> None:
    text = "  First one. Second one!  Third?? trailing words"
    spans = split_sentences(text)
    assert [text[start:end] for start, end in spans] == [
        "First one.",
        "Second one!",
        "Third??",
        "trailing words",
    ]


def test_split_sentences_drops_empty_fragments() -> None:
    assert split_sentences("   \n\t ") == []
    assert split_sentences("...") == [(0, 3)]


def test_core_text_reconstructs_page() -> None:
    page = _long_page()
    passages = PassageChunker().chunk_page(page, 1, "doc", "doc.txt")

    assert len(passages) > 1
    assert _squash("".join(passage.core_text for passage in passages)) == _squash(page)


def test_passages_are_exact_slices_of_page() -> None:
    page = _long_page()
    for passage in PassageChunker().chunk_page(page, 1, "doc", "doc.txt"):
        assert page[passage.char_start : passage.char_end] == passage.text
        assert passage.word_count == len(passage.text.split())


def test_passage_size_bounds() -> None:
    config = ChunkingConfig(max_chars=300, overlap_chars=60, min_chars=80)
    page = _long_page(40)
    longest_sentence = max(end - start for start, end in split_sentences(page))

    passages = PassageChunker(config).chunk_page(page, 1, "doc", "doc.txt")

    for passage in passages:
        assert len(passage.text) <= config.max_chars + longest_sentence + 1
    for passage in passages[:-1]:
        assert len(passage.text) > config.min_chars


def test_overlap_repeats_tail_of_previous_passage() -> None:
    config = ChunkingConfig(max_chars=300, overlap_chars=100, min_chars=50)
    passages = PassageChunker(config).chunk_page(_long_page(30), 1, "doc", "doc.txt")

    assert passages[0].overlap_chars == 0
    for previous, current in zip(passages, passages[1:]):
        overlap = current.text[: current.overlap_chars].rstrip()
        assert overlap
        assert len(overlap) <= config.overlap_chars
        assert previous.text.endswith(overlap)


def test_overlap_starts_on_sentence_boundary_when_possible() -> None:
    config = ChunkingConfig(max_chars=300, overlap_chars=100, min_chars=50)
    page = _long_page(30)
    sentence_starts = {start for start, _ in split_sentences(page)}

    passages = PassageChunker(config).chunk_page(page, 1, "doc", "doc.txt")

    for passage in passages[1:]:
        assert passage.char_start in sentence_starts


def test_zero_overlap_produces_disjoint_passages() -> None:
    config = ChunkingConfig(max_chars=300, overlap_chars=0, min_chars=50)
    passages = PassageChunker(config).chunk_page(_long_page(30), 1, "doc", "doc.txt")

    for previous, current in zip(passages, passages[1:]):
        assert current.overlap_chars == 0
        assert previous.char_end <= current.char_start


def test_text_without_punctuation_is_single_passage() -> None:
    page = " ".join(["word"] * 500)
    passages = PassageChunker().chunk_page(page, 3, "doc", "doc.txt")

    assert len(passages) == 1
    assert passages[0].text == page
    assert passages[0].page_number == 3


@pytest.mark.parametrize("page", ["", "   ", "\n\n\t"])
def test_blank_page_produces_no_passages(page: str) -> None:
    assert PassageChunker().chunk_page(page, 1, "doc", "doc.txt") == []


def test_short_final_passage_is_kept() -> None:
    config = ChunkingConfig(max_chars=200, overlap_chars=0, min_chars=50)
    page = _long_page(8) + " End."
    passages = PassageChunker(config).chunk_page(page, 1, "doc", "doc.txt")

    assert passages[-1].text.endswith("End.")


def test_ids_restart_per_page() -> None:
    document = ExtractedDocument(
        document_id="doc-1",
        name="doc.txt",
        pages=[PageContent(1, _long_page(40)), PageContent(2, _long_page(40))],
        total_pages=2,
    )
    passages = PassageChunker().chunk_document(document)

    page_two = [passage for passage in passages if passage.page_number == 2]
    assert [passage.id for passage in page_two] == [
        f"doc-1-page2-chunk{index}" for index in range(len(page_two))
    ]
    assert passages[0].id == "doc-1-page1-chunk0"
    assert all(passage.document_name == "doc.txt" for passage in passages)


def test_chunking_is_deterministic() -> None:
    chunker = PassageChunker()
    page = _long_page()
    assert chunker.chunk_page(page, 1, "doc", "doc.txt") == chunker.chunk_page(page, 1, "doc", "doc.txt")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("INTRODUCTION\nThe parties agree.", "INTRODUCTION"),
        ("1. Scope of work\nDetails follow.", "1. Scope of work"),
        ("IV. Payment terms\nDetails follow.", "IV. Payment terms"),
        ("Definitions:\nA term means...", "Definitions:"),
        ("The parties agree to the following terms.", None),
        ("A" * 120, None),
    ],
)
def test_detect_section(text: str, expected: str | None) -> None:
    assert detect_section(text) == expected


def test_chunking_config_rejects_min_above_max() -> None:
    with pytest.raises(ValueError):
        ChunkingConfig(max_chars=100, overlap_chars=10, min_chars=100)


@pytest.mark.parametrize("overlap", [300, 301])
def test_chunking_config_rejects_overlap_not_below_max(overlap: int) -> None:
    with pytest.raises(ValueError):
        ChunkingConfig(max_chars=300, overlap_chars=overlap, min_chars=50)
