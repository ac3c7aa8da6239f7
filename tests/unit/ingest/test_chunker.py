"""Tests for the character-budget chunker."""

from __future__ import annotations

import pytest

from kbindex.ingest.chunker import chunk_content, clamp_chunk_params


def _contents(chunks):
    return [c.content for c in chunks]


# ------------------------------------------------------------------
# Parameter clamping
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "size,overlap,expected",
    [
        (1000, 200, (1000, 200)),
        (10, 500, (100, 50)),  # size raised to the minimum, overlap to half of it
        (5000, 10, (2000, 10)),
        (500, -5, (500, 0)),
    ],
)
def test_clamp_chunk_params(size, overlap, expected):
    assert clamp_chunk_params(size, overlap) == expected


def test_unknown_method_raises():
    with pytest.raises(ValueError, match="Unknown chunk method"):
        chunk_content("text", method="words")


@pytest.mark.parametrize("text", ["", "   ", "\n\n"])
def test_empty_text_yields_no_chunks(text):
    assert chunk_content(text) == []


# ------------------------------------------------------------------
# Sentence strategy
# ------------------------------------------------------------------


def test_sentence_each_sentence_own_chunk_when_budget_tiny():
    chunks = chunk_content("A. B. C. D.", chunk_size=4, chunk_overlap=0, min_chunk_size=1)
    assert _contents(chunks) == ["A.", "B.", "C.", "D."]


def test_sentence_overlap_with_tiny_budget():
    chunks = chunk_content(
        "A. B. C. D.", chunk_size=4, chunk_overlap=2, method="sentence", min_chunk_size=1
    )
    assert len(chunks) >= 2
    assert all(c.char_count <= 4 for c in chunks)
    assert _contents(chunks) == ["A.", ". B.", ". C.", ". D."]


def test_tiny_budget_raised_to_default_minimum():
    # without lowering min_chunk_size the size is clamped up to 100
    chunks = chunk_content("A. B. C. D.", chunk_size=4, chunk_overlap=2)
    assert _contents(chunks) == ["A. B. C. D."]


def test_sentence_packs_until_budget():
    text = "One. Two. Three."
    chunks = chunk_content(text, chunk_size=100, chunk_overlap=0)
    assert _contents(chunks) == ["One. Two. Three."]
    assert chunks[0].char_count == len("One. Two. Three.")
    assert chunks[0].word_count == 3


def test_sentence_overlap_carries_tail_forward():
    text = " ".join(f"Sentence number {i:02d} is here." for i in range(20))
    chunks = chunk_content(text, chunk_size=100, chunk_overlap=20)

    assert len(chunks) > 1
    for chunk in chunks:
        assert chunk.char_count <= 100
    for previous, current in zip(chunks, chunks[1:]):
        assert current.content[:10] in previous.content[-20:]


def test_sentence_without_overlap_partitions_text():
    text = " ".join(f"Sentence number {i:02d} is here." for i in range(20))
    chunks = chunk_content(text, chunk_size=100, chunk_overlap=0)
    assert " ".join(_contents(chunks)) == text


def test_oversized_sentence_kept_whole():
    long_sentence = "x" * 150 + "."
    chunks = chunk_content(
        f"Short. {long_sentence} Tail.", chunk_size=100, chunk_overlap=0, min_chunk_size=1
    )
    assert _contents(chunks) == ["Short.", long_sentence, "Tail."]


# ------------------------------------------------------------------
# Paragraph strategy
# ------------------------------------------------------------------


def test_paragraph_joins_with_blank_line():
    text = "Para one.\n\nPara two.\n\n\nPara three."
    chunks = chunk_content(
        text, chunk_size=25, chunk_overlap=0, method="paragraph", min_chunk_size=1
    )
    assert _contents(chunks) == ["Para one.\n\nPara two.", "Para three."]


def test_paragraph_overlap_seeds_next_chunk():
    text = "\n\n".join(f"Paragraph {i:02d} says something." for i in range(12))
    chunks = chunk_content(
        text, chunk_size=80, chunk_overlap=20, method="paragraph", min_chunk_size=1
    )

    assert len(chunks) > 1
    for chunk in chunks:
        assert chunk.char_count <= 80
    for previous, current in zip(chunks, chunks[1:]):
        seed = current.content.split("\n\n")[0]
        assert seed
        assert seed in previous.content[-20:]
    assert chunks[-1].content.endswith("Paragraph 11 says something.")


# ------------------------------------------------------------------
# Fixed strategy
# ------------------------------------------------------------------


def test_fixed_window_steps_by_size_minus_overlap():
    chunks = chunk_content(
        "abcdefghij", chunk_size=4, chunk_overlap=2, method="fixed", min_chunk_size=1
    )
    assert _contents(chunks) == ["abcd", "cdef", "efgh", "ghij"]


def test_fixed_window_no_overlap():
    chunks = chunk_content(
        "abcdefghij", chunk_size=4, chunk_overlap=0, method="fixed", min_chunk_size=1
    )
    assert _contents(chunks) == ["abcd", "efgh", "ij"]
