"""Character-budget chunking with overlap.

Three strategies share one greedy packer:

- ``sentence``  : units split on whitespace after ``.``, ``!`` or ``?``
- ``paragraph`` : units split on blank lines
- ``fixed``     : a sliding window advancing by ``chunk_size - chunk_overlap``

When a chunk closes, the next buffer is seeded with the closed chunk's
trailing ``chunk_overlap`` characters, shortened as needed so the seeded
buffer still fits ``chunk_size``. A single unit longer than ``chunk_size`` is
emitted as its own chunk and never split.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from kbindex.db.models import count_words

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200
MIN_CHUNK_SIZE = 100
MAX_CHUNK_SIZE = 2000

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")

_SEPARATORS = {"sentence": " ", "paragraph": "\n\n"}


@dataclass
class TextChunk:
    content: str
    char_count: int
    word_count: int

    @classmethod
    def of(cls, content: str) -> TextChunk:
        return cls(content=content, char_count=len(content), word_count=count_words(content))


def clamp_chunk_params(
    chunk_size: int,
    chunk_overlap: int,
    min_chunk_size: int = MIN_CHUNK_SIZE,
    max_chunk_size: int = MAX_CHUNK_SIZE,
) -> tuple[int, int]:
    """Clamp size to ``[min, max]`` and overlap to ``[0, size // 2]``."""
    size = max(min_chunk_size, min(max_chunk_size, int(chunk_size)))
    overlap = max(0, min(size // 2, int(chunk_overlap)))
    return size, overlap


def chunk_content(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    method: str = "sentence",
    min_chunk_size: int = MIN_CHUNK_SIZE,
    max_chunk_size: int = MAX_CHUNK_SIZE,
) -> list[TextChunk]:
    """Split *text* into ordered chunks of at most ``chunk_size`` characters.

    Raises:
        ValueError: If *method* is not ``sentence``, ``paragraph`` or ``fixed``.
    """
    if method not in ("sentence", "paragraph", "fixed"):
        raise ValueError(f"Unknown chunk method '{method}'")
    if not text or not text.strip():
        return []

    size, overlap = clamp_chunk_params(chunk_size, chunk_overlap, min_chunk_size, max_chunk_size)

    if method == "fixed":
        return [TextChunk.of(s) for s in _fixed_window(text, size, overlap)]

    splitter = _SENTENCE_SPLIT_RE if method == "sentence" else _PARAGRAPH_SPLIT_RE
    units = [u.strip() for u in splitter.split(text.strip())]
    return [TextChunk.of(c) for c in _pack([u for u in units if u], size, overlap, _SEPARATORS[method])]


# ------------------------------------------------------------------
# Strategies
# ------------------------------------------------------------------

def _pack(units: list[str], size: int, overlap: int, sep: str) -> list[str]:
    chunks: list[str] = []
    buffer = ""
    for unit in units:
        candidate = f"{buffer}{sep}{unit}" if buffer else unit
        if not buffer or len(candidate) <= size:
            buffer = candidate
            continue
        chunks.append(buffer)
        seed = _overlap_seed(buffer, overlap, size - len(unit) - len(sep))
        buffer = f"{seed}{sep}{unit}" if seed else unit
    if buffer:
        chunks.append(buffer)
    return chunks


def _overlap_seed(closed: str, overlap: int, room: int) -> str:
    """Trailing characters of *closed* to carry forward, at most *room* long."""
    take = min(overlap, room)
    if take <= 0:
        return ""
    return closed[-take:].strip()


def _fixed_window(text: str, size: int, overlap: int) -> list[str]:
    step = max(1, size - overlap)
    segments: list[str] = []
    pos = 0
    length = len(text)
    while pos < length:
        segment = text[pos : pos + size].strip()
        if segment:
            segments.append(segment)
        if pos + size >= length:
            break
        pos += step
    return segments
