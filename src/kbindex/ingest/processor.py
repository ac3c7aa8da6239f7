"""Fetch, extract and chunk a source in one call."""

from __future__ import annotations

from dataclasses import dataclass, field

from kbindex.config import ChunkingCfg, ExtractionCfg
from kbindex.db.models import count_words
from kbindex.errors import NoContentError
from kbindex.ingest.chunker import TextChunk, chunk_content
from kbindex.ingest.extract import extract_clean_text
from kbindex.ingest.fetch import Fetcher
from kbindex.logging import get_logger


@dataclass
class ChunkOptions:
    """Per-call overrides of the configured chunking parameters."""

    chunk_size: int | None = None
    chunk_overlap: int | None = None
    method: str | None = None


@dataclass
class ProcessedSource:
    url: str
    content: str
    chunks: list[TextChunk] = field(default_factory=list)

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def word_count(self) -> int:
        return count_words(self.content)

    @property
    def char_count(self) -> int:
        return len(self.content)


class ContentProcessor:
    """Turns URLs and raw text into chunk lists using the configured settings."""

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        chunking: ChunkingCfg | None = None,
        extraction: ExtractionCfg | None = None,
        logger=None,
    ) -> None:
        self._fetcher = fetcher or Fetcher()
        self._chunking = chunking or ChunkingCfg()
        self._extraction = extraction or ExtractionCfg()
        self._log = logger or get_logger(__name__)

    @property
    def fetcher(self) -> Fetcher:
        return self._fetcher

    def process_url(self, url: str, options: ChunkOptions | None = None) -> ProcessedSource:
        """Fetch *url*, strip it to readable text and chunk it.

        Raises:
            FetchError: The source could not be retrieved.
            NoContentError: Extraction produced no text.
        """
        fetched = self._fetcher.fetch(url)
        if fetched.content_type == "text/plain":
            text = fetched.body.strip()
        else:
            text = extract_clean_text(
                fetched.body,
                remove_boilerplate=self._extraction.remove_boilerplate,
                extract_main_content=self._extraction.extract_main_content,
            )
        if not text:
            raise NoContentError(f"No content could be extracted from '{url}'.")
        chunks = self.chunk_text(text, options)
        self._log.debug(
            "source_processed", source_url=url, internal=fetched.internal, chunks=len(chunks)
        )
        return ProcessedSource(url=url, content=text, chunks=chunks)

    def chunk_text(self, text: str, options: ChunkOptions | None = None) -> list[TextChunk]:
        opts = options or ChunkOptions()
        cfg = self._chunking
        return chunk_content(
            text,
            chunk_size=opts.chunk_size if opts.chunk_size is not None else cfg.chunk_size,
            chunk_overlap=opts.chunk_overlap if opts.chunk_overlap is not None else cfg.chunk_overlap,
            method=opts.method or cfg.method,
            min_chunk_size=cfg.min_chunk_size,
            max_chunk_size=cfg.max_chunk_size,
        )
