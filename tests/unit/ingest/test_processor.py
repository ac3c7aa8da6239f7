"""Tests for ContentProcessor."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from kbindex.config import ChunkingCfg
from kbindex.errors import NoContentError
from kbindex.ingest.content_store import InMemoryContentStore, StoredPage
from kbindex.ingest.fetch import FetchedContent, Fetcher
from kbindex.ingest.processor import ChunkOptions, ContentProcessor


def _fetcher_returning(body: str, content_type: str = "text/html") -> MagicMock:
    fetcher = MagicMock()
    fetcher.fetch.return_value = FetchedContent(url="u", body=body, content_type=content_type)
    return fetcher


def test_process_url_from_content_store():
    store = InMemoryContentStore(
        [StoredPage(id=1, url="https://kb.example/a", title="Title", body="<p>First. Second.</p>")]
    )
    processor = ContentProcessor(fetcher=Fetcher(content_store=store))
    result = processor.process_url("https://kb.example/a")

    assert result.content == "Title\nFirst. Second."
    assert result.chunk_count == 1
    assert result.word_count == 3
    assert result.char_count == len(result.content)


def test_process_url_plain_text_not_parsed():
    processor = ContentProcessor(fetcher=_fetcher_returning("  a <b> c  ", "text/plain"))
    assert processor.process_url("https://example.com/a.txt").content == "a <b> c"


def test_process_url_without_text_raises():
    processor = ContentProcessor(fetcher=_fetcher_returning("<nav>Menu</nav><footer>x</footer>"))
    with pytest.raises(NoContentError):
        processor.process_url("https://example.com/empty")


def test_chunk_text_uses_config_defaults():
    processor = ContentProcessor(
        fetcher=MagicMock(),
        chunking=ChunkingCfg(chunk_size=4, chunk_overlap=0, min_chunk_size=1),
    )
    assert [c.content for c in processor.chunk_text("A. B. C.")] == ["A.", "B.", "C."]


def test_chunk_text_options_override_config():
    processor = ContentProcessor(
        fetcher=MagicMock(),
        chunking=ChunkingCfg(chunk_size=4, chunk_overlap=0, min_chunk_size=1),
    )
    chunks = processor.chunk_text("A. B. C.", ChunkOptions(chunk_size=100))
    assert [c.content for c in chunks] == ["A. B. C."]
