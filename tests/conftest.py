"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone

from unittest.mock import patch

import pytest

from kbindex.config import KbindexConfig
from kbindex.db.connection import Database
from kbindex.db.schema import initialize
from kbindex.errors import EmbeddingError
from kbindex.pipeline import Pipeline

FAKE_MODEL = "test/fake-embedding"


class FakeEmbedder:
    """Deterministic stand-in for EmbeddingGenerator (no network).

    Identical text gives identical vectors. Any text containing one of the
    ``fail_on`` markers raises EmbeddingError.
    """

    def __init__(self, model: str = FAKE_MODEL, dimensions: int = 8) -> None:
        self._model = model
        self.dimensions = dimensions
        self.fail_on: set[str] = set()
        self.calls: list[str] = []

    @property
    def model(self) -> str:
        return self._model

    def generate(self, text: str, model: str | None = None) -> list[float]:
        self.calls.append(text)
        if not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingError("provider unavailable")
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(b + 1) / 256 for b in digest[: self.dimensions]]


class FakeClock:
    """Settable clock; call it to get the current (aware, UTC) time."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".kbindex.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def clock():
    # A Wednesday, mid-month.
    return FakeClock(datetime(2024, 5, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture(autouse=True)
def _offline():
    """Every hostname resolves to a private address, so the SSRF guard stops real traffic."""
    addr_info = [(None, None, None, None, ("10.255.255.1", 0))]
    with patch("kbindex.ingest.fetch.socket.getaddrinfo", return_value=addr_info):
        yield


@pytest.fixture
def make_pipeline(tmp_db, embedder, clock):
    """Build a Pipeline on the test DB with the fake embedder and clock."""

    def _make(config=None, content_store=None, catalog=None):
        return Pipeline(
            tmp_db,
            config or KbindexConfig(),
            content_store=content_store,
            catalog=catalog,
            embedder=embedder,
            clock=clock,
        )

    return _make
