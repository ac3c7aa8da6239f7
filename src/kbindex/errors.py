"""Exception taxonomy for the ingestion pipeline.

Chunk-level failures are collected into ``IndexResult.errors``; job-level
failures drive the queue's retry policy. Duplicate skips are not errors and
have no exception type (see ``kbindex.dedup.DuplicateSkip``).
"""

from __future__ import annotations


class KbindexError(Exception):
    """Base class for all pipeline errors."""


class FetchError(KbindexError):
    """Network failure, timeout, non-2xx status, or empty body."""

    def __init__(self, message: str, url: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class SsrfError(FetchError):
    """Raised when a URL resolves to a private or reserved address."""


class ParseError(KbindexError):
    """Malformed markup, document, or structured payload."""


class PayloadError(ParseError):
    """A queued job's payload cannot be decoded. Never retried."""


class NoContentError(KbindexError):
    """Extraction or chunking produced nothing usable."""


class PersistenceError(KbindexError):
    """A store write failed."""


class EmbeddingError(KbindexError):
    """Vector generation or vector storage failed."""


class IndexingError(KbindexError):
    """No chunk of a non-empty batch could be indexed."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class InvalidJobType(KbindexError, ValueError):
    """Job type is not in the closed registry."""


class InvalidJobStatus(KbindexError):
    """Job is not in a runnable state (pending or retry)."""


class JobNotFound(KbindexError, LookupError):
    """No job with the given id."""
