"""Domain models for the kbindex database layer."""

from __future__ import annotations

import hashlib
import math
import re
from dataclasses import dataclass
from enum import Enum

_WORD_RE = re.compile(r"[A-Za-z'-]+")


class SourceType(str, Enum):
    URL = "url"
    PAGE = "page"
    DOCUMENT = "document"
    CATALOG_ITEM = "catalog_item"
    API = "api"
    TEXT = "text"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    RETRY = "retry"
    COMPLETED = "completed"
    FAILED = "failed"


class DuplicateType(str, Enum):
    EXACT = "exact"
    SIMILAR = "similar"


def content_hash(content: str) -> str:
    """SHA-256 hex digest of *content* (UTF-8)."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def estimate_tokens(content: str) -> int:
    """``ceil(len / 4)``, a stand-in for a real tokenizer."""
    return math.ceil(len(content) / 4)


def count_words(content: str) -> int:
    """Count alphabetic words, apostrophes and hyphens included."""
    return len(_WORD_RE.findall(content))


@dataclass
class ContentChunk:
    source_type: str
    source_url: str
    chunk_index: int
    content: str
    content_hash: str
    word_count: int
    token_count: int
    embedding_model: str
    source_id: int | None = None
    last_updated: str | None = None
    indexed_at: str | None = None
    id: int | None = None  # set after insert; None for unsaved chunks


@dataclass
class IngestionJob:
    id: int
    job_type: str
    payload: str
    status: str
    priority: int
    retry_count: int
    max_retries: int
    scheduled_at: str
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    updated_at: str | None = None
    error_message: str | None = None


@dataclass
class DuplicateRelationship:
    chunk_id: int
    duplicate_chunk_id: int
    duplicate_type: str
    similarity: float
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class SourceRef:
    """A distinct indexed source, as listed for re-index sweeps."""

    source_url: str
    source_type: str
    source_id: int | None = None


@dataclass
class StaleSource:
    source_url: str
    source_type: str
    chunk_count: int
    last_indexed: str | None
    source_id: int | None = None


@dataclass
class Schedule:
    hook: str
    next_run_at: str
    interval: str | None = None  # None for a one-shot registration
    last_run_at: str | None = None
