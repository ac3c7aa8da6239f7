"""Duplicate detection: exact (content hash) and near (embedding similarity).

The detector reads chunks and writes only ``content_duplicates``. A match found
while indexing is reported back as a ``DuplicateSkip`` value, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from kbindex import timestamps
from kbindex.config import DEDUP_METHODS, DedupCfg
from kbindex.db.models import DuplicateRelationship, DuplicateType, content_hash
from kbindex.db.repository import Repository
from kbindex.db.vectors import VectorStore
from kbindex.embeddings import EmbeddingGenerator
from kbindex.errors import EmbeddingError, KbindexError
from kbindex.logging import get_logger

SIMILARITY_SEARCH_LIMIT = 10


@dataclass
class DuplicateMatch:
    type: str
    similarity: float
    chunk_id: int
    source_url: str
    source_type: str
    content_hash: str


@dataclass
class DuplicateSkip:
    """A chunk left out of an index call because it duplicates stored content."""

    chunk_index: int
    match: DuplicateMatch


@dataclass
class DuplicateGroup:
    content_hash: str
    chunk_ids: list[int]
    source_urls: list[str]

    @property
    def group_size(self) -> int:
        return len(self.chunk_ids)


@dataclass
class ScanResult:
    scanned: int = 0
    duplicates_found: int = 0
    relationships_created: int = 0
    errors: list[str] = field(default_factory=list)
    last_id: int = 0


class DuplicateDetector:
    """Find and record duplicate chunks.

    Args:
        repo: Open Repository.
        vectors: Vector store used for similarity lookups.
        embedder: Embedding generator; without one, similarity checks never match.
        config: ``dedup`` config section (method, threshold, min length).
    """

    def __init__(
        self,
        repo: Repository,
        vectors: VectorStore,
        embedder: EmbeddingGenerator | None = None,
        config: DedupCfg | None = None,
        clock: timestamps.Clock = timestamps.utcnow,
        logger=None,
    ) -> None:
        self._repo = repo
        self._vectors = vectors
        self._embedder = embedder
        self._config = config or DedupCfg()
        self._clock = clock
        self._log = logger or get_logger(__name__)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_duplicate(
        self,
        content: str,
        source_url: str = "",
        method: str | None = None,
        similarity_threshold: float | None = None,
        min_length: int | None = None,
    ) -> DuplicateMatch | None:
        """Return the best match for *content* outside *source_url*, or None.

        Raises:
            ValueError: If *method* is not hash, similarity or both.
        """
        method = method or self._config.method
        if method not in DEDUP_METHODS:
            raise ValueError(f"Unknown dedup method '{method}'")
        threshold = (
            self._config.similarity_threshold
            if similarity_threshold is None
            else similarity_threshold
        )
        min_len = self._config.min_length if min_length is None else min_length

        if len(content) < min_len:
            return None

        digest = content_hash(content)

        if method in ("hash", "both"):
            exact = self._repo.find_by_hash(digest, exclude_url=source_url or None)
            if exact is not None:
                return DuplicateMatch(
                    type=DuplicateType.EXACT.value,
                    similarity=1.0,
                    chunk_id=exact.id,
                    source_url=exact.source_url,
                    source_type=exact.source_type,
                    content_hash=digest,
                )

        if method in ("similarity", "both"):
            return self._find_similar(content, digest, source_url, threshold)

        return None

    def _find_similar(
        self, content: str, digest: str, source_url: str, threshold: float
    ) -> DuplicateMatch | None:
        if self._embedder is None:
            return None
        try:
            vector = self._embedder.generate(content)
        except EmbeddingError as exc:
            self._log.warning("similarity_check_skipped", source_url=source_url, error=str(exc))
            return None

        exclude = self._repo.chunk_ids_for_url(source_url) if source_url else []
        try:
            hits = self._vectors.similarity_search(
                vector,
                self._embedder.model,
                limit=SIMILARITY_SEARCH_LIMIT,
                threshold=threshold,
                exclude_ids=exclude,
            )
        except EmbeddingError as exc:
            self._log.warning("similarity_check_skipped", source_url=source_url, error=str(exc))
            return None
        if not hits:
            return None

        best = hits[0]
        return DuplicateMatch(
            type=DuplicateType.SIMILAR.value,
            similarity=best.similarity,
            chunk_id=best.chunk_id,
            source_url=best.source_url,
            source_type=best.source_type,
            content_hash=digest,
        )

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track_duplicate(
        self,
        chunk_id: int,
        duplicate_id: int,
        duplicate_type: str,
        similarity: float = 1.0,
    ) -> bool:
        """Record ``chunk_id -> duplicate_id``. Returns True if the edge is new.

        Re-tracking an existing pair refreshes its type, similarity and
        ``updated_at``.

        Raises:
            ValueError: Self-edge, unknown type, or similarity outside [0, 1].
        """
        if chunk_id == duplicate_id:
            raise ValueError("A chunk cannot duplicate itself")
        kind = DuplicateType(duplicate_type).value
        if kind == DuplicateType.EXACT.value:
            similarity = 1.0
        if not 0.0 <= similarity <= 1.0:
            raise ValueError(f"similarity must be in [0, 1], got {similarity}")
        return self._repo.upsert_duplicate(
            chunk_id, duplicate_id, kind, similarity, timestamps.to_sql(self._clock())
        )

    def get_duplicates(self, chunk_id: int) -> list[DuplicateRelationship]:
        return self._repo.get_duplicates(chunk_id)

    def remove_duplicate_tracking(self, chunk_id: int) -> int:
        """Drop every edge touching *chunk_id*. Returns the number removed."""
        return self._repo.delete_duplicates(chunk_id)

    def get_duplicate_groups(self, min_group_size: int = 2, limit: int = 100) -> list[DuplicateGroup]:
        """Chunks sharing a content hash, largest groups first."""
        groups = []
        for digest, ids in self._repo.hash_groups(min_group_size, limit):
            urls = sorted(
                {c.source_url for c in (self._repo.get_chunk(i) for i in ids) if c is not None}
            )
            groups.append(DuplicateGroup(content_hash=digest, chunk_ids=ids, source_urls=urls))
        return groups

    def get_duplicate_stats(self) -> dict:
        return self._repo.duplicate_stats()

    # ------------------------------------------------------------------
    # Batch scan
    # ------------------------------------------------------------------

    def scan_for_duplicates(
        self,
        batch_size: int = 100,
        method: str | None = None,
        similarity_threshold: float | None = None,
        update_tracking: bool = True,
        after_id: int = 0,
    ) -> ScanResult:
        """Check one keyset page of stored chunks (``id > after_id``) for duplicates.

        Pass ``result.last_id`` back as *after_id* to continue with the next page.
        """
        result = ScanResult(last_id=after_id)
        for chunk in self._repo.chunks_after(after_id, batch_size):
            result.scanned += 1
            result.last_id = chunk.id
            try:
                match = self.detect_duplicate(
                    chunk.content,
                    chunk.source_url,
                    method=method,
                    similarity_threshold=similarity_threshold,
                )
                if match is None or match.chunk_id == chunk.id:
                    continue
                result.duplicates_found += 1
                if update_tracking and self.track_duplicate(
                    chunk.id, match.chunk_id, match.type, match.similarity
                ):
                    result.relationships_created += 1
            except KbindexError as exc:
                result.errors.append(f"chunk {chunk.id}: {exc}")

        self._log.info(
            "duplicate_scan_finished",
            scanned=result.scanned,
            duplicates=result.duplicates_found,
            created=result.relationships_created,
            errors=len(result.errors),
        )
        return result
