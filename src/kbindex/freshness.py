"""Source freshness: per-source age, stale sweeps and origin change checks.

Age is measured from a source's newest ``indexed_at``. A source with no usable
timestamp is reported as ``STALE_SENTINEL_DAYS`` old so that it always sorts as
stale. The origin's own modification time comes from pluggable providers
(content store, catalog, HTTP ``Last-Modified``).
"""

from __future__ import annotations

import math
import urllib.parse
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from kbindex import timestamps
from kbindex.config import FreshnessCfg
from kbindex.db.models import SourceRef, SourceType, StaleSource
from kbindex.db.repository import Repository
from kbindex.ingest.catalog import CatalogProvider
from kbindex.ingest.content_store import ContentStore
from kbindex.ingest.fetch import Fetcher
from kbindex.logging import get_logger

STALE_SENTINEL_DAYS = 9999

# (label, inclusive upper bound in days); None = unbounded
AGE_BUCKETS: tuple[tuple[str, int | None], ...] = (
    ("0-7", 7),
    ("8-30", 30),
    ("31-90", 90),
    ("91-180", 180),
    ("181+", None),
)


@dataclass
class FreshnessView:
    source_url: str
    oldest_chunk: str | None
    newest_chunk: str | None
    chunk_count: int
    last_indexed: str | None
    age_days: int
    is_fresh: bool


@dataclass
class FreshnessStats:
    total_sources: int = 0
    fresh_sources: int = 0
    stale_sources: int = 0
    average_age_days: float = 0.0
    oldest_content_days: int = 0
    newest_content_days: int = 0
    by_age_range: dict[str, int] = field(
        default_factory=lambda: {label: 0 for label, _ in AGE_BUCKETS}
    )


# ------------------------------------------------------------------
# Origin timestamp providers
# ------------------------------------------------------------------

class OriginTimestampProvider(Protocol):
    """Reports when a source last changed at its origin."""

    def supports(self, source: SourceRef) -> bool: ...

    def modified_at(self, source: SourceRef) -> datetime | None: ...


class ContentStoreTimestamps:
    """Modified time of internal pages, looked up by id and then by URL."""

    def __init__(self, store: ContentStore) -> None:
        self._store = store

    def supports(self, source: SourceRef) -> bool:
        return source.source_type == SourceType.PAGE.value

    def modified_at(self, source: SourceRef) -> datetime | None:
        page = None
        if source.source_id is not None:
            page = self._store.get_page(source.source_id)
        if page is None and source.source_url:
            page = self._store.get_page_by_url(source.source_url)
        return page.modified_at if page is not None else None


class CatalogTimestamps:
    def __init__(self, catalog: CatalogProvider) -> None:
        self._catalog = catalog

    def supports(self, source: SourceRef) -> bool:
        return source.source_type == SourceType.CATALOG_ITEM.value and source.source_id is not None

    def modified_at(self, source: SourceRef) -> datetime | None:
        item = self._catalog.get_item(source.source_id)
        return item.modified_at if item is not None else None


class HttpTimestamps:
    """``Last-Modified`` from a HEAD request; any failure means unknown."""

    def __init__(self, fetcher: Fetcher) -> None:
        self._fetcher = fetcher

    def supports(self, source: SourceRef) -> bool:
        return urllib.parse.urlparse(source.source_url).scheme in ("http", "https")

    def modified_at(self, source: SourceRef) -> datetime | None:
        return self._fetcher.last_modified(source.source_url)


# ------------------------------------------------------------------
# Tracker
# ------------------------------------------------------------------

class FreshnessTracker:
    """Freshness bookkeeping over the chunk table.

    Args:
        repo: Open Repository.
        config: ``freshness`` config section.
        providers: Origin timestamp providers, consulted in order; the first
            one that supports a source and returns a timestamp wins.
    """

    def __init__(
        self,
        repo: Repository,
        config: FreshnessCfg | None = None,
        providers: list[OriginTimestampProvider] | None = None,
        clock: timestamps.Clock = timestamps.utcnow,
        logger=None,
    ) -> None:
        self._repo = repo
        self._config = config or FreshnessCfg()
        self._providers = list(providers or [])
        self._clock = clock
        self._log = logger or get_logger(__name__)

    @property
    def threshold_days(self) -> int:
        return self._config.threshold_days

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update_freshness(self, source_url: str, timestamp: str | datetime | None = None) -> int:
        """Stamp ``last_updated`` on every chunk of *source_url*. Returns rows touched."""
        if not source_url:
            return 0
        when = timestamps.parse(timestamp) if timestamp is not None else None
        value = timestamps.to_sql(when or self._clock())
        updated = self._repo.set_last_updated(source_url, value)
        self._log.debug("freshness_updated", source_url=source_url, last_updated=value, rows=updated)
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_freshness(self, source_url: str) -> FreshnessView | None:
        if not source_url:
            return None
        row = self._repo.freshness_aggregate(source_url)
        if row is None:
            return None
        return FreshnessView(
            source_url=source_url,
            oldest_chunk=row["oldest_chunk"],
            newest_chunk=row["newest_chunk"],
            chunk_count=row["chunk_count"],
            last_indexed=row["last_indexed"],
            age_days=self.calculate_age_days(row["last_indexed"]),
            is_fresh=self.is_fresh(row["last_indexed"]),
        )

    def get_stale_content(
        self,
        threshold_days: int | None = None,
        limit: int = 100,
        source_type: str | None = None,
        min_chunks: int = 1,
    ) -> list[StaleSource]:
        """Sources not indexed within *threshold_days*, oldest first."""
        days = self._config.threshold_days if threshold_days is None else threshold_days
        cutoff = timestamps.to_sql(self._clock() - timedelta(days=days))
        return self._repo.stale_sources(
            cutoff, limit=limit, source_type=source_type, min_chunks=min_chunks
        )

    def calculate_age_days(self, timestamp: str | datetime | None) -> int:
        """Whole days since *timestamp*, never negative; sentinel when unknown."""
        when = timestamps.parse(timestamp)
        if when is None:
            return STALE_SENTINEL_DAYS
        seconds = (self._clock() - when).total_seconds()
        return max(0, math.floor(seconds / 86400))

    def is_fresh(self, timestamp: str | datetime | None, threshold_days: int | None = None) -> bool:
        if timestamps.parse(timestamp) is None:
            return False
        days = self._config.threshold_days if threshold_days is None else threshold_days
        return self.calculate_age_days(timestamp) <= days

    def get_freshness_stats(self, threshold_days: int | None = None) -> FreshnessStats:
        """Fresh/stale counts and an age histogram over all sources with a URL."""
        stats = FreshnessStats()
        ages: list[int] = []
        for source_url, last_indexed in self._repo.last_indexed_by_source():
            if not source_url:
                continue
            age = self.calculate_age_days(last_indexed)
            ages.append(age)
            for label, upper in AGE_BUCKETS:
                if upper is None or age <= upper:
                    stats.by_age_range[label] += 1
                    break
            if self.is_fresh(last_indexed, threshold_days):
                stats.fresh_sources += 1
            else:
                stats.stale_sources += 1

        stats.total_sources = len(ages)
        if ages:
            stats.average_age_days = round(sum(ages) / len(ages), 2)
            stats.oldest_content_days = max(ages)
            stats.newest_content_days = min(ages)
        return stats

    # ------------------------------------------------------------------
    # Origin checks
    # ------------------------------------------------------------------

    def source_timestamp(
        self,
        source_url: str,
        source_type: str = "",
        source_id: int | None = None,
    ) -> datetime | None:
        """The origin's last modification time, or None if no provider knows it."""
        ref = SourceRef(source_url=source_url, source_type=source_type, source_id=source_id)
        for provider in self._providers:
            if not provider.supports(ref):
                continue
            when = provider.modified_at(ref)
            if when is not None:
                return timestamps.parse(when)
        return None

    def check_source_updated(
        self,
        source_url: str,
        source_type: str = "",
        source_id: int | None = None,
    ) -> bool:
        """True if the origin changed after the source was last indexed.

        A source that was never indexed counts as updated. When the origin time
        cannot be determined the answer is False.
        """
        view = self.get_freshness(source_url)
        if view is None:
            return True
        origin = self.source_timestamp(source_url, source_type, source_id)
        indexed = timestamps.parse(view.last_indexed)
        if origin is None or indexed is None:
            return False
        return origin > indexed

    def get_content_needing_reindex(
        self, limit: int = 100, source_type: str | None = None
    ) -> list[SourceRef]:
        """Indexed sources whose origin reports a change since indexing."""
        needing: list[SourceRef] = []
        for ref in self._repo.list_sources():
            if not ref.source_url or (source_type and ref.source_type != source_type):
                continue
            if self.check_source_updated(ref.source_url, ref.source_type, ref.source_id):
                needing.append(ref)
                if len(needing) >= limit:
                    break
        return needing
