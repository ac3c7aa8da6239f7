"""Composition root: wires every component onto one database connection.

``Pipeline.tick()`` is the unit of work a cron job or the ``kbindex tick``
command runs: fire due schedule hooks, then process one batch of the queue.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from kbindex import timestamps
from kbindex.config import KbindexConfig, SourcesCfg
from kbindex.db.connection import Database
from kbindex.db.repository import Repository
from kbindex.db.schema import initialize
from kbindex.db.vectors import VectorStore
from kbindex.dedup import DuplicateDetector
from kbindex.embeddings import EmbeddingGenerator
from kbindex.freshness import (
    CatalogTimestamps,
    ContentStoreTimestamps,
    FreshnessTracker,
    HttpTimestamps,
    OriginTimestampProvider,
)
from kbindex.indexer import Indexer
from kbindex.ingest.api_endpoint import ApiEndpointProcessor
from kbindex.ingest.catalog import CatalogProvider, InMemoryCatalog
from kbindex.ingest.content_store import ContentStore, InMemoryContentStore
from kbindex.ingest.discovery import UrlDiscovery
from kbindex.ingest.fetch import Fetcher
from kbindex.ingest.pdf import PdfExtractor
from kbindex.ingest.processor import ContentProcessor
from kbindex.ingest.sitemap import SitemapParser
from kbindex.logging import get_logger
from kbindex.queue import JobQueue, QueueRunResult
from kbindex.scheduler import ReindexResult, ScheduledReindexer, SqliteScheduler


@dataclass
class TickResult:
    hooks_run: dict[str, ReindexResult] = field(default_factory=dict)
    queue: QueueRunResult = field(default_factory=QueueRunResult)


def load_sources(config: SourcesCfg) -> tuple[ContentStore | None, CatalogProvider | None]:
    """Load the configured page and catalog JSON files (either may be unset)."""
    store = InMemoryContentStore.from_json(config.pages_file) if config.pages_file else None
    catalog = InMemoryCatalog.from_json(config.catalog_file) if config.catalog_file else None
    return store, catalog


class Pipeline:
    """All kbindex components sharing one connection and one config.

    Args:
        conn: Open connection with the schema initialised.
        config: Loaded configuration.
        content_store: Internal pages served without HTTP.
        catalog: Catalog provider for ``catalog_item`` sources.
        embedder: Replaces the LiteLLM generator (tests).
        clock: Time source shared by queue, freshness and scheduler.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: KbindexConfig | None = None,
        content_store: ContentStore | None = None,
        catalog: CatalogProvider | None = None,
        embedder: EmbeddingGenerator | None = None,
        clock: timestamps.Clock = timestamps.utcnow,
    ) -> None:
        self.config = config or KbindexConfig()
        self.conn = conn
        self._clock = clock
        self._log = get_logger(__name__)
        self.content_store = content_store
        self.catalog = catalog

        cfg = self.config
        self.repo = Repository(conn)
        self.vectors = VectorStore(conn)
        self.embedder = embedder or EmbeddingGenerator(cfg.embedding)
        self.fetcher = Fetcher(cfg.fetch, content_store=content_store)
        self.processor = ContentProcessor(self.fetcher, cfg.chunking, cfg.extraction)
        self.discovery = UrlDiscovery(
            cfg.discovery,
            SitemapParser(
                self.fetcher,
                max_depth=cfg.discovery.sitemap_max_depth,
                max_urls=cfg.discovery.sitemap_max_urls,
            ),
            content_store=content_store,
            catalog=catalog,
        )

        providers: list[OriginTimestampProvider] = []
        if content_store is not None:
            providers.append(ContentStoreTimestamps(content_store))
        if catalog is not None:
            providers.append(CatalogTimestamps(catalog))
        providers.append(HttpTimestamps(self.fetcher))

        self.freshness = FreshnessTracker(self.repo, cfg.freshness, providers, clock=clock)
        self.detector = DuplicateDetector(
            self.repo, self.vectors, self.embedder, cfg.dedup, clock=clock
        )
        self.indexer = Indexer(
            self.repo,
            self.vectors,
            self.processor,
            self.detector,
            self.embedder,
            self.freshness,
            pdf=PdfExtractor(fetcher=self.fetcher),
            catalog=catalog,
            api=ApiEndpointProcessor(fetcher=self.fetcher),
            clock=clock,
        )
        self.queue = JobQueue(self.repo, cfg.queue, self.indexer.job_handlers(), clock=clock)
        self.scheduler = SqliteScheduler(self.repo, clock=clock)
        self.reindexer = ScheduledReindexer(
            self.repo, self.freshness, self.queue, self.scheduler, cfg.reindex
        )

    @classmethod
    def open(
        cls,
        config: KbindexConfig,
        db_path: Path | str | None = None,
        embedder: EmbeddingGenerator | None = None,
        clock: timestamps.Clock = timestamps.utcnow,
    ) -> Pipeline:
        """Connect to (and migrate) the configured database, load sources, wire up."""
        conn = Database(db_path or config.database.path).connect()
        initialize(conn)
        try:
            store, catalog = load_sources(config.sources)
        except Exception:
            conn.close()
            raise
        return cls(conn, config, content_store=store, catalog=catalog, embedder=embedder, clock=clock)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> Pipeline:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def run_due(self, now: datetime | None = None) -> dict[str, ReindexResult]:
        """Run the callback of every due hook and advance its registration.

        A due hook with no callback is advanced (or dropped, if one-shot) without
        running anything.
        """
        when = now or self._clock()
        callbacks = self.reindexer.hooks()
        ran: dict[str, ReindexResult] = {}
        for schedule in self.scheduler.due(when):
            callback = callbacks.get(schedule.hook)
            if callback is None:
                # still advanced, so the warning repeats once per interval, not every tick
                self._log.warning("unknown_hook", hook=schedule.hook)
            else:
                ran[schedule.hook] = callback()
            self.scheduler.mark_run(schedule.hook, when)
        return ran

    def tick(self, now: datetime | None = None) -> TickResult:
        """Due schedules first, then one batch of the job queue."""
        hooks_run = self.run_due(now)
        return TickResult(hooks_run=hooks_run, queue=self.queue.process_queue())
