"""Scheduled re-indexing.

Two sweeps are registered with the scheduler:

- ``reindex_content``: every indexed source is checked against its origin and
  enqueued when it changed or is older than ``reindex.force_after_days``.
- ``reindex_stale``: sources not indexed within the freshness threshold are
  enqueued without any origin check.

Registrations live in the ``schedules`` table and are driven by ticks
(``Pipeline.run_due``); nothing runs in the background.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from kbindex import timestamps
from kbindex.config import REINDEX_INTERVALS, ReindexCfg
from kbindex.db.models import Schedule, SourceType
from kbindex.db.repository import Repository
from kbindex.errors import KbindexError
from kbindex.freshness import FreshnessTracker
from kbindex.logging import get_logger
from kbindex.queue import CrawlUrlPayload, JobQueue, JobType

REINDEX_HOOK = "reindex_content"
STALE_REINDEX_HOOK = "reindex_stale"

_RUN_HOUR = 2
_RECURRING = ("daily", "weekly", "monthly")


def next_run_time(interval: str, now: datetime) -> datetime:
    """Next wake-up for *interval*, at 02:00 in *now*'s timezone.

    daily: tomorrow. weekly: the next Monday strictly after today.
    monthly: the 1st of next month.

    Raises:
        ValueError: Unknown interval.
    """
    today = now.replace(hour=_RUN_HOUR, minute=0, second=0, microsecond=0)
    if interval == "daily":
        return today + timedelta(days=1)
    if interval == "weekly":
        days_ahead = (7 - now.weekday()) % 7 or 7
        return today + timedelta(days=days_ahead)
    if interval == "monthly":
        if now.month == 12:
            return today.replace(year=now.year + 1, month=1, day=1)
        return today.replace(month=now.month + 1, day=1)
    raise ValueError(f"Invalid re-index interval: '{interval}'")


# ------------------------------------------------------------------
# Scheduler substrate
# ------------------------------------------------------------------

class SqliteScheduler:
    """Named wake-ups persisted in the ``schedules`` table."""

    def __init__(
        self,
        repo: Repository,
        clock: timestamps.Clock = timestamps.utcnow,
        logger=None,
    ) -> None:
        self._repo = repo
        self._clock = clock
        self._log = logger or get_logger(__name__)

    def register_recurring(
        self, hook: str, interval: str, first_run: datetime | None = None
    ) -> datetime:
        """(Re)register *hook* to run every *interval*. Returns the first run time."""
        if interval not in _RECURRING:
            raise ValueError(f"Invalid re-index interval: '{interval}'")
        at = first_run or next_run_time(interval, self._clock())
        self._repo.upsert_schedule(hook, interval, timestamps.to_sql(at))
        self._log.info("hook_registered", hook=hook, interval=interval, next_run=timestamps.to_sql(at))
        return at

    def register_once(self, hook: str, at: datetime) -> None:
        self._repo.upsert_schedule(hook, None, timestamps.to_sql(at))
        self._log.info("hook_registered", hook=hook, next_run=timestamps.to_sql(at))

    def unregister(self, hook: str) -> bool:
        removed = self._repo.delete_schedule(hook)
        if removed:
            self._log.info("hook_unregistered", hook=hook)
        return removed

    def next_run(self, hook: str) -> datetime | None:
        schedule = self._repo.get_schedule(hook)
        return timestamps.parse(schedule.next_run_at) if schedule else None

    def list_hooks(self) -> list[Schedule]:
        return self._repo.list_schedules()

    def due(self, now: datetime | None = None) -> list[Schedule]:
        return self._repo.due_schedules(timestamps.to_sql(now or self._clock()))

    def mark_run(self, hook: str, now: datetime | None = None) -> None:
        """Advance a recurring hook past *now*; drop a one-shot hook."""
        when = now or self._clock()
        schedule = self._repo.get_schedule(hook)
        if schedule is None:
            return
        if schedule.interval is None:
            self._repo.delete_schedule(hook)
            return
        self._repo.mark_schedule_run(
            hook,
            last_run_at=timestamps.to_sql(when),
            next_run_at=timestamps.to_sql(next_run_time(schedule.interval, when)),
        )


# ------------------------------------------------------------------
# Re-index sweeps
# ------------------------------------------------------------------

@dataclass
class ReindexResult:
    total: int = 0
    queued: int = 0
    errors: int = 0


class ScheduledReindexer:
    """Enqueue ``crawl_url`` jobs for sources that need a fresh copy.

    Args:
        repo: Open Repository (source listing).
        freshness: Tracker used for origin checks and stale sweeps.
        queue: Job queue receiving the re-index jobs.
        scheduler: Substrate holding the sweep registrations.
        config: ``reindex`` config section.
    """

    def __init__(
        self,
        repo: Repository,
        freshness: FreshnessTracker,
        queue: JobQueue,
        scheduler: SqliteScheduler,
        config: ReindexCfg | None = None,
        logger=None,
    ) -> None:
        self._repo = repo
        self._freshness = freshness
        self._queue = queue
        self._scheduler = scheduler
        self._config = config or ReindexCfg()
        self._log = logger or get_logger(__name__)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def schedule(self, interval: str | None = None) -> datetime | None:
        """Replace the full-sweep registration. Returns the next run, None for ``never``."""
        return self._register(REINDEX_HOOK, interval or self._config.interval)

    def schedule_stale(self, interval: str | None = None) -> datetime | None:
        return self._register(STALE_REINDEX_HOOK, interval or self._config.stale_interval)

    def _register(self, hook: str, interval: str) -> datetime | None:
        if interval not in REINDEX_INTERVALS:
            raise ValueError(
                f"Invalid re-index interval: '{interval}'. "
                f"Valid: {', '.join(sorted(REINDEX_INTERVALS))}"
            )
        self._scheduler.unregister(hook)
        if interval == "never":
            self._log.info("reindex_not_scheduled", hook=hook)
            return None
        return self._scheduler.register_recurring(hook, interval)

    def hooks(self) -> dict[str, Callable[[], ReindexResult]]:
        return {
            REINDEX_HOOK: self.execute_reindex,
            STALE_REINDEX_HOOK: self.execute_stale_reindex,
        }

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def execute_reindex(self) -> ReindexResult:
        """Enqueue every source whose origin changed or that is too old."""
        sources = sorted(
            (
                ref
                for ref in self._repo.list_sources()
                if ref.source_url and ref.source_type != SourceType.TEXT.value
            ),
            key=lambda ref: ref.source_url,
        )
        result = ReindexResult(total=len(sources))
        for ref in sources:
            try:
                updated = self._freshness.check_source_updated(
                    ref.source_url, ref.source_type, ref.source_id
                )
            except KbindexError as exc:
                result.errors += 1
                self._log.warning("origin_check_failed", source_url=ref.source_url, error=str(exc))
                continue
            if updated or self._is_overdue(ref.source_url):
                self._enqueue(ref.source_url, ref.source_type, ref.source_id, result)

        self._log.info("reindex_sweep_finished", **vars(result))
        return result

    def execute_stale_reindex(self) -> ReindexResult:
        """Enqueue stale sources without consulting their origin."""
        stale = [
            s
            for s in self._freshness.get_stale_content(limit=self._config.stale_batch_size)
            if s.source_url and s.source_type != SourceType.TEXT.value
        ]
        result = ReindexResult(total=len(stale))
        for item in stale:
            self._enqueue(item.source_url, item.source_type, item.source_id, result)
        self._log.info("stale_sweep_finished", **vars(result))
        return result

    def trigger_manual_reindex(self, only_stale: bool = False) -> ReindexResult:
        self._log.info("manual_reindex_triggered", only_stale=only_stale)
        return self.execute_stale_reindex() if only_stale else self.execute_reindex()

    def _is_overdue(self, source_url: str) -> bool:
        view = self._freshness.get_freshness(source_url)
        return view is not None and view.age_days > self._config.force_after_days

    def _enqueue(
        self, source_url: str, source_type: str, source_id: int | None, result: ReindexResult
    ) -> None:
        try:
            self._queue.add_job(
                JobType.CRAWL_URL,
                CrawlUrlPayload(
                    url=source_url,
                    force_reindex=True,
                    source_type=source_type,
                    source_id=source_id,
                ),
            )
        except KbindexError as exc:
            result.errors += 1
            self._log.warning("reindex_enqueue_failed", source_url=source_url, error=str(exc))
            return
        result.queued += 1
