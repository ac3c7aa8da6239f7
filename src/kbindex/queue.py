"""Durable ingestion job queue with retry and capped exponential backoff.

State machine::

    pending -> processing -> completed
                          -> retry -> processing ...
                          -> failed

``completed`` and ``failed`` are terminal. A job is claimed with a conditional
UPDATE, so two ticks racing for the same row cannot both run it. A handler
failure schedules a retry ``min(max_backoff, 2 ** retry_count)`` seconds out
(``retry_count`` already incremented) until ``max_retries`` is exhausted. A
payload that cannot be decoded fails immediately; retrying cannot fix it.
A job left in ``processing`` past ``stall_timeout`` by a crashed tick is fed
through the same retry policy at the start of the next batch.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Mapping

from kbindex import timestamps
from kbindex.config import QueueCfg
from kbindex.db.models import IngestionJob, JobStatus
from kbindex.db.repository import Repository
from kbindex.errors import InvalidJobStatus, InvalidJobType, JobNotFound, PayloadError
from kbindex.ingest.api_endpoint import ApiOptions
from kbindex.logging import get_logger


class JobType(str, Enum):
    CRAWL_URL = "crawl_url"
    PROCESS_CONTENT = "process_content"
    INDEX_CHUNKS = "index_chunks"
    PROCESS_DOCUMENT = "process_document"
    PROCESS_CATALOG_ITEM = "process_catalog_item"
    PROCESS_API = "process_api"


# ------------------------------------------------------------------
# Payloads
# ------------------------------------------------------------------

class _Payload:
    """Shared JSON (de)serialisation for the typed payload dataclasses."""

    @classmethod
    def from_dict(cls, data: Any):
        if not isinstance(data, Mapping):
            raise PayloadError(f"{cls.__name__} expects an object, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise PayloadError(f"{cls.__name__}: unknown field(s) {', '.join(unknown)}")
        try:
            return cls(**data)
        except TypeError as exc:
            raise PayloadError(f"{cls.__name__}: {exc}") from exc

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def _require(self, name: str, kind: type | tuple[type, ...], optional: bool = False) -> None:
        value = getattr(self, name)
        if value is None and optional:
            return
        # bool is an int subclass; never accept it where a number is expected
        if isinstance(value, bool) and kind is not bool and bool not in _as_tuple(kind):
            raise PayloadError(f"{type(self).__name__}.{name} has the wrong type")
        if not isinstance(value, kind):
            raise PayloadError(f"{type(self).__name__}.{name} has the wrong type")


def _as_tuple(kind: type | tuple[type, ...]) -> tuple[type, ...]:
    return kind if isinstance(kind, tuple) else (kind,)


@dataclass
class CrawlUrlPayload(_Payload):
    """Re-index one source by URL; the recorded source type picks the pipeline."""

    url: str
    force_reindex: bool = False
    source_type: str | None = None
    source_id: int | None = None

    def __post_init__(self) -> None:
        self._require("url", str)
        if not self.url:
            raise PayloadError("CrawlUrlPayload.url must not be empty")
        self._require("force_reindex", bool)
        self._require("source_type", str, optional=True)
        self._require("source_id", int, optional=True)


@dataclass
class ProcessContentPayload(_Payload):
    source_url: str
    content: str
    source_type: str = "text"
    source_id: int | None = None
    chunk_size: int | None = None
    chunk_overlap: int | None = None
    method: str | None = None

    def __post_init__(self) -> None:
        self._require("source_url", str)
        self._require("content", str)
        self._require("source_type", str)
        self._require("source_id", int, optional=True)
        self._require("chunk_size", int, optional=True)
        self._require("chunk_overlap", int, optional=True)
        self._require("method", str, optional=True)


@dataclass
class IndexChunksPayload(_Payload):
    source_url: str
    chunks: list[str] = field(default_factory=list)
    source_type: str = "text"
    source_id: int | None = None

    def __post_init__(self) -> None:
        self._require("source_url", str)
        self._require("chunks", list)
        if not all(isinstance(c, str) for c in self.chunks):
            raise PayloadError("IndexChunksPayload.chunks must be a list of strings")
        self._require("source_type", str)
        self._require("source_id", int, optional=True)


@dataclass
class ProcessDocumentPayload(_Payload):
    path: str
    source_id: int | None = None
    force_reindex: bool = False

    def __post_init__(self) -> None:
        self._require("path", str)
        if not self.path:
            raise PayloadError("ProcessDocumentPayload.path must not be empty")
        self._require("source_id", int, optional=True)
        self._require("force_reindex", bool)


@dataclass
class ProcessCatalogItemPayload(_Payload):
    item_id: int
    force_reindex: bool = False

    def __post_init__(self) -> None:
        self._require("item_id", int)
        self._require("force_reindex", bool)


@dataclass
class ProcessApiPayload(_Payload):
    url: str
    options: dict[str, Any] = field(default_factory=dict)
    force_reindex: bool = False

    def __post_init__(self) -> None:
        self._require("url", str)
        if not self.url:
            raise PayloadError("ProcessApiPayload.url must not be empty")
        self._require("options", dict)
        try:
            ApiOptions.from_dict(self.options)
        except (AttributeError, TypeError, ValueError) as exc:
            raise PayloadError(f"ProcessApiPayload.options: {exc}") from exc
        self._require("force_reindex", bool)


PAYLOAD_TYPES: dict[JobType, type[_Payload]] = {
    JobType.CRAWL_URL: CrawlUrlPayload,
    JobType.PROCESS_CONTENT: ProcessContentPayload,
    JobType.INDEX_CHUNKS: IndexChunksPayload,
    JobType.PROCESS_DOCUMENT: ProcessDocumentPayload,
    JobType.PROCESS_CATALOG_ITEM: ProcessCatalogItemPayload,
    JobType.PROCESS_API: ProcessApiPayload,
}

Handler = Callable[[Any], object]


def parse_job_type(value: str | JobType) -> JobType:
    try:
        return JobType(value)
    except ValueError as exc:
        raise InvalidJobType(
            f"Invalid job type '{value}'. Valid types: {', '.join(t.value for t in JobType)}"
        ) from exc


def decode_payload(job_type: JobType, raw: str) -> _Payload:
    """Decode a stored payload into its typed dataclass.

    Raises:
        PayloadError: Invalid JSON or a payload that does not fit the job type.
    """
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise PayloadError(f"Payload is not valid JSON: {exc}") from exc
    return PAYLOAD_TYPES[job_type].from_dict(data)


def backoff_delay(retry_count: int, cap: int = 300) -> int:
    """Seconds to wait before attempt number ``retry_count + 1``."""
    return min(cap, 2**retry_count)


# ------------------------------------------------------------------
# Queue
# ------------------------------------------------------------------

@dataclass
class QueueRunResult:
    attempted: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0


_COMPLETED = "completed"
_RETRY = "retry"
_FAILED = "failed"
_SKIPPED = "skipped"


class JobQueue:
    """Persistent FIFO-by-priority queue of ingestion jobs.

    Args:
        repo: Open Repository (owner of the ``ingestion_jobs`` table).
        config: ``queue`` config section.
        handlers: ``JobType -> handler(payload)`` dispatch table.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        repo: Repository,
        config: QueueCfg | None = None,
        handlers: Mapping[JobType, Handler] | None = None,
        clock: timestamps.Clock = timestamps.utcnow,
        logger=None,
    ) -> None:
        self._repo = repo
        self._config = config or QueueCfg()
        self._handlers: dict[JobType, Handler] = dict(handlers or {})
        self._clock = clock
        self._log = logger or get_logger(__name__)

    # ------------------------------------------------------------------
    # Enqueue / inspect
    # ------------------------------------------------------------------

    def add_job(
        self,
        job_type: str | JobType,
        payload: _Payload | Mapping[str, Any],
        priority: int | None = None,
        delay: int = 0,
        max_retries: int | None = None,
    ) -> int:
        """Enqueue a job and return its id.

        Raises:
            InvalidJobType: *job_type* is not a registered JobType.
            PayloadError: *payload* does not fit the job type.
        """
        kind = parse_job_type(job_type)
        payload_cls = PAYLOAD_TYPES[kind]
        if isinstance(payload, _Payload):
            if not isinstance(payload, payload_cls):
                raise PayloadError(
                    f"{kind.value} expects {payload_cls.__name__}, got {type(payload).__name__}"
                )
            typed = payload
        else:
            typed = payload_cls.from_dict(payload)

        retries = self._config.max_retries if max_retries is None else max_retries
        if retries < 0:
            raise ValueError("max_retries must be >= 0")
        now = self._clock()
        job_id = self._repo.add_job(
            job_type=kind.value,
            payload=json.dumps(typed.to_dict()),
            priority=self._config.default_priority if priority is None else priority,
            max_retries=retries,
            scheduled_at=timestamps.to_sql(now + timedelta(seconds=max(0, delay))),
            now=timestamps.to_sql(now),
        )
        self._log.info("job_added", job_id=job_id, job_type=kind.value, delay=delay)
        return job_id

    def get_job(self, job_id: int) -> IngestionJob | None:
        return self._repo.get_job(job_id)

    def delete_job(self, job_id: int) -> bool:
        return self._repo.delete_job(job_id)

    def get_queue_stats(self) -> dict[str, int]:
        counts = self._repo.job_counts()
        counts["total"] = sum(counts.values())
        return counts

    def purge_finished(self, older_than_days: int | None = None) -> int:
        """Delete completed/failed jobs not touched in *older_than_days* days."""
        days = self._config.retention_days if older_than_days is None else older_than_days
        cutoff = timestamps.to_sql(self._clock() - timedelta(days=days))
        removed = self._repo.purge_jobs(cutoff)
        if removed:
            self._log.info("jobs_purged", removed=removed, older_than_days=days)
        return removed

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_job(self, job_id: int) -> bool:
        """Run one job. True only if it completed.

        Returns False (no state change) when the job is not yet due or another
        tick claimed it first; False after recording a retry or failure.

        Raises:
            JobNotFound: No job with *job_id*.
            InvalidJobStatus: The job is not pending or retry.
        """
        return self._run(job_id) == _COMPLETED

    def process_queue(self, job_id: int | None = None) -> QueueRunResult:
        """Run one job by id, or one batch of due jobs in priority order.

        Jobs are selected once at the start of the batch, so a retry scheduled
        during this call is never re-attempted by it.
        """
        result = QueueRunResult()
        if job_id is not None:
            ids = [job_id]
        else:
            self.recover_stalled()
            now = timestamps.to_sql(self._clock())
            ids = self._repo.ready_job_ids(now, self._config.batch_size)

        for jid in ids:
            result.attempted += 1
            try:
                outcome = self._run(jid)
            except (JobNotFound, InvalidJobStatus) as exc:
                if job_id is not None:
                    raise
                self._log.info("job_skipped", job_id=jid, reason=str(exc))
                outcome = _SKIPPED
            if outcome == _COMPLETED:
                result.completed += 1
            elif outcome == _RETRY:
                result.retried += 1
            elif outcome == _FAILED:
                result.failed += 1
            else:
                result.skipped += 1

        if ids:
            self._log.info("queue_tick", **asdict(result))
        return result

    def recover_stalled(self) -> int:
        """Put jobs left in ``processing`` longer than ``stall_timeout`` back on the queue.

        A tick that dies mid-job never records an outcome, so the row would
        otherwise stay claimed forever. Recovered jobs go through the normal
        retry policy: rescheduled with backoff, or failed once retries run out.
        """
        timeout = self._config.stall_timeout
        if timeout <= 0:
            return 0
        cutoff = timestamps.to_sql(self._clock() - timedelta(seconds=timeout))
        stalled = self._repo.stalled_jobs(cutoff)
        for job in stalled:
            log = self._log.bind(job_id=job.id, job_type=job.job_type)
            log.warning("job_stalled", started_at=job.started_at)
            self._record_failure(job, f"Job stalled in processing for over {timeout}s", log)
        return len(stalled)

    def _run(self, job_id: int) -> str:
        job = self._repo.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        if job.status not in (JobStatus.PENDING.value, JobStatus.RETRY.value):
            raise InvalidJobStatus(f"Job {job_id} has status '{job.status}' and cannot be executed")

        now = self._clock()
        scheduled = timestamps.parse(job.scheduled_at)
        if scheduled is not None and scheduled > now:
            return _SKIPPED
        if not self._repo.claim_job(job_id, timestamps.to_sql(now)):
            self._log.info("job_claimed_elsewhere", job_id=job_id)
            return _SKIPPED

        log = self._log.bind(job_id=job_id, job_type=job.job_type)
        try:
            kind = parse_job_type(job.job_type)
            payload = decode_payload(kind, job.payload)
        except (InvalidJobType, PayloadError) as exc:
            self._repo.fail_job(job_id, str(exc), timestamps.to_sql(self._clock()))
            log.error("job_payload_invalid", error=str(exc))
            return _FAILED

        handler = self._handlers.get(kind)
        if handler is None:
            message = f"No handler registered for job type '{kind.value}'"
            self._repo.fail_job(job_id, message, timestamps.to_sql(self._clock()))
            log.error("job_handler_missing")
            return _FAILED

        log.info("job_started", attempt=job.retry_count + 1)
        try:
            handler(payload)
        except Exception as exc:  # any handler failure goes through the retry policy
            return self._record_failure(job, f"{type(exc).__name__}: {exc}", log)

        self._repo.complete_job(job_id, timestamps.to_sql(self._clock()))
        log.info("job_completed")
        return _COMPLETED

    def _record_failure(self, job: IngestionJob, message: str, log) -> str:
        now = self._clock()
        if job.retry_count < job.max_retries:
            retry_count = job.retry_count + 1
            delay = backoff_delay(retry_count, self._config.max_backoff)
            self._repo.retry_job(
                job.id,
                retry_count=retry_count,
                scheduled_at=timestamps.to_sql(now + timedelta(seconds=delay)),
                error=message,
                now=timestamps.to_sql(now),
            )
            log.warning("job_retry_scheduled", retry_count=retry_count, delay=delay, error=message)
            return _RETRY

        self._repo.fail_job(job.id, message, timestamps.to_sql(now))
        log.error("job_failed", retry_count=job.retry_count, error=message)
        return _FAILED
