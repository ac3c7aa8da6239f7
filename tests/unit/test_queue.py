"""Tests for the durable job queue: claim, dispatch, retry and backoff."""

from __future__ import annotations

from datetime import timedelta

import pytest

from kbindex import timestamps
from kbindex.config import QueueCfg
from kbindex.db.repository import Repository
from kbindex.errors import InvalidJobStatus, InvalidJobType, JobNotFound, PayloadError
from kbindex.queue import (
    CrawlUrlPayload,
    JobQueue,
    JobType,
    ProcessApiPayload,
    backoff_delay,
    decode_payload,
)


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


class _Recorder:
    """Handler that records payloads and optionally raises."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.seen: list = []

    def __call__(self, payload):
        self.seen.append(payload)
        if self.error is not None:
            raise self.error


def _queue(repo, clock, handler=None, **cfg):
    handlers = {JobType.CRAWL_URL: handler} if handler is not None else {}
    return JobQueue(repo, QueueCfg(**cfg), handlers=handlers, clock=clock)


# ------------------------------------------------------------------
# Payloads and job types
# ------------------------------------------------------------------


def test_backoff_delay_doubles_then_caps():
    assert [backoff_delay(n) for n in (1, 2, 3)] == [2, 4, 8]
    assert backoff_delay(9) == 256
    assert backoff_delay(10) == 300
    assert backoff_delay(5, cap=10) == 10


def test_add_job_rejects_unknown_type(repo, clock):
    with pytest.raises(InvalidJobType, match="Valid types"):
        _queue(repo, clock).add_job("send_email", {"url": "x"})


def test_add_job_rejects_mismatched_payload(repo, clock):
    queue = _queue(repo, clock)
    with pytest.raises(PayloadError, match="unknown field"):
        queue.add_job(JobType.CRAWL_URL, {"path": "/tmp/a.pdf"})
    with pytest.raises(PayloadError, match="expects CrawlUrlPayload"):
        queue.add_job(JobType.CRAWL_URL, ProcessApiPayload(url="https://api.example"))


@pytest.mark.parametrize(
    "raw",
    ['{"url": 5}', '{"url": ""}', '{"url": "u", "force_reindex": 1}', "[]", "not json"],
)
def test_decode_payload_rejects_bad_payloads(raw):
    with pytest.raises(PayloadError):
        decode_payload(JobType.CRAWL_URL, raw)


def test_decode_payload_typed():
    payload = decode_payload(JobType.CRAWL_URL, '{"url": "https://a.example", "force_reindex": true}')
    assert payload == CrawlUrlPayload(url="https://a.example", force_reindex=True)


def test_api_payload_validates_options():
    with pytest.raises(PayloadError, match="options"):
        ProcessApiPayload(url="https://api.example", options={"auth_type": "digest"})


def test_add_job_defaults_and_delay(repo, clock):
    queue = _queue(repo, clock, max_retries=5, default_priority=7)
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"}, delay=60)
    job = queue.get_job(job_id)
    assert job.status == "pending"
    assert job.priority == 7
    assert job.max_retries == 5
    assert job.scheduled_at == timestamps.to_sql(clock.now + timedelta(seconds=60))


# ------------------------------------------------------------------
# Execution
# ------------------------------------------------------------------


def test_successful_job_completes(repo, clock):
    handler = _Recorder()
    queue = _queue(repo, clock, handler)
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})

    assert queue.execute_job(job_id) is True
    job = queue.get_job(job_id)
    assert job.status == "completed"
    assert job.completed_at == timestamps.to_sql(clock.now)
    assert handler.seen == [CrawlUrlPayload(url="https://a.example")]


def test_failing_job_retries_with_backoff_then_fails(repo, clock):
    handler = _Recorder(RuntimeError("upstream down"))
    queue = _queue(repo, clock, handler, max_retries=3)
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})

    for expected_count, delay in ((1, 2), (2, 4), (3, 8)):
        assert queue.execute_job(job_id) is False
        job = queue.get_job(job_id)
        assert job.status == "retry"
        assert job.retry_count == expected_count
        assert job.scheduled_at == timestamps.to_sql(clock.now + timedelta(seconds=delay))
        assert job.error_message == "RuntimeError: upstream down"
        clock.advance(seconds=delay)

    assert queue.execute_job(job_id) is False
    job = queue.get_job(job_id)
    assert job.status == "failed"
    assert job.retry_count == 3
    assert len(handler.seen) == 4


def test_retry_not_run_before_scheduled_time(repo, clock):
    handler = _Recorder(RuntimeError("boom"))
    queue = _queue(repo, clock, handler)
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})
    queue.execute_job(job_id)

    assert queue.process_queue().attempted == 0
    assert queue.execute_job(job_id) is False  # not due: no state change
    assert queue.get_job(job_id).retry_count == 1
    assert len(handler.seen) == 1


def test_zero_retries_fails_first_time(repo, clock):
    queue = _queue(repo, clock, _Recorder(RuntimeError("x")))
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"}, max_retries=0)
    queue.execute_job(job_id)
    assert queue.get_job(job_id).status == "failed"


def test_undecodable_payload_fails_without_retry(repo, clock):
    handler = _Recorder()
    queue = _queue(repo, clock, handler)
    now = timestamps.to_sql(clock.now)
    job_id = repo.add_job(
        job_type="crawl_url",
        payload="{not json",
        priority=10,
        max_retries=3,
        scheduled_at=now,
        now=now,
    )

    result = queue.process_queue()
    assert result.failed == 1
    job = queue.get_job(job_id)
    assert job.status == "failed"
    assert job.retry_count == 0
    assert "not valid JSON" in job.error_message
    assert handler.seen == []


def test_missing_handler_is_terminal(repo, clock):
    queue = _queue(repo, clock)
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})
    assert queue.execute_job(job_id) is False
    job = queue.get_job(job_id)
    assert job.status == "failed"
    assert "No handler" in job.error_message


def test_execute_job_unknown_and_finished(repo, clock):
    queue = _queue(repo, clock, _Recorder())
    with pytest.raises(JobNotFound):
        queue.execute_job(999)
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})
    queue.execute_job(job_id)
    with pytest.raises(InvalidJobStatus, match="completed"):
        queue.execute_job(job_id)


def test_claimed_job_is_not_run_twice(repo, clock):
    handler = _Recorder()
    queue = _queue(repo, clock, handler)
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})
    # another worker already holds the claim
    assert repo.claim_job(job_id, timestamps.to_sql(clock.now))
    with pytest.raises(InvalidJobStatus):
        queue.execute_job(job_id)
    assert handler.seen == []


# ------------------------------------------------------------------
# Batches
# ------------------------------------------------------------------


def test_process_queue_runs_by_priority(repo, clock):
    handler = _Recorder()
    queue = _queue(repo, clock, handler)
    queue.add_job(JobType.CRAWL_URL, {"url": "https://low.example"}, priority=20)
    queue.add_job(JobType.CRAWL_URL, {"url": "https://high.example"}, priority=1)

    result = queue.process_queue()
    assert (result.attempted, result.completed) == (2, 2)
    assert [p.url for p in handler.seen] == ["https://high.example", "https://low.example"]


def test_process_queue_respects_batch_size(repo, clock):
    handler = _Recorder()
    queue = _queue(repo, clock, handler, batch_size=2)
    for i in range(3):
        queue.add_job(JobType.CRAWL_URL, {"url": f"https://{i}.example"})
    assert queue.process_queue().completed == 2
    assert queue.process_queue().completed == 1


def test_retry_scheduled_in_batch_not_reattempted(repo, clock):
    handler = _Recorder(RuntimeError("x"))
    queue = _queue(repo, clock, handler, max_backoff=0)
    queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})
    result = queue.process_queue()
    assert (result.attempted, result.retried) == (1, 1)
    assert len(handler.seen) == 1


def test_process_queue_single_job_raises_for_missing(repo, clock):
    with pytest.raises(JobNotFound):
        _queue(repo, clock).process_queue(job_id=42)


def test_stats_and_purge(repo, clock):
    queue = _queue(repo, clock, _Recorder())
    done = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})
    queue.execute_job(done)
    queue.add_job(JobType.CRAWL_URL, {"url": "https://b.example"})

    stats = queue.get_queue_stats()
    assert stats["completed"] == 1
    assert stats["pending"] == 1
    assert stats["total"] == 2

    assert queue.purge_finished() == 0
    clock.advance(days=31)
    assert queue.purge_finished() == 1
    assert queue.get_job(done) is None


# ------------------------------------------------------------------
# Crashed ticks
# ------------------------------------------------------------------


def test_stalled_job_goes_back_to_retry(repo, clock):
    handler = _Recorder()
    queue = _queue(repo, clock, handler)
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})
    # a tick claimed the job and died before recording an outcome
    assert repo.claim_job(job_id, timestamps.to_sql(clock.now))

    clock.advance(hours=2)
    queue.process_queue()
    job = queue.get_job(job_id)
    assert job.status == "retry"
    assert job.retry_count == 1
    assert "stalled" in job.error_message
    assert handler.seen == []

    clock.advance(seconds=5)
    assert queue.process_queue().completed == 1
    assert queue.get_job(job_id).status == "completed"


def test_recent_processing_job_is_left_alone(repo, clock):
    queue = _queue(repo, clock, _Recorder())
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})
    repo.claim_job(job_id, timestamps.to_sql(clock.now))
    clock.advance(minutes=10)
    assert queue.recover_stalled() == 0
    assert queue.get_job(job_id).status == "processing"


def test_stalled_job_without_retries_left_fails(repo, clock):
    queue = _queue(repo, clock, _Recorder())
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"}, max_retries=0)
    repo.claim_job(job_id, timestamps.to_sql(clock.now))
    clock.advance(hours=2)
    assert queue.recover_stalled() == 1
    assert queue.get_job(job_id).status == "failed"


def test_stall_recovery_can_be_disabled(repo, clock):
    queue = _queue(repo, clock, _Recorder(), stall_timeout=0)
    job_id = queue.add_job(JobType.CRAWL_URL, {"url": "https://a.example"})
    repo.claim_job(job_id, timestamps.to_sql(clock.now))
    clock.advance(days=3)
    assert queue.recover_stalled() == 0
    assert queue.get_job(job_id).status == "processing"
