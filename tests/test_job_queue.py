"""
Tests for the persistent job queue.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.clock import MockClock
from data_ingestion.types import SourceConfig, SourceDescriptor, SourceType
from orchestrator.job_queue import JobQueue
from storage.database import Database, DatabaseConfig


START = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


# =============================================================
# FIXTURES
# =============================================================

@pytest.fixture
def database():
    db = Database(DatabaseConfig(url="sqlite:///:memory:"))
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def clock():
    return MockClock(START)


@pytest.fixture
def queue(database, clock):
    return JobQueue(database.new_session, clock=clock)


@pytest.fixture
def source():
    return SourceDescriptor(
        key="feed",
        type=SourceType.RSS,
        priority=2,
        config=SourceConfig(feed_url="https://e.com/rss", headers={"X-Key": "1"}),
    )


# =============================================================
# TEST: Enqueue / Claim
# =============================================================

class TestEnqueueAndClaim:
    """Test the producer and consumer sides."""

    def test_claim_returns_full_job(self, queue, source):
        enqueued = queue.enqueue(source, name="ingest:feed", max_attempts=5)
        job = queue.claim_next()

        assert job.job_id == enqueued.job_id
        assert job.source == source
        assert job.attempts == 1
        assert job.max_attempts == 5
        assert job.enqueued_at == START
        assert queue.claim_next() is None

    def test_oldest_job_claimed_first(self, queue, source, clock):
        first = queue.enqueue(source)
        clock.advance(seconds=1)
        queue.enqueue(source)

        assert queue.claim_next().job_id == first.job_id

    def test_named_job_not_duplicated_while_active(self, queue, source):
        first = queue.enqueue(source, name="ingest:feed")
        again = queue.enqueue(source, name="ingest:feed")

        assert again.job_id == first.job_id
        assert queue.stats()["queued"] == 1

    def test_named_job_enqueued_again_after_completion(self, queue, source):
        first = queue.enqueue(source, name="ingest:feed")
        queue.claim_next()
        queue.complete(first.job_id)

        again = queue.enqueue(source, name="ingest:feed")
        assert again.job_id != first.job_id

    def test_unnamed_jobs_never_deduplicated(self, queue, source):
        queue.enqueue(source)
        queue.enqueue(source)
        assert queue.pending_count() == 2


# =============================================================
# TEST: Completion / Failure
# =============================================================

class TestFinishing:
    """Test complete, fail and retry scheduling."""

    def test_complete(self, queue, source):
        job = queue.enqueue(source)
        queue.claim_next()
        queue.complete(job.job_id)

        assert queue.stats() == {"queued": 0, "running": 0, "completed": 1, "failed": 0}

    def test_fail_without_retry(self, queue, source):
        job = queue.enqueue(source)
        queue.claim_next()
        queue.fail(job.job_id, "HTTP 404")

        record = queue.get(job.job_id)
        assert record.status == "failed"
        assert record.last_error == "HTTP 404"
        assert record.finished_at is not None

    def test_retry_waits_for_run_after(self, queue, source, clock):
        job = queue.enqueue(source)
        queue.claim_next()
        retry_at = clock.now() + timedelta(seconds=4)
        queue.fail(job.job_id, "HTTP 503", retry_at=retry_at)

        assert queue.claim_next() is None
        assert queue.next_run_after() == retry_at

        clock.advance(seconds=4)
        retried = queue.claim_next()
        assert retried.job_id == job.job_id
        assert retried.attempts == 2

    def test_next_run_after_empty(self, queue):
        assert queue.next_run_after() is None


class TestRequeueStale:
    """Jobs orphaned by a dead worker return to the queue."""

    def test_stale_running_job_requeued(self, queue, source, clock):
        job = queue.enqueue(source)
        queue.claim_next()
        clock.advance(seconds=1000)

        assert queue.requeue_stale(900) == 1
        assert queue.claim_next().job_id == job.job_id

    def test_recent_running_job_left_alone(self, queue, source, clock):
        queue.enqueue(source)
        queue.claim_next()
        clock.advance(seconds=10)

        assert queue.requeue_stale(900) == 0
        assert queue.stats()["running"] == 1
