"""
Orchestrator - Job Queue.

============================================================
RESPONSIBILITY
============================================================
Persistent queue of ingestion jobs, stored in the
ingestion_jobs table.

- enqueue: add a job for one source
- claim_next: atomically move the oldest ready job to running
- complete / fail: finish an attempt, requeueing with a delay
  when a retry is due
- requeue_stale: recover jobs orphaned by a crashed worker

Every operation runs in its own short session and commits
before returning, so no transaction is held across an await.

============================================================
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.clock import ClockFactory, ClockProtocol, ensure_utc
from data_ingestion.types import IngestionJob, SourceDescriptor
from storage.models.jobs import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_QUEUED,
    JOB_STATUS_RUNNING,
    IngestionJobRecord,
)
from storage.repositories.jobs import JobRepository


logger = logging.getLogger(__name__)

CLAIM_BATCH_SIZE = 5


def record_to_job(record: IngestionJobRecord) -> IngestionJob:
    return IngestionJob(
        job_id=record.id,
        source=SourceDescriptor.from_dict(record.config),
        enqueued_at=ensure_utc(record.enqueued_at),
        attempts=record.attempts,
        max_attempts=record.max_attempts,
        name=record.name,
    )


class JobQueue:
    """
    SQL-backed job queue shared by any number of worker processes.

    Usage:
        queue = JobQueue(db.new_session)
        queue.enqueue(source)
        job = queue.claim_next()
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def _now(self) -> datetime:
        return (self._clock or ClockFactory.get_clock()).now()

    # --------------------------------------------------------
    # Producers
    # --------------------------------------------------------

    def enqueue(
        self,
        source: SourceDescriptor,
        name: Optional[str] = None,
        max_attempts: int = 3,
    ) -> IngestionJob:
        """
        Add a job for `source`.

        A named job is not added twice: while a queued or running
        job with the same name exists, that job is returned instead.
        """
        session = self._session_factory()
        try:
            repo = JobRepository(session)
            if name:
                existing = repo.find_active_by_name(name)
                if existing is not None:
                    logger.debug(f"Job '{name}' already active ({existing.id}), not enqueued again")
                    return record_to_job(existing)

            record = repo.add(
                source_key=source.key,
                config=source.to_dict(),
                now=self._now(),
                name=name,
                max_attempts=max_attempts,
            )
            repo.commit({"source_key": source.key})
            logger.debug(f"Enqueued job {record.id} for {source.key}")
            return record_to_job(record)
        finally:
            session.close()

    # --------------------------------------------------------
    # Consumers
    # --------------------------------------------------------

    def claim_next(self, now: Optional[datetime] = None) -> Optional[IngestionJob]:
        """Claim the oldest ready job, or None if nothing is ready."""
        now = now or self._now()
        session = self._session_factory()
        try:
            repo = JobRepository(session)
            for job_id in repo.next_ready_ids(now, limit=CLAIM_BATCH_SIZE):
                if not repo.try_claim(job_id, now):
                    # Another worker took it between select and update
                    continue
                repo.commit({"id": str(job_id)})
                record = repo.get(job_id)
                session.commit()
                return record_to_job(record)
            return None
        finally:
            session.close()

    def complete(self, job_id: UUID) -> None:
        self._finish(lambda repo, now: repo.mark_completed(job_id, now))

    def fail(self, job_id: UUID, error: str, retry_at: Optional[datetime] = None) -> None:
        """Requeue the job to run at `retry_at`, or mark it failed for good when None."""
        if retry_at is None:
            self._finish(lambda repo, now: repo.mark_failed(job_id, now, error))
        else:
            self._finish(lambda repo, now: repo.requeue(job_id, retry_at, error))

    def requeue_stale(self, older_than_seconds: float) -> int:
        """Return jobs running for longer than `older_than_seconds` to the queue."""
        now = self._now()
        started_before = now - timedelta(seconds=older_than_seconds)
        count = self._finish(lambda repo, _: repo.requeue_stale(started_before, now))
        if count:
            logger.warning(f"Requeued {count} stale job(s) started before {started_before.isoformat()}")
        return count

    # --------------------------------------------------------
    # Inspection
    # --------------------------------------------------------

    def get(self, job_id: UUID) -> Optional[IngestionJobRecord]:
        session = self._session_factory()
        try:
            return JobRepository(session).get(job_id)
        finally:
            session.close()

    def pending_count(self) -> int:
        return self.stats()[JOB_STATUS_QUEUED]

    def stats(self) -> Dict[str, int]:
        """Number of jobs per status."""
        session = self._session_factory()
        try:
            repo = JobRepository(session)
            return {
                status: repo.count_by_status(status)
                for status in (
                    JOB_STATUS_QUEUED,
                    JOB_STATUS_RUNNING,
                    JOB_STATUS_COMPLETED,
                    JOB_STATUS_FAILED,
                )
            }
        finally:
            session.close()

    def next_run_after(self) -> Optional[datetime]:
        """When the earliest queued job becomes ready, or None if none is queued."""
        session = self._session_factory()
        try:
            return ensure_utc(JobRepository(session).next_run_after())
        finally:
            session.close()

    def _finish(self, operation):
        session = self._session_factory()
        try:
            repo = JobRepository(session)
            result = operation(repo, self._now())
            repo.commit()
            return result
        finally:
            session.close()
