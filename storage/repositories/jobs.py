"""
Ingestion Job Repository.

============================================================
PURPOSE
============================================================
Row-level operations behind the persistent job queue.

Claiming uses a conditional UPDATE (status must still be
"queued") so two worker processes polling the same table can
never both start the same job.

============================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.jobs import (
    ACTIVE_JOB_STATUSES,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_QUEUED,
    JOB_STATUS_RUNNING,
    IngestionJobRecord,
)
from storage.repositories.base import BaseRepository


class JobRepository(BaseRepository[IngestionJobRecord]):
    """Repository for IngestionJobRecord rows."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, IngestionJobRecord, "JobRepository")

    def add(
        self,
        source_key: str,
        config: Dict[str, Any],
        now: datetime,
        name: Optional[str] = None,
        max_attempts: int = 3,
    ) -> IngestionJobRecord:
        record = IngestionJobRecord(
            name=name,
            source_key=source_key,
            config=config,
            status=JOB_STATUS_QUEUED,
            attempts=0,
            max_attempts=max_attempts,
            enqueued_at=now,
            run_after=now,
        )
        return self._add(record)

    def get(self, job_id: UUID) -> Optional[IngestionJobRecord]:
        return self._get_by_id(job_id)

    def find_active_by_name(self, name: str) -> Optional[IngestionJobRecord]:
        stmt = (
            select(IngestionJobRecord)
            .where(IngestionJobRecord.name == name)
            .where(IngestionJobRecord.status.in_(ACTIVE_JOB_STATUSES))
            .limit(1)
        )
        return self._execute_scalar(stmt)

    def next_ready_ids(self, now: datetime, limit: int = 5) -> List[UUID]:
        """Ids of queued jobs whose run_after has passed, oldest first."""
        stmt = (
            select(IngestionJobRecord.id)
            .where(IngestionJobRecord.status == JOB_STATUS_QUEUED)
            .where(IngestionJobRecord.run_after <= now)
            .order_by(IngestionJobRecord.run_after, IngestionJobRecord.enqueued_at)
            .limit(limit)
        )
        try:
            return list(self._session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "next_ready_ids")
            raise

    def try_claim(self, job_id: UUID, now: datetime) -> bool:
        """Move one job from queued to running. False if another worker won."""
        stmt = (
            update(IngestionJobRecord)
            .where(IngestionJobRecord.id == job_id)
            .where(IngestionJobRecord.status == JOB_STATUS_QUEUED)
            .values(
                status=JOB_STATUS_RUNNING,
                attempts=IngestionJobRecord.attempts + 1,
                started_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self._session.execute(stmt)
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "try_claim", {"id": str(job_id)})
            raise
        return result.rowcount == 1

    def mark_completed(self, job_id: UUID, now: datetime) -> None:
        self._set_status(job_id, status=JOB_STATUS_COMPLETED, finished_at=now, last_error=None)

    def mark_failed(self, job_id: UUID, now: datetime, error: str) -> None:
        self._set_status(job_id, status=JOB_STATUS_FAILED, finished_at=now, last_error=error)

    def requeue(self, job_id: UUID, run_after: datetime, error: str) -> None:
        self._set_status(job_id, status=JOB_STATUS_QUEUED, run_after=run_after, last_error=error)

    def requeue_stale(self, started_before: datetime, now: datetime) -> int:
        """Return running jobs abandoned by a dead worker to the queue."""
        stmt = (
            update(IngestionJobRecord)
            .where(IngestionJobRecord.status == JOB_STATUS_RUNNING)
            .where(IngestionJobRecord.started_at < started_before)
            .values(status=JOB_STATUS_QUEUED, run_after=now, last_error="stale: worker lost")
            .execution_options(synchronize_session=False)
        )
        try:
            return self._session.execute(stmt).rowcount or 0
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "requeue_stale")
            raise

    def count_by_status(self, status: str) -> int:
        stmt = (
            select(func.count())
            .select_from(IngestionJobRecord)
            .where(IngestionJobRecord.status == status)
        )
        try:
            return self._session.execute(stmt).scalar() or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count_by_status")
            raise

    def next_run_after(self) -> Optional[datetime]:
        """Earliest run_after among queued jobs, or None if nothing is queued."""
        stmt = (
            select(func.min(IngestionJobRecord.run_after))
            .where(IngestionJobRecord.status == JOB_STATUS_QUEUED)
        )
        try:
            return self._session.execute(stmt).scalar()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "next_run_after")
            raise

    def _set_status(self, job_id: UUID, **values: Any) -> None:
        stmt = (
            update(IngestionJobRecord)
            .where(IngestionJobRecord.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            self._session.execute(stmt)
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "set_status", {"id": str(job_id)})
            raise
