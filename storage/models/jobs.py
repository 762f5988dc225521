"""
Ingestion Job ORM Models.

============================================================
PURPOSE
============================================================
Backs the persistent job queue. One row per job submission;
the row survives worker restarts so queued and retrying jobs
are never lost.

============================================================
LIFECYCLE
============================================================
queued -> running -> completed
                  -> queued (retry scheduled via run_after)
                  -> failed (attempts exhausted or non-recoverable)

============================================================
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


JOB_STATUS_QUEUED = "queued"
JOB_STATUS_RUNNING = "running"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"

ACTIVE_JOB_STATUSES = (JOB_STATUS_QUEUED, JOB_STATUS_RUNNING)


class IngestionJobRecord(Base):
    """A single ingestion job for one source."""

    __tablename__ = "ingestion_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    name: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        comment="Optional job name; at most one active job per name"
    )

    source_key: Mapped[str] = mapped_column(String(100), nullable=False)

    config: Mapped[Dict[str, Any]] = mapped_column(
        nullable=False,
        comment="Serialized SourceDescriptor"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JOB_STATUS_QUEUED,
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    enqueued_at: Mapped[datetime] = mapped_column(nullable=False)

    run_after: Mapped[datetime] = mapped_column(
        nullable=False,
        comment="Earliest time the job may be claimed"
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    finished_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_ingestion_jobs_claim", "status", "run_after"),
        Index("idx_ingestion_jobs_name", "name"),
    )

    def __repr__(self) -> str:
        return f"<IngestionJobRecord {self.id} {self.source_key} {self.status}>"
