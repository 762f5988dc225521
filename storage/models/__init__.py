"""
Storage Models Package.

============================================================
MODEL ORGANIZATION
============================================================

Deals (deals.py)
- DealRecord

Job Queue (jobs.py)
- IngestionJobRecord

============================================================
"""

from storage.models.base import Base, TimestampMixin
from storage.models.deals import DEAL_STATUS_PENDING, DealRecord
from storage.models.jobs import (
    ACTIVE_JOB_STATUSES,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_QUEUED,
    JOB_STATUS_RUNNING,
    IngestionJobRecord,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "DEAL_STATUS_PENDING",
    "DealRecord",
    "ACTIVE_JOB_STATUSES",
    "JOB_STATUS_COMPLETED",
    "JOB_STATUS_FAILED",
    "JOB_STATUS_QUEUED",
    "JOB_STATUS_RUNNING",
    "IngestionJobRecord",
]
