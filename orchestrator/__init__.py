"""
Orchestrator Package - Job Scheduling Layer.

============================================================
PACKAGE OVERVIEW
============================================================
Runs ingestion jobs: a persistent job queue, a scheduler that
bounds parallelism and throttles job starts, and the worker and
CLI that wire the pipeline together.

============================================================
CORE PRINCIPLES
============================================================
1. The orchestrator has NO ingestion logic
2. One job per source invocation; items inside a job are
   processed sequentially
3. A job that raises is retried with backoff; item errors
   never retry a job

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                  IngestionWorker                    |
    |-----------------------------------------------------|
    |  JobQueue           |  SQL-backed, multi-worker     |
    |  DispatchRateLimiter|  job starts per window        |
    |  JobScheduler       |  parallelism, retry, hooks    |
    |  CLI                |  run / enqueue / status       |
    +-----------------------------------------------------+

============================================================
"""

from orchestrator.config import SchedulerConfig
from orchestrator.core import IngestionWorker, setup_logging
from orchestrator.job_queue import JobQueue
from orchestrator.rate_limiter import DispatchRateLimiter
from orchestrator.scheduler import JobScheduler


__all__ = [
    "DispatchRateLimiter",
    "IngestionWorker",
    "JobQueue",
    "JobScheduler",
    "SchedulerConfig",
    "setup_logging",
]
