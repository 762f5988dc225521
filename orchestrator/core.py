"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Wires the ingestion pipeline into a runnable worker.

- Sets up process-wide logging
- Builds HTTP client, fetchers, service, queue and scheduler
- Enqueues one job per enabled source
- Runs once (until idle) or forever, with graceful shutdown
  on SIGINT / SIGTERM

============================================================
ARCHITECTURAL POSITION
============================================================
- This module has NO ingestion logic
- It ONLY constructs and coordinates

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, Iterable, List, Optional

from core.clock import ClockProtocol
from data_ingestion.config import IngestionConfig
from data_ingestion.fetchers import (
    CircuitBreakerRegistry,
    FetcherRegistry,
    HttpClient,
    SourceFetcher,
    default_fetcher_registry,
)
from data_ingestion.ingestion_service import IngestionService
from data_ingestion.sources import SourceRegistry
from data_ingestion.types import IngestionJob, IngestionMetrics, ProcessingResult
from orchestrator.config import SchedulerConfig
from orchestrator.job_queue import JobQueue
from orchestrator.scheduler import JobScheduler, current_job_id
from storage.database import Database


# ============================================================
# LOGGING SETUP
# ============================================================

class JobContextFilter(logging.Filter):
    """Stamps every record with the id of the job being run, or "-"."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = current_job_id.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "job_id": getattr(record, "job_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up process-wide logging.

    Records logged while a job runs carry its id (job_id).

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(job_id)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(JobContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


# ============================================================
# WORKER
# ============================================================

class IngestionWorker:
    """
    A complete ingestion process.

    ============================================================
    USAGE
    ============================================================
    ```python
    worker = IngestionWorker(SourceRegistry.builtin(), Database(db_config))
    worker.enqueue_sources()
    metrics = await worker.run_once()
    await worker.close()
    ```

    ============================================================
    """

    def __init__(
        self,
        sources: SourceRegistry,
        database: Database,
        config: Optional[IngestionConfig] = None,
        scheduler_config: Optional[SchedulerConfig] = None,
        http: Optional[HttpClient] = None,
        api_registry: Optional[FetcherRegistry] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._sources = sources
        self._database = database
        self._config = config or IngestionConfig()
        self._http = http or HttpClient(self._config.http)
        self._api_registry = api_registry or default_fetcher_registry()
        self._shutdown_event = asyncio.Event()
        self._logger = logging.getLogger("orchestrator")

        fetcher = SourceFetcher(
            self._http,
            api_registry=self._api_registry,
            breakers=CircuitBreakerRegistry(self._config.circuit_breaker, clock),
        )
        self.service = IngestionService(
            fetcher,
            database.new_session,
            self._config,
            clock,
            offload_processing=not database.shares_one_connection,
        )
        self.queue = JobQueue(database.new_session, clock)
        self.scheduler = JobScheduler(self.queue, self.service.run_job, scheduler_config, clock)
        self.scheduler.on_completed(self._on_job_completed)
        self.scheduler.on_failed(self._on_job_failed)

        self._breakers = fetcher.breakers

    @property
    def metrics(self) -> IngestionMetrics:
        return self.scheduler.metrics

    # --------------------------------------------------------
    # Jobs
    # --------------------------------------------------------

    def enqueue_sources(self, keys: Optional[Iterable[str]] = None) -> List[IngestionJob]:
        """
        Submit one job per source.

        With no keys, every enabled source is used, highest
        priority first. Named keys must exist but may be disabled.
        """
        if keys is None:
            sources = self._sources.get_enabled_sources()
        else:
            sources = [self._sources.require_source(key) for key in keys]

        jobs = [self.scheduler.submit(source, name=f"ingest:{source.key}") for source in sources]
        self._logger.info(f"Enqueued {len(jobs)} job(s): {', '.join(s.key for s in sources)}")
        return jobs

    def validate_sources(self) -> List[str]:
        """Enabled API sources whose fetcher_ref is not registered. Logged, not fatal."""
        missing = self._api_registry.missing_refs(self._sources.get_enabled_sources())
        for key in missing:
            self._logger.warning(f"Source '{key}' has no registered API fetcher; its jobs will fail")
        return missing

    def _on_job_completed(self, job: IngestionJob, result: ProcessingResult) -> None:
        self._logger.debug(f"Job {job.job_id} completed: {result.to_dict()}")

    def _on_job_failed(self, job: IngestionJob, error: Exception, will_retry: bool) -> None:
        if not will_retry:
            breaker = self._breakers.get(job.source_key)
            self._logger.warning(
                f"Source {job.source_key} gave up after {job.attempts} attempt(s) "
                f"(breaker {breaker.state.value})"
            )

    # --------------------------------------------------------
    # Run modes
    # --------------------------------------------------------

    async def run_once(self) -> IngestionMetrics:
        """Drain the queue, retries included, then return."""
        await self.scheduler.run_until_idle()
        self._logger.info(f"Run complete: {self.health()['metrics']}")
        return self.metrics

    async def run_forever(self) -> None:
        """Poll the queue until SIGINT / SIGTERM."""
        self._install_signal_handlers()
        try:
            await self.scheduler.start()
            await self._shutdown_event.wait()
        finally:
            await self.scheduler.stop()
            self._restore_signal_handlers()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def close(self) -> None:
        await self._http.close()
        self._database.dispose()

    def health(self) -> Dict[str, Any]:
        metrics = self.metrics
        return {
            "queue": self.queue.stats(),
            "breakers": self._breakers.states(),
            "daily_counts": self.service.daily_caps.counts(),
            "metrics": {
                "jobs_completed": metrics.jobs_completed,
                "jobs_failed": metrics.jobs_failed,
                "created": metrics.total_created,
                "updated": metrics.total_updated,
                "skipped": metrics.total_skipped,
                "errors": metrics.total_errors,
            },
        }

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
        else:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._signal_handler, sig)

    def _restore_signal_handlers(self) -> None:
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)

    def _signal_handler(self, signum: Any, frame: Any = None) -> None:
        self._logger.info(f"Received signal {signum}, shutting down")
        self.request_shutdown()
