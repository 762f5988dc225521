"""
Orchestrator - Job Scheduler.

============================================================
RESPONSIBILITY
============================================================
Pulls jobs from the JobQueue and runs them through a handler.

- At most `parallelism` jobs run at once (asyncio.Semaphore)
- Job starts are throttled by a DispatchRateLimiter
- A job that raises is retried with exponential backoff
  (base_delay * 2 ** (attempt - 1)) until its attempts run out
- Non-recoverable errors fail the job on the first attempt
- Completion and failure are reported through hooks

Item-level errors never reach the scheduler: the handler
returns a ProcessingResult with them counted.

============================================================
USAGE
============================================================
```python
scheduler = JobScheduler(queue, service.run_job, SchedulerConfig())
scheduler.on_completed(lambda job, result: ...)
scheduler.submit(source)
await scheduler.run_until_idle()
```

============================================================
"""

import asyncio
import contextvars
import inspect
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from uuid import UUID

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import PipelineException
from data_ingestion.types import IngestionJob, IngestionMetrics, ProcessingResult, SourceDescriptor
from orchestrator.config import SchedulerConfig
from orchestrator.job_queue import JobQueue
from orchestrator.rate_limiter import DispatchRateLimiter


JobHandler = Callable[[IngestionJob], Awaitable[ProcessingResult]]
CompletedHook = Callable[[IngestionJob, ProcessingResult], Any]
FailedHook = Callable[[IngestionJob, Exception, bool], Any]

MAX_SETTLE_ATTEMPTS = 5

# Id of the job the current task is running, for log records
current_job_id: contextvars.ContextVar[str] = contextvars.ContextVar("current_job_id", default="-")


def is_recoverable(error: Exception) -> bool:
    """PipelineExceptions say so themselves; anything else is assumed transient."""
    if isinstance(error, PipelineException):
        return error.recoverable
    return True


class JobScheduler:
    """
    Bounded-parallelism, rate-limited job runner.

    Hooks may be plain functions or coroutine functions.
    on_failed hooks receive (job, error, will_retry) after every
    failed attempt.
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[ClockProtocol] = None,
        metrics: Optional[IngestionMetrics] = None,
        rate_limiter: Optional[DispatchRateLimiter] = None,
    ):
        self._queue = queue
        self._handler = handler
        self._config = config or SchedulerConfig()
        self._clock = clock
        self._metrics = metrics or IngestionMetrics()
        self._rate_limiter = rate_limiter or DispatchRateLimiter(
            max_starts=self._config.rate_limit,
            window_seconds=self._config.rate_window_seconds,
        )
        self._semaphore = asyncio.Semaphore(self._config.parallelism)
        self._in_flight: Set[asyncio.Task] = set()
        self._completed_hooks: List[CompletedHook] = []
        self._failed_hooks: List[FailedHook] = []
        self._running = False
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._unsettled: Dict[UUID, Tuple[str, Callable[[], Any], int]] = {}
        self._last_stale_check: Optional[datetime] = None
        self._sleep = asyncio.sleep
        self._logger = logging.getLogger("scheduler")

    def _now(self) -> datetime:
        return (self._clock or ClockFactory.get_clock()).now()

    @property
    def metrics(self) -> IngestionMetrics:
        return self._metrics

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def is_running(self) -> bool:
        return self._running

    # --------------------------------------------------------
    # Submission and hooks
    # --------------------------------------------------------

    def submit(self, source: SourceDescriptor, name: Optional[str] = None) -> IngestionJob:
        """Enqueue a job for `source` with the configured number of attempts."""
        job = self._queue.enqueue(source, name=name, max_attempts=self._config.job_attempts)
        self._logger.info(f"Submitted job {job.job_id} for {source.key}")
        return job

    def on_completed(self, callback: CompletedHook) -> None:
        self._completed_hooks.append(callback)

    def on_failed(self, callback: FailedHook) -> None:
        self._failed_hooks.append(callback)

    async def _emit(self, hooks: List[Callable[..., Any]], *args: Any) -> None:
        for hook in hooks:
            try:
                outcome = hook(*args)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                self._logger.error(f"Scheduler hook {getattr(hook, '__name__', hook)} failed: {e}", exc_info=True)

    # --------------------------------------------------------
    # Dispatch
    # --------------------------------------------------------

    async def _dispatch_ready(self) -> int:
        """Start every ready job a free slot allows. Returns the number started."""
        started = 0
        while not self._stop_event.is_set() and not self._semaphore.locked():
            await self._semaphore.acquire()
            try:
                job = self._queue.claim_next(self._now())
            except Exception:
                self._semaphore.release()
                raise
            if job is None:
                self._semaphore.release()
                break

            await self._rate_limiter.acquire()
            task = asyncio.create_task(self._run_job(job))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            started += 1
        return started

    async def _run_job(self, job: IngestionJob) -> None:
        current_job_id.set(str(job.job_id))
        try:
            self._logger.info(
                f"Starting job {job.job_id} for {job.source_key} "
                f"(attempt {job.attempts}/{job.max_attempts})"
            )
            try:
                result = await self._handler(job)
            except asyncio.CancelledError:
                self._settle(job, "requeue", lambda: self._queue.fail(job.job_id, "cancelled", retry_at=self._now()))
                raise
            except Exception as e:
                await self._handle_failure(job, e)
            else:
                self._settle(job, "complete", lambda: self._queue.complete(job.job_id))
                self._metrics.record_result(result)
                await self._emit(self._completed_hooks, job, result)
        finally:
            self._semaphore.release()

    def _settle(self, job: IngestionJob, action: str, record: Callable[[], Any]) -> bool:
        """
        Write a job's final state to the queue.

        A store failure here leaves the row running; the write is
        kept and retried on later polls.
        """
        try:
            record()
        except Exception as e:
            self._logger.error(f"Could not {action} job {job.job_id} for {job.source_key}: {e}", exc_info=True)
            self._unsettled[job.job_id] = (action, record, 1)
            return False
        return True

    def _retry_unsettled(self) -> None:
        for job_id, (action, record, tries) in list(self._unsettled.items()):
            try:
                record()
            except Exception as e:
                if tries + 1 >= MAX_SETTLE_ATTEMPTS:
                    del self._unsettled[job_id]
                    self._logger.error(
                        f"Giving up on {action} for job {job_id} after {tries + 1} tries, "
                        f"left for stale recovery: {e}"
                    )
                else:
                    self._unsettled[job_id] = (action, record, tries + 1)
                continue
            del self._unsettled[job_id]
            self._logger.info(f"Recorded deferred {action} for job {job_id}")

    def _recover_stale(self) -> int:
        recovered = self._queue.requeue_stale(self._config.stale_job_seconds)
        self._last_stale_check = self._now()
        if recovered:
            self._logger.info(f"Recovered {recovered} stale job(s)")
        return recovered

    async def _handle_failure(self, job: IngestionJob, error: Exception) -> None:
        message = f"{type(error).__name__}: {error}"
        will_retry = is_recoverable(error) and job.attempts < job.max_attempts

        if will_retry:
            delay = self._config.backoff_delay(job.attempts)
            retry_at = self._now() + timedelta(seconds=delay)
            self._settle(job, "requeue", lambda: self._queue.fail(job.job_id, message, retry_at=retry_at))
            self._logger.warning(
                f"Job {job.job_id} for {job.source_key} failed "
                f"(attempt {job.attempts}/{job.max_attempts}), retrying in {delay:.1f}s: {message}"
            )
        else:
            self._settle(job, "fail", lambda: self._queue.fail(job.job_id, message, retry_at=None))
            self._logger.error(
                f"Job {job.job_id} for {job.source_key} failed permanently "
                f"after {job.attempts} attempt(s): {message}"
            )

        self._metrics.record_failure(job.source_key, message, self._now())
        await self._emit(self._failed_hooks, job, error, will_retry)

    # --------------------------------------------------------
    # Run modes
    # --------------------------------------------------------

    async def run_until_idle(self) -> None:
        """
        Run until nothing is queued and nothing is in flight.

        Jobs waiting out a retry backoff count as queued, so this
        also waits for retries to finish.
        """
        while True:
            self._retry_unsettled()
            if await self._dispatch_ready():
                continue
            if self._in_flight:
                await asyncio.wait(set(self._in_flight), return_when=asyncio.FIRST_COMPLETED)
                continue

            next_at = self._queue.next_run_after()
            if next_at is None:
                if not self._unsettled:
                    return
                await self._sleep(self._config.poll_interval_seconds)
                continue
            delay = (next_at - self._now()).total_seconds()
            await self._sleep(min(max(delay, 0.0), self._config.poll_interval_seconds))

    async def start(self) -> None:
        """Start the polling loop in the background."""
        if self._running:
            self._logger.warning("Scheduler already running")
            return

        self._recover_stale()

        self._stop_event.clear()
        self._running = True
        self._loop_task = asyncio.create_task(self._poll_loop())
        self._logger.info(
            f"Scheduler started | parallelism={self._config.parallelism} "
            f"rate={self._config.rate_limit}/{self._config.rate_window_seconds}s"
        )

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._retry_unsettled()
                if self._stale_check_due():
                    self._recover_stale()
                await self._dispatch_ready()
            except Exception as e:
                self._logger.error(f"Dispatch error: {e}", exc_info=True)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._config.poll_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

    def _stale_check_due(self) -> bool:
        if self._last_stale_check is None:
            return True
        elapsed = (self._now() - self._last_stale_check).total_seconds()
        return elapsed >= self._config.stale_check_interval_seconds

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling and wait for in-flight jobs to finish."""
        if not self._running:
            return

        self._logger.info("Scheduler stopping")
        self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        if self._in_flight:
            self._logger.info(f"Waiting for {len(self._in_flight)} in-flight job(s)")
            _, pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        self._running = False
        self._logger.info("Scheduler stopped")
