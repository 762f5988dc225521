"""
Orchestrator - Configuration.

Scheduler settings, overridable through DEALS_* environment
variables.
"""

from dataclasses import dataclass

from dotenv import load_dotenv

from core.exceptions import InvalidConfigError
from data_ingestion.config import env_float, env_int


@dataclass
class SchedulerConfig:
    """Job scheduler settings."""

    parallelism: int = 3
    """Maximum number of jobs running at once."""

    rate_limit: int = 10
    """Maximum job starts per rate_window_seconds."""

    rate_window_seconds: float = 1.0

    job_attempts: int = 3
    """Attempts per job, the first run included."""

    backoff_base_seconds: float = 2.0
    """Delay before the first retry; doubled on every further retry."""

    poll_interval_seconds: float = 1.0
    """How often the long-running loop polls for ready jobs."""

    stale_job_seconds: float = 900.0
    """A job running longer than this is assumed abandoned and requeued."""

    stale_check_interval_seconds: float = 60.0
    """How often the long-running loop looks for abandoned jobs."""

    def __post_init__(self) -> None:
        if self.parallelism < 1:
            raise InvalidConfigError("parallelism", self.parallelism, "must be at least 1")
        if self.rate_limit < 1:
            raise InvalidConfigError("rate_limit", self.rate_limit, "must be at least 1")
        if self.job_attempts < 1:
            raise InvalidConfigError("job_attempts", self.job_attempts, "must be at least 1")

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return self.backoff_base_seconds * 2 ** (max(attempt, 1) - 1)

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        load_dotenv()
        defaults = cls()
        return cls(
            parallelism=env_int("DEALS_PARALLELISM", defaults.parallelism),
            rate_limit=env_int("DEALS_RATE_LIMIT", defaults.rate_limit),
            rate_window_seconds=env_float("DEALS_RATE_WINDOW_SECONDS", defaults.rate_window_seconds),
            job_attempts=env_int("DEALS_JOB_ATTEMPTS", defaults.job_attempts),
            backoff_base_seconds=env_float("DEALS_BACKOFF_BASE_SECONDS", defaults.backoff_base_seconds),
            poll_interval_seconds=env_float("DEALS_POLL_INTERVAL_SECONDS", defaults.poll_interval_seconds),
            stale_job_seconds=env_float("DEALS_STALE_JOB_SECONDS", defaults.stale_job_seconds),
            stale_check_interval_seconds=env_float(
                "DEALS_STALE_CHECK_INTERVAL_SECONDS", defaults.stale_check_interval_seconds
            ),
        )
