"""
Data Ingestion - Configuration.

============================================================
PURPOSE
============================================================
All configuration for fetching, normalizing and deduplicating
deals. Values come from dataclass defaults, overridable through
DEALS_* environment variables (a .env file is honoured).

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from core.exceptions import InvalidConfigError


# ============================================================
# HTTP CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry policy for a single HTTP request.

    A request is retried only for timeouts, connection errors and
    the statuses in retryable_statuses.
    """

    max_retries: int = 3
    """Maximum number of retry attempts after the first request."""

    initial_delay_seconds: float = 1.0
    """Delay before the first retry."""

    max_delay_seconds: float = 30.0
    """Maximum delay between retries."""

    backoff_multiplier: float = 2.0
    """Exponential backoff multiplier."""

    jitter: float = 0.25
    """Random +/- fraction applied to each delay."""

    retryable_statuses: Tuple[int, ...] = (408, 429, 500, 502, 503, 504, 522, 524)
    """HTTP statuses worth retrying."""


@dataclass
class HttpConfig:
    """HTTP transport settings."""

    timeout_seconds: float = 15.0
    """Total timeout per request."""

    user_agent: str = "Mozilla/5.0 (compatible; DealsIngestionBot/1.0)"

    rss_accept: str = "application/rss+xml, application/xml, text/xml, */*"
    """Accept header sent with feed requests."""

    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class CircuitBreakerConfig:
    """Per-source circuit breaker settings."""

    failure_threshold: int = 10
    """Consecutive failures before the breaker opens."""

    reset_timeout_seconds: float = 30.0
    """Time spent open before a trial fetch is allowed."""

    success_threshold: int = 2
    """Successes in half-open state needed to close again."""


# ============================================================
# PROCESSING CONFIGURATION
# ============================================================

DEFAULT_QUALITY_WEIGHTS: Dict[str, float] = {
    "price": 1.0,
    "merchant": 1.0,
    "category": 1.0,
    "coupon_code": 1.0,
    "image_url": 1.0,
    "description": 1.0,
}


@dataclass
class QualityScoreConfig:
    """
    Field weights for the completeness score.

    The score is the sum of the weights of the fields a deal has,
    divided by the sum of all weights.
    """

    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_QUALITY_WEIGHTS))

    min_description_length: int = 50
    """A description shorter than this does not count."""

    def __post_init__(self) -> None:
        unknown = set(self.weights) - set(DEFAULT_QUALITY_WEIGHTS)
        if unknown:
            raise InvalidConfigError("quality_score.weights", sorted(unknown), "unknown fields")
        if any(w < 0 for w in self.weights.values()):
            raise InvalidConfigError("quality_score.weights", self.weights, "weights must be >= 0")


# Per-source overrides of daily_cap_default
DEFAULT_DAILY_CAPS: Dict[str, int] = {
    "slickdeals_rss": 200,
    "dealnews_rss": 200,
    "slickdeals_coupons": 100,
    "dealnews_coupons": 100,
    "techbargains_rss": 150,
}


@dataclass
class ProcessingConfig:
    """Dedup engine settings."""

    max_consecutive_store_failures: int = 3
    """Consecutive store-unreachable item errors before the whole job fails."""

    max_title_length: int = 500
    """Titles are truncated to this length."""

    min_title_length: int = 10
    """Deals with shorter titles are skipped as invalid."""

    min_discount_percent: float = 1.0
    """A deal carrying both prices must be at least this much off."""

    max_discount_percent: float = 99.0
    """Larger discounts are accepted but logged as suspicious."""

    daily_cap_default: int = 500
    """New deals per source per UTC day; 0 disables the cap."""

    daily_caps: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_DAILY_CAPS))

    quality: QualityScoreConfig = field(default_factory=QualityScoreConfig)

    def daily_cap_for(self, source_key: str) -> int:
        return self.daily_caps.get(source_key, self.daily_cap_default)


# ============================================================
# AGGREGATE CONFIGURATION
# ============================================================

@dataclass
class IngestionConfig:
    """Everything the ingestion layer needs."""

    http: HttpConfig = field(default_factory=HttpConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)

    sources_file: Optional[str] = None
    """JSON file overriding the built-in source catalog."""

    @classmethod
    def from_env(cls) -> "IngestionConfig":
        """Build from DEALS_* environment variables."""
        load_dotenv()
        config = cls()

        config.http.timeout_seconds = env_float("DEALS_HTTP_TIMEOUT", config.http.timeout_seconds)
        config.http.user_agent = os.getenv("DEALS_USER_AGENT", config.http.user_agent)
        config.http.retry.max_retries = env_int("DEALS_HTTP_MAX_RETRIES", config.http.retry.max_retries)

        config.circuit_breaker.failure_threshold = env_int(
            "DEALS_BREAKER_FAILURES", config.circuit_breaker.failure_threshold
        )
        config.circuit_breaker.reset_timeout_seconds = env_float(
            "DEALS_BREAKER_RESET_SECONDS", config.circuit_breaker.reset_timeout_seconds
        )

        config.processing.max_consecutive_store_failures = env_int(
            "DEALS_MAX_STORE_FAILURES", config.processing.max_consecutive_store_failures
        )
        config.processing.min_title_length = env_int("DEALS_MIN_TITLE_LENGTH", config.processing.min_title_length)
        config.processing.daily_cap_default = env_int("DEALS_DAILY_CAP", config.processing.daily_cap_default)
        for name in DEFAULT_QUALITY_WEIGHTS:
            env_name = f"DEALS_QUALITY_WEIGHT_{name.upper()}"
            config.processing.quality.weights[name] = env_float(
                env_name, config.processing.quality.weights[name]
            )

        config.sources_file = os.getenv("DEALS_SOURCES_FILE") or None
        return config


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidConfigError(name, raw, "expected an integer") from e


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise InvalidConfigError(name, raw, "expected a number") from e
