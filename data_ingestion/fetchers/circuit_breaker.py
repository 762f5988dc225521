"""
Circuit Breaker - Stop hammering a source that keeps failing.

CLOSED    normal operation; consecutive failures are counted
OPEN      fetches fail fast until reset_timeout_seconds elapse
HALF_OPEN trial fetches allowed; success_threshold successes close
          the breaker, any failure re-opens it
"""

import logging
import threading
from enum import Enum
from typing import Dict, Optional

from core.clock import ClockFactory, ClockProtocol
from data_ingestion.config import CircuitBreakerConfig
from data_ingestion.types import FetchError


logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Per-source breaker guarding fetches."""

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self.name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._successes = 0
        self._opened_at = None
        self._lock = threading.Lock()

    def _now(self):
        return (self._clock or ClockFactory.get_clock()).now()

    @property
    def state(self) -> BreakerState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _maybe_half_open(self) -> None:
        if self._state != BreakerState.OPEN or self._opened_at is None:
            return
        elapsed = (self._now() - self._opened_at).total_seconds()
        if elapsed >= self._config.reset_timeout_seconds:
            self._state = BreakerState.HALF_OPEN
            self._successes = 0
            logger.info(f"Circuit breaker {self.name} half-open after {elapsed:.0f}s")

    def before_call(self) -> None:
        """
        Raises:
            FetchError: breaker is open
        """
        with self._lock:
            self._maybe_half_open()
            if self._state == BreakerState.OPEN:
                raise FetchError(
                    f"Circuit breaker open for {self.name}",
                    source=self.name,
                    details={"failures": self._failures},
                )

    def record_success(self) -> None:
        with self._lock:
            if self._state == BreakerState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self._config.success_threshold:
                    self._state = BreakerState.CLOSED
                    self._failures = 0
                    logger.info(f"Circuit breaker {self.name} closed")
            else:
                self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state == BreakerState.HALF_OPEN or (
                self._failures >= self._config.failure_threshold
            ):
                if self._state != BreakerState.OPEN:
                    logger.warning(
                        f"Circuit breaker {self.name} opened after {self._failures} failures"
                    )
                self._state = BreakerState.OPEN
                self._opened_at = self._now()


class CircuitBreakerRegistry:
    """One breaker per source key, created on first use."""

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, source_key: str) -> CircuitBreaker:
        with self._lock:
            if source_key not in self._breakers:
                self._breakers[source_key] = CircuitBreaker(source_key, self._config, self._clock)
            return self._breakers[source_key]

    def states(self) -> Dict[str, str]:
        return {key: breaker.state.value for key, breaker in self._breakers.items()}
