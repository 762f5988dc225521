"""
Data Ingestion - Daily Cap Tracker.

Limits how many new deals one source may create per UTC day.
Counts live in process memory and reset at midnight UTC or on
restart.
"""

import logging
import threading
from datetime import date
from typing import Dict, Optional

from core.clock import ClockFactory, ClockProtocol
from data_ingestion.config import ProcessingConfig


logger = logging.getLogger(__name__)


class DailyCapTracker:
    """Per-source created-today counter shared by all jobs of a worker."""

    def __init__(self, config: Optional[ProcessingConfig] = None, clock: Optional[ClockProtocol] = None):
        self._config = config or ProcessingConfig()
        self._clock = clock
        self._counts: Dict[str, int] = {}
        self._day: Optional[date] = None
        self._lock = threading.Lock()

    def _today(self) -> date:
        return (self._clock or ClockFactory.get_clock()).now().date()

    def _roll_over(self) -> None:
        today = self._today()
        if today == self._day:
            return
        if self._counts:
            logger.info(f"Resetting daily caps for {today.isoformat()} (previous: {self._counts})")
        self._counts.clear()
        self._day = today

    def allows(self, source_key: str) -> bool:
        """True while the source is under its cap for today."""
        cap = self._config.daily_cap_for(source_key)
        if cap <= 0:
            return True
        with self._lock:
            self._roll_over()
            return self._counts.get(source_key, 0) < cap

    def record_created(self, source_key: str) -> int:
        with self._lock:
            self._roll_over()
            count = self._counts.get(source_key, 0) + 1
            self._counts[source_key] = count

        cap = self._config.daily_cap_for(source_key)
        if count == cap:
            logger.warning(f"[{source_key}] daily cap of {cap} new deals reached")
        return count

    def counts(self) -> Dict[str, int]:
        with self._lock:
            self._roll_over()
            return dict(self._counts)
