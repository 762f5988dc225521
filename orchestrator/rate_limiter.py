"""
Orchestrator - Dispatch Rate Limiter.

Sliding-window limit on job starts, independent of how many jobs
may run at once. Only job starts are delayed; nothing inside a
running job waits on this limiter.
"""

import asyncio
import time
from collections import deque
from typing import Callable, Deque


class DispatchRateLimiter:
    """
    At most `max_starts` acquisitions per `window_seconds`.

    Usage:
        limiter = DispatchRateLimiter(max_starts=10, window_seconds=1.0)
        await limiter.acquire()
    """

    def __init__(
        self,
        max_starts: int = 10,
        window_seconds: float = 1.0,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._max_starts = max_starts
        self._window = window_seconds
        self._timer = timer
        self._starts: Deque[float] = deque()
        self._lock = asyncio.Lock()
        self._sleep = asyncio.sleep

    def _prune(self, now: float) -> None:
        cutoff = now - self._window
        while self._starts and self._starts[0] <= cutoff:
            self._starts.popleft()

    async def try_acquire(self) -> bool:
        """Take a slot if one is free right now."""
        async with self._lock:
            now = self._timer()
            self._prune(now)
            if len(self._starts) >= self._max_starts:
                return False
            self._starts.append(now)
            return True

    async def acquire(self) -> float:
        """Wait for a slot. Returns the number of seconds spent waiting."""
        waited = 0.0
        while True:
            async with self._lock:
                now = self._timer()
                self._prune(now)
                if len(self._starts) < self._max_starts:
                    self._starts.append(now)
                    return waited
                delay = self._starts[0] + self._window - now

            # Sleep outside the lock so try_acquire callers are not blocked
            await self._sleep(delay)
            waited += delay

    @property
    def remaining(self) -> int:
        """Free slots in the current window."""
        now = self._timer()
        cutoff = now - self._window
        used = sum(1 for t in self._starts if t > cutoff)
        return max(0, self._max_starts - used)
