"""
HTTP Client - Resilient transport for fetchers.

============================================================
RESPONSIBILITY
============================================================
Fetches a URL and returns its body, retrying transient failures.

- Total timeout per request
- Header passthrough (source headers override defaults)
- Exponential backoff with jitter on retryable statuses,
  timeouts and connection errors
- Every failure surfaces as FetchError

============================================================
"""

import asyncio
import json
import logging
import random
from typing import Any, Dict, Optional

import aiohttp

from data_ingestion.config import HttpConfig
from data_ingestion.types import FetchError


logger = logging.getLogger(__name__)


class HttpClient:
    """
    aiohttp-based transport shared by all fetchers in a worker.

    Usage:
        async with HttpClient(config) as client:
            body = await client.get_text(url, headers={...})
    """

    def __init__(
        self,
        config: Optional[HttpConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._config = config or HttpConfig()
        self._session = session
        self._owns_session = session is None
        self._sleep = asyncio.sleep

    @property
    def config(self) -> HttpConfig:
        return self._config

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds),
                headers={"User-Agent": self._config.user_agent},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _backoff_delay(self, retry_number: int, retry_after: Optional[str] = None) -> float:
        """Delay before retry `retry_number` (1-based)."""
        retry = self._config.retry
        if retry_after and retry_after.isdigit():
            return min(float(retry_after), retry.max_delay_seconds)
        delay = retry.initial_delay_seconds * (retry.backoff_multiplier ** (retry_number - 1))
        delay = min(delay, retry.max_delay_seconds)
        if retry.jitter:
            delay *= 1 + random.uniform(-retry.jitter, retry.jitter)
        return max(delay, 0.0)

    async def get_text(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        source: str = "http",
    ) -> str:
        """
        GET a URL and return the decoded body.

        Raises:
            FetchError: after retries are exhausted, or at once for
                non-retryable HTTP statuses
        """
        session = await self._get_session()
        retry = self._config.retry
        request_timeout = aiohttp.ClientTimeout(total=timeout or self._config.timeout_seconds)

        attempt = 0
        while True:
            attempt += 1
            try:
                async with session.get(url, headers=headers, timeout=request_timeout) as response:
                    if response.status < 400:
                        return await response.text(errors="replace")

                    if response.status in retry.retryable_statuses and attempt <= retry.max_retries:
                        delay = self._backoff_delay(attempt, response.headers.get("Retry-After"))
                        logger.warning(
                            f"[{source}] HTTP {response.status} from {url}, "
                            f"retry {attempt}/{retry.max_retries} in {delay:.1f}s"
                        )
                        await self._sleep(delay)
                        continue

                    body = await response.text(errors="replace")
                    raise FetchError(
                        f"HTTP {response.status} from {url}",
                        source=source,
                        recoverable=response.status >= 500 or response.status in retry.retryable_statuses,
                        details={"status": response.status, "body": body[:200]},
                    )

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                kind = "timeout" if isinstance(e, asyncio.TimeoutError) else "connection error"
                if attempt <= retry.max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        f"[{source}] {kind} fetching {url}: {e}, "
                        f"retry {attempt}/{retry.max_retries} in {delay:.1f}s"
                    )
                    await self._sleep(delay)
                    continue
                raise FetchError(
                    f"{kind} fetching {url}: {e}",
                    source=source,
                    recoverable=True,
                    cause=e,
                ) from e

    async def get_json(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        source: str = "http",
    ) -> Any:
        """GET a URL and decode its JSON body."""
        body = await self.get_text(url, headers=headers, timeout=timeout, source=source)
        try:
            return json.loads(body)
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {url}", source=source, recoverable=False, cause=e) from e
