"""
Source Fetcher - Dispatch by source type behind a circuit breaker.
"""

import logging
from typing import Dict, List, Optional

from data_ingestion.fetchers.api import ApiFetcher, FetcherRegistry
from data_ingestion.fetchers.base import BaseFetcher
from data_ingestion.fetchers.circuit_breaker import CircuitBreakerRegistry
from data_ingestion.fetchers.http_client import HttpClient
from data_ingestion.fetchers.rss import RssFetcher
from data_ingestion.types import FetchError, RawItem, SourceDescriptor, SourceType


logger = logging.getLogger(__name__)


class SourceFetcher:
    """
    Entry point used by the ingestion service.

    Usage:
        fetcher = SourceFetcher(http)
        items = await fetcher.fetch(source)
    """

    def __init__(
        self,
        http: HttpClient,
        api_registry: Optional[FetcherRegistry] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
    ) -> None:
        self._strategies: Dict[SourceType, BaseFetcher] = {
            SourceType.RSS: RssFetcher(http),
            SourceType.API: ApiFetcher(http, api_registry),
        }
        self._breakers = breakers or CircuitBreakerRegistry()

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    async def fetch(self, source: SourceDescriptor) -> List[RawItem]:
        """
        Raises:
            FetchError: the source is unusable this cycle
        """
        strategy = self._strategies.get(source.type)
        if strategy is None:
            raise FetchError(
                f"Unsupported source type: {source.type}",
                source=source.key,
                recoverable=False,
            )

        breaker = self._breakers.get(source.key)
        breaker.before_call()
        try:
            items = await strategy.fetch(source)
        except FetchError:
            breaker.record_failure()
            raise
        breaker.record_success()
        return items
