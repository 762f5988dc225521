"""
Data Ingestion - Base Fetcher.

============================================================
PURPOSE
============================================================
Abstract base class for fetch strategies.

============================================================
DESIGN PRINCIPLES
============================================================
- Fetch only: no normalization, no persistence
- One contract for every strategy: fetch(source) -> raw items
- Whole-source failures raise FetchError; nothing else escapes

============================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from data_ingestion.fetchers.http_client import HttpClient
from data_ingestion.types import FetchError, RawItem, SourceDescriptor


class BaseFetcher(ABC):
    """
    Abstract base class for fetchers.

    Subclasses implement fetch_items(); fetch() adds logging and
    guarantees that unexpected exceptions surface as FetchError so
    the scheduler treats them as a job failure.
    """

    def __init__(self, http: HttpClient) -> None:
        self._http = http

    @abstractmethod
    async def fetch_items(self, source: SourceDescriptor) -> List[RawItem]:
        """Retrieve raw items for one source."""
        pass

    async def fetch(self, source: SourceDescriptor) -> List[RawItem]:
        logger = logging.getLogger(f"fetcher.{source.key}")
        try:
            items = await self.fetch_items(source)
        except FetchError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected fetch failure for {source.key}")
            raise FetchError(
                f"Unexpected fetch failure: {e}",
                source=source.key,
                cause=e,
            ) from e

        logger.info(f"Fetched {len(items)} raw items from {source.key}")
        return items
