"""
Data Ingestion - Ingestion Service.

============================================================
RESPONSIBILITY
============================================================
Runs one ingestion job end to end:

1. Fetch raw items for the job's source
2. Normalize and dedup each item, in order
3. Aggregate a ProcessingResult and log the job summary

============================================================
DESIGN PRINCIPLES
============================================================
- One database session per job
- Daily caps are shared by every job of the service
- Item-level problems are counted, never raised
- Whole-source problems (FetchError, StoreUnavailableError)
  propagate so the scheduler can retry the job

============================================================
"""

import asyncio
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from core.clock import ClockFactory, ClockProtocol
from data_ingestion.config import IngestionConfig
from data_ingestion.fetchers.router import SourceFetcher
from data_ingestion.normalizers.deal_normalizer import DealNormalizer
from data_ingestion.processors.daily_cap import DailyCapTracker
from data_ingestion.processors.deal_processor import DealProcessor
from data_ingestion.types import IngestionJob, ProcessingResult, RawItem, SourceDescriptor
from storage.repositories.deals import DealRepository


class IngestionService:
    """
    Job handler for the scheduler.

    ============================================================
    USAGE
    ============================================================
    ```python
    service = IngestionService(fetcher, db.new_session, config)
    result = await service.run_job(job)
    ```

    ============================================================
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        session_factory: Callable[[], Session],
        config: Optional[IngestionConfig] = None,
        clock: Optional[ClockProtocol] = None,
        offload_processing: bool = False,
    ) -> None:
        self._fetcher = fetcher
        self._session_factory = session_factory
        self._config = config or IngestionConfig()
        self._normalizer = DealNormalizer(self._config.processing)
        self._clock = clock
        self._daily_caps = DailyCapTracker(self._config.processing, clock)
        # Run the synchronous database phase in a worker thread; only
        # safe when every session gets its own connection.
        self._offload_processing = offload_processing
        self._logger = logging.getLogger("ingestion_service")

    def _now(self):
        return (self._clock or ClockFactory.get_clock()).now()

    @property
    def daily_caps(self) -> DailyCapTracker:
        return self._daily_caps

    async def run_job(self, job: IngestionJob) -> ProcessingResult:
        """
        Raises:
            FetchError: the source could not be fetched
            StoreUnavailableError: the store went away mid-job
        """
        return await self.run_source(job.source)

    async def run_source(self, source: SourceDescriptor) -> ProcessingResult:
        result = ProcessingResult(source=source.key, started_at=self._now())

        items = await self._fetcher.fetch(source)
        result.items_fetched = len(items)

        if self._offload_processing:
            await asyncio.to_thread(self._process_items, items, source.key, result)
        else:
            self._process_items(items, source.key, result)

        result.mark_complete(self._now())
        self._log_result(result)
        return result

    def _process_items(self, items: List[RawItem], source_key: str, result: ProcessingResult) -> None:
        session = self._session_factory()
        try:
            processor = DealProcessor(
                DealRepository(session),
                normalizer=self._normalizer,
                config=self._config.processing,
                clock=self._clock,
                daily_caps=self._daily_caps,
            )
            processor.process_batch(items, source_key, result)
        finally:
            session.close()

    def _log_result(self, result: ProcessingResult) -> None:
        summary = (
            f"[{result.source}] fetched={result.items_fetched} "
            f"created={result.created} updated={result.updated} "
            f"skipped={result.skipped} errors={result.errors} "
            f"({result.duration_seconds:.2f}s)"
        )
        if result.errors:
            self._logger.warning(f"Ingestion finished with errors {summary}")
        else:
            self._logger.info(f"Ingestion finished {summary}")
