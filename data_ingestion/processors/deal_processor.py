"""
Data Ingestion - Deal Processor.

============================================================
RESPONSIBILITY
============================================================
Decides, per NormalizedDeal, between created / updated /
skipped / error and performs the matching write.

1. Validate; an invalid deal is skipped
2. Compute the DedupKey
3. Look up an existing record by key
4. None found: skip if the source hit its daily cap, else score
   and create (status "pending")
5. Found and materially different: update in place
6. Found and unchanged: skip, no write
7. Any failure: report "error" and carry on with the batch

============================================================
CONCURRENCY
============================================================
Each write is committed on its own. Two jobs racing to create
the same key are settled by the unique constraint: the loser
gets DuplicateRecordError, re-reads the winner's record and
falls through to the update/skip decision.

============================================================
"""

import dataclasses
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from core.clock import ClockFactory, ClockProtocol, ensure_utc
from data_ingestion.config import ProcessingConfig
from data_ingestion.normalizers.deal_normalizer import DealNormalizer
from data_ingestion.processors.daily_cap import DailyCapTracker
from data_ingestion.processors.dedup import compute_dedup_key
from data_ingestion.processors.quality import QualityScorer
from data_ingestion.processors.validation import validate_deal
from data_ingestion.types import (
    DealAction,
    DealOutcome,
    NormalizationError,
    NormalizedDeal,
    PersistenceError,
    ProcessingResult,
    RawItem,
    StoreUnavailableError,
)
from storage.models.deals import DealRecord
from storage.repositories.deals import DealRepository
from storage.repositories.exceptions import (
    ConnectionError as StoreConnectionError,
    DuplicateRecordError,
    RepositoryException,
)


logger = logging.getLogger(__name__)

PRICE_TOLERANCE = Decimal("0.01")


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _price_changed(stored: Any, incoming: Optional[Decimal]) -> bool:
    if incoming is None:
        return False
    stored = _as_decimal(stored)
    return stored is None or abs(stored - incoming) > PRICE_TOLERANCE


def material_changes(record: DealRecord, deal: NormalizedDeal) -> Dict[str, Any]:
    """
    Fields whose incoming value differs materially from the record.

    An incoming None is never a change: a feed omitting a field
    does not retract it.
    """
    changes: Dict[str, Any] = {}

    if deal.title.strip() != (record.title or "").strip():
        changes["title"] = deal.title
    if _price_changed(record.price, deal.price):
        changes["price"] = deal.price
    if _price_changed(record.original_price, deal.original_price):
        changes["original_price"] = deal.original_price
    if deal.coupon_code and deal.coupon_code != record.coupon_code:
        changes["coupon_code"] = deal.coupon_code
    if deal.expires_at and ensure_utc(record.expires_at) != ensure_utc(deal.expires_at):
        changes["expires_at"] = deal.expires_at

    return changes


def enrichments(record: DealRecord, deal: NormalizedDeal) -> Dict[str, Any]:
    """Non-material improvements applied alongside a material update."""
    fields: Dict[str, Any] = {}
    if deal.image_url and not record.image_url:
        fields["image_url"] = deal.image_url
    if deal.description and len(deal.description) > len(record.description or ""):
        fields["description"] = deal.description
    if deal.merchant and not record.merchant:
        fields["merchant"] = deal.merchant
    if deal.category and not record.category:
        fields["category"] = deal.category
    return fields


class DealProcessor:
    """
    Dedup/merge engine for one job.

    Bound to a single session (through its repository); never
    share an instance between concurrently running jobs.
    """

    def __init__(
        self,
        repository: DealRepository,
        normalizer: Optional[DealNormalizer] = None,
        config: Optional[ProcessingConfig] = None,
        clock: Optional[ClockProtocol] = None,
        daily_caps: Optional[DailyCapTracker] = None,
    ) -> None:
        self._repository = repository
        self._config = config or ProcessingConfig()
        self._normalizer = normalizer or DealNormalizer(self._config)
        self._scorer = QualityScorer(self._config.quality)
        self._clock = clock
        self._daily_caps = daily_caps or DailyCapTracker(self._config, clock)

    def _now(self):
        return (self._clock or ClockFactory.get_clock()).now()

    # =========================================================
    # SINGLE DEAL
    # =========================================================

    def process(self, deal: NormalizedDeal, source_key: str) -> DealOutcome:
        """Classify and persist one deal. Never raises."""
        if deal.source != source_key:
            deal = dataclasses.replace(deal, source=source_key)

        try:
            problems = validate_deal(deal, self._config, self._now())
            if problems:
                logger.debug(f"[{source_key}] invalid deal {deal.url}: {problems}")
                return DealOutcome(DealAction.SKIPPED, reason=f"validation_failed: {'; '.join(problems)}")

            dedup_key = compute_dedup_key(source_key, deal.external_id, deal.url)
            existing = self._repository.find_by_dedup_key(dedup_key)

            if existing is None:
                if not self._daily_caps.allows(source_key):
                    logger.debug(f"[{source_key}] daily cap reached, not creating {deal.url}")
                    return DealOutcome(DealAction.SKIPPED, reason="daily_cap_reached")
                try:
                    record = self._repository.create(deal, dedup_key, self._scorer.score(deal))
                    self._repository.commit({"dedup_key": dedup_key})
                    self._daily_caps.record_created(source_key)
                    logger.debug(f"[{source_key}] created {record.id}: {deal.title[:60]}")
                    return DealOutcome(DealAction.CREATED, deal_id=record.id)
                except DuplicateRecordError:
                    existing = self._repository.find_by_dedup_key(dedup_key)
                    if existing is None:
                        raise PersistenceError(
                            "Unique constraint hit but no record found",
                            source=source_key,
                            details={"dedup_key": dedup_key},
                        )
                    logger.info(
                        f"[{source_key}] lost create race for {dedup_key[:12]}, merging instead"
                    )

            return self._merge(existing, deal, source_key)

        except StoreConnectionError as e:
            self._safe_rollback()
            logger.warning(f"[{source_key}] store unavailable for {deal.url}: {e}")
            return DealOutcome(DealAction.ERROR, reason=f"store unavailable: {e}", store_unavailable=True)
        except (RepositoryException, PersistenceError) as e:
            self._safe_rollback()
            logger.warning(f"[{source_key}] persistence error for {deal.url}: {e}")
            return DealOutcome(DealAction.ERROR, reason=f"persistence error: {e}")
        except Exception as e:
            self._safe_rollback()
            logger.exception(f"[{source_key}] unexpected error processing {deal.url}")
            return DealOutcome(DealAction.ERROR, reason=f"unexpected error: {e}")

    def _merge(self, existing: DealRecord, deal: NormalizedDeal, source_key: str) -> DealOutcome:
        changes = material_changes(existing, deal)
        if not changes:
            return DealOutcome(DealAction.SKIPPED, deal_id=existing.id)

        fields = {**enrichments(existing, deal), **changes}
        fields["verification_count"] = (existing.verification_count or 0) + 1
        fields["last_verified_at"] = self._now()

        self._repository.update(existing.id, fields)
        self._repository.commit()
        logger.debug(f"[{source_key}] updated {existing.id}: {sorted(changes)}")
        return DealOutcome(DealAction.UPDATED, deal_id=existing.id)

    def _safe_rollback(self) -> None:
        try:
            self._repository.rollback()
        except RepositoryException as e:
            logger.error(f"Rollback after failed write also failed: {e}")

    # =========================================================
    # RAW ITEMS
    # =========================================================

    def process_raw(self, raw: RawItem, source_key: str) -> DealOutcome:
        """Normalize then process one raw item. Never raises."""
        try:
            deal = self._normalizer.normalize(raw, source_key)
        except NormalizationError as e:
            logger.warning(f"[{source_key}] normalization error: {e}")
            return DealOutcome(DealAction.ERROR, reason=f"normalization error: {e}")
        except Exception as e:
            logger.exception(f"[{source_key}] unexpected normalization failure")
            return DealOutcome(DealAction.ERROR, reason=f"normalization error: {e}")
        return self.process(deal, source_key)

    def process_batch(
        self,
        raw_items: Iterable[RawItem],
        source_key: str,
        result: Optional[ProcessingResult] = None,
    ) -> ProcessingResult:
        """
        Run every item through normalize -> dedup, sequentially.

        Raises:
            StoreUnavailableError: max_consecutive_store_failures
                items in a row could not reach the store
        """
        result = result or ProcessingResult(source=source_key)
        consecutive_store_failures = 0

        for raw in raw_items:
            outcome = self.process_raw(raw, source_key)
            result.record(outcome)

            if not outcome.store_unavailable:
                consecutive_store_failures = 0
                continue

            consecutive_store_failures += 1
            if consecutive_store_failures >= self._config.max_consecutive_store_failures:
                raise StoreUnavailableError(
                    f"Store unreachable for {consecutive_store_failures} consecutive items",
                    source=source_key,
                    details=result.to_dict(),
                )

        return result
