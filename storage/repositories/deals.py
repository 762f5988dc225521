"""
Deal Repository.

============================================================
PURPOSE
============================================================
The persistence boundary the dedup engine calls through:

- find_by_dedup_key(key) -> DealRecord | None
- create(deal, dedup_key, quality_score) -> DealRecord
- update(deal_id, fields) -> DealRecord

Each call flushes immediately so a unique-key violation from a
concurrent job surfaces as DuplicateRecordError at the call site.
The caller commits.

============================================================
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.deals import DEAL_STATUS_PENDING, DealRecord
from storage.repositories.base import BaseRepository

if TYPE_CHECKING:
    from data_ingestion.types import NormalizedDeal


# Columns an ingestion update may write. status and quality_score
# belong to moderation once the record exists.
UPDATABLE_FIELDS = frozenset({
    "title",
    "url",
    "description",
    "image_url",
    "merchant",
    "category",
    "coupon_code",
    "price",
    "original_price",
    "expires_at",
    "published_at",
    "verification_count",
    "last_verified_at",
})


class DealRepository(BaseRepository[DealRecord]):
    """Repository for DealRecord rows."""

    unique_field = "dedup_key"

    def __init__(self, session: Session) -> None:
        super().__init__(session, DealRecord, "DealRepository")

    def find_by_dedup_key(self, dedup_key: str) -> Optional[DealRecord]:
        stmt = select(DealRecord).where(DealRecord.dedup_key == dedup_key)
        return self._execute_scalar(stmt)

    def get_by_id(self, deal_id: UUID) -> Optional[DealRecord]:
        return self._get_by_id(deal_id)

    def create(
        self,
        deal: "NormalizedDeal",
        dedup_key: str,
        quality_score: float,
    ) -> DealRecord:
        """
        Insert a new pending deal.

        Raises:
            DuplicateRecordError: dedup_key already exists
            ConnectionError: store unreachable
        """
        record = DealRecord(
            dedup_key=dedup_key,
            source=deal.source,
            external_id=deal.external_id,
            title=deal.title,
            url=deal.url,
            description=deal.description,
            image_url=deal.image_url,
            merchant=deal.merchant,
            category=deal.category,
            coupon_code=deal.coupon_code,
            price=deal.price,
            original_price=deal.original_price,
            published_at=deal.published_at,
            expires_at=deal.expires_at,
            status=DEAL_STATUS_PENDING,
            quality_score=quality_score,
            verification_count=0,
        )
        return self._add(record, {"dedup_key": dedup_key})

    def update(self, deal_id: UUID, fields: Dict[str, Any]) -> DealRecord:
        """
        Apply field changes to an existing deal in place.

        Raises:
            RecordNotFoundError: no deal with deal_id
            ValueError: a field outside UPDATABLE_FIELDS was passed
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable by ingestion: {sorted(unknown)}")

        record = self._get_by_id_or_raise(deal_id)
        for name, value in fields.items():
            setattr(record, name, value)

        try:
            self._session.flush()
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "update", {"id": str(deal_id)})
            raise
        return record

    def count_by_dedup_key(self, dedup_key: str) -> int:
        stmt = (
            select(func.count())
            .select_from(DealRecord)
            .where(DealRecord.dedup_key == dedup_key)
        )
        try:
            return self._session.execute(stmt).scalar() or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count_by_dedup_key")
            raise

    def count(self) -> int:
        return self._count()

    def list_pending(self, limit: int = 50) -> List[DealRecord]:
        """Pending deals ordered for the review queue, best first."""
        stmt = (
            select(DealRecord)
            .where(DealRecord.status == DEAL_STATUS_PENDING)
            .order_by(DealRecord.quality_score.desc(), DealRecord.created_at.desc())
            .limit(limit)
        )
        return self._execute_query(stmt)
