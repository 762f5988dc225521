"""
Deal Domain ORM Models.

============================================================
PURPOSE
============================================================
Models for deals produced by the ingestion pipeline and handed
to the moderation workflow.

============================================================
DATA LIFECYCLE ROLE
============================================================
- Stage: NORMALIZED, DEDUPLICATED
- Mutability: created once, updated by later ingestion passes
  or by moderation (external)
- Source: RSS/Atom/RDF feeds and API fetchers
- Consumers: Moderation review queue

============================================================
MODELS
============================================================
- DealRecord: One row per distinct offer (unique dedup_key)

============================================================
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, TimestampMixin


DEAL_STATUS_PENDING = "pending"


class DealRecord(Base, TimestampMixin):
    """
    A deal awaiting (or past) moderation.

    ============================================================
    INVARIANTS
    ============================================================
    - At most one row per dedup_key (unique constraint)
    - status is "pending" on creation; the pipeline never changes it
    - quality_score lies in [0, 1]

    ============================================================
    """

    __tablename__ = "deals"

    # Primary Key
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier for the deal"
    )

    # Identity
    dedup_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="SHA-256 identity of the underlying offer"
    )

    source: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Source key that first produced the deal"
    )

    external_id: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Feed guid/id when distinct from url"
    )

    # Content
    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )

    url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    merchant: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Pricing
    price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Current deal price"
    )

    original_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="List price before discount"
    )

    # Timing
    published_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True,
        comment="Publication timestamp reported by the source"
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(
        nullable=True,
    )

    # Moderation
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DEAL_STATUS_PENDING,
        comment="Moderation status, owned by the review workflow"
    )

    quality_score: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="Field completeness in [0,1] for review ordering"
    )

    # Verification
    verification_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Times a later ingestion pass re-observed the deal with changes"
    )

    last_verified_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        Index("idx_deals_source", "source"),
        Index("idx_deals_status_quality", "status", "quality_score"),
    )

    def __repr__(self) -> str:
        return f"<DealRecord {self.id} source={self.source} title={self.title[:40]!r}>"
