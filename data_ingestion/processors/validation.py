"""
Data Ingestion - Deal Validation.

Business rules a normalized deal must pass before it is looked up
or written. A deal that fails is skipped, not counted as an error:
it is well-formed, just not worth storing.

- Title at least min_title_length characters
- With both prices: price below original_price, and a discount of
  at least min_discount_percent
- Not already expired
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List

from core.clock import ensure_utc
from data_ingestion.config import ProcessingConfig
from data_ingestion.types import NormalizedDeal


logger = logging.getLogger(__name__)


def discount_percent(price: Decimal, original_price: Decimal) -> Decimal:
    return (original_price - price) / original_price * 100


def validate_deal(deal: NormalizedDeal, config: ProcessingConfig, now: datetime) -> List[str]:
    """Reasons the deal is not acceptable; empty when it passes."""
    errors: List[str] = []

    if len(deal.title.strip()) < config.min_title_length:
        errors.append(f"title shorter than {config.min_title_length} chars")

    if deal.price is not None and deal.original_price is not None and deal.original_price > 0:
        if deal.price >= deal.original_price:
            errors.append("price not below original price")
        else:
            discount = discount_percent(deal.price, deal.original_price)
            if discount < Decimal(str(config.min_discount_percent)):
                errors.append(f"discount too small ({discount:.1f}% < {config.min_discount_percent}%)")
            elif discount > Decimal(str(config.max_discount_percent)):
                logger.info(f"[{deal.source}] unusually high discount {discount:.1f}%: {deal.url}")

    if deal.expires_at is not None and ensure_utc(deal.expires_at) < now:
        errors.append("already expired")

    return errors
