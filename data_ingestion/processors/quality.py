"""
Quality Score - Field completeness for moderation triage.

score = sum(weight of each informative field present) / sum(all weights)

Fields: price, merchant, category, coupon_code, image_url, and a
description of at least min_description_length characters.
"""

from typing import Optional, Set

from data_ingestion.config import QualityScoreConfig
from data_ingestion.types import NormalizedDeal


class QualityScorer:
    """Computes a [0, 1] completeness score for a NormalizedDeal."""

    def __init__(self, config: Optional[QualityScoreConfig] = None) -> None:
        self._config = config or QualityScoreConfig()

    def present_fields(self, deal: NormalizedDeal) -> Set[str]:
        present = set()
        if deal.price is not None:
            present.add("price")
        if deal.merchant:
            present.add("merchant")
        if deal.category:
            present.add("category")
        if deal.coupon_code:
            present.add("coupon_code")
        if deal.image_url:
            present.add("image_url")
        if deal.description and len(deal.description) >= self._config.min_description_length:
            present.add("description")
        return present

    def score(self, deal: NormalizedDeal) -> float:
        weights = self._config.weights
        total = sum(weights.values())
        if total <= 0:
            return 0.0
        earned = sum(weights.get(name, 0.0) for name in self.present_fields(deal))
        return round(min(max(earned / total, 0.0), 1.0), 4)
