"""
Data Ingestion - Processors Package.

The dedup/merge engine and its helpers.

Modules:
- dedup: url normalization and DedupKey derivation
- quality: configurable completeness score
- validation: business rules a deal must pass
- daily_cap: per-source new-deal limit per day
- deal_processor: created / updated / skipped / error decisions
"""

from data_ingestion.processors.deal_processor import (
    DealProcessor,
    enrichments,
    material_changes,
)
from data_ingestion.processors.daily_cap import DailyCapTracker
from data_ingestion.processors.dedup import compute_dedup_key, normalize_url
from data_ingestion.processors.quality import QualityScorer
from data_ingestion.processors.validation import validate_deal

__all__ = [
    "DealProcessor",
    "enrichments",
    "material_changes",
    "compute_dedup_key",
    "normalize_url",
    "QualityScorer",
    "DailyCapTracker",
    "validate_deal",
]
