"""
Data Ingestion - Normalizers Package.

Converts raw items into the canonical NormalizedDeal.

Modules:
- text_fields: shape-ambiguous field decoding and text cleaning
- heuristics: merchant, coupon and price rule tables
- deal_normalizer: raw item -> NormalizedDeal
"""

from data_ingestion.normalizers.deal_normalizer import DealNormalizer, parse_datetime
from data_ingestion.normalizers.heuristics import extract_coupon_code, extract_merchant
from data_ingestion.normalizers.text_fields import (
    Attributed,
    Plain,
    TextField,
    Wrapped,
    clean_description,
    clean_text,
    decode_text_field,
    extract_text,
)

__all__ = [
    "DealNormalizer",
    "parse_datetime",
    "extract_coupon_code",
    "extract_merchant",
    "Attributed",
    "Plain",
    "TextField",
    "Wrapped",
    "clean_description",
    "clean_text",
    "decode_text_field",
    "extract_text",
]
