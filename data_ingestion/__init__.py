"""
Data Ingestion Package.

Fetches deals from configured sources, normalizes them and
decides create / update / skip against the store.

Sub-packages:
- sources: Static source catalog
- fetchers: HTTP retrieval of raw items (RSS/Atom/RDF, APIs)
- normalizers: Raw item -> NormalizedDeal
- processors: Dedup/merge engine

Main service:
- ingestion_service: Runs one job end to end
"""

from data_ingestion.config import (
    CircuitBreakerConfig,
    HttpConfig,
    IngestionConfig,
    ProcessingConfig,
    QualityScoreConfig,
    RetryConfig,
)
from data_ingestion.ingestion_service import IngestionService
from data_ingestion.types import (
    DealAction,
    DealOutcome,
    FetchError,
    IngestionError,
    IngestionJob,
    IngestionMetrics,
    NormalizationError,
    NormalizedDeal,
    PersistenceError,
    ProcessingResult,
    RawItem,
    SourceConfig,
    SourceDescriptor,
    SourceType,
    StoreUnavailableError,
)


__all__ = [
    # Service
    "IngestionService",
    # Config
    "CircuitBreakerConfig",
    "HttpConfig",
    "IngestionConfig",
    "ProcessingConfig",
    "QualityScoreConfig",
    "RetryConfig",
    # Types
    "DealAction",
    "DealOutcome",
    "IngestionJob",
    "IngestionMetrics",
    "NormalizedDeal",
    "ProcessingResult",
    "RawItem",
    "SourceConfig",
    "SourceDescriptor",
    "SourceType",
    # Errors
    "IngestionError",
    "FetchError",
    "NormalizationError",
    "PersistenceError",
    "StoreUnavailableError",
]
