"""
Data Ingestion - Type Definitions.

============================================================
PURPOSE
============================================================
Shared types for the deals ingestion pipeline.

- Source descriptors and job payloads
- The canonical NormalizedDeal
- Per-item outcomes and per-job results
- Metric tracking types
- Error types

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable data structures where possible
- No business logic
- Serializable for logging and the job queue

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from core.exceptions import PipelineException, Severity


# =============================================================
# ENUMS
# =============================================================

class SourceType(str, Enum):
    """Fetch strategy for a source."""
    RSS = "rss"
    API = "api"


class DealAction(str, Enum):
    """Outcome of running one deal through the dedup engine."""
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


# =============================================================
# SOURCE TYPES
# =============================================================

@dataclass(frozen=True)
class SourceConfig:
    """Fetch configuration for one source."""
    feed_url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    fetcher_ref: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feed_url": self.feed_url,
            "headers": dict(self.headers),
            "fetcher_ref": self.fetcher_ref,
            "options": dict(self.options),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceConfig":
        return cls(
            feed_url=data.get("feed_url") or data.get("feedUrl"),
            headers=dict(data.get("headers") or {}),
            fetcher_ref=data.get("fetcher_ref") or data.get("fetcherRef"),
            options=dict(data.get("options") or {}),
        )


@dataclass(frozen=True)
class SourceDescriptor:
    """
    A configured deal source.

    Identifies the provenance of every deal it produces; the key
    is stored on each DealRecord as `source`.
    """
    key: str
    type: SourceType
    config: SourceConfig = field(default_factory=SourceConfig)
    name: str = ""
    enabled: bool = True
    priority: int = 5
    entity: str = "deal"
    rate_limit_per_minute: int = 60
    timeout_seconds: float = 15.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "type": self.type.value,
            "config": self.config.to_dict(),
            "name": self.name,
            "enabled": self.enabled,
            "priority": self.priority,
            "entity": self.entity,
            "rate_limit_per_minute": self.rate_limit_per_minute,
            "timeout_seconds": self.timeout_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceDescriptor":
        return cls(
            key=data["key"],
            type=SourceType(data["type"]),
            config=SourceConfig.from_dict(data.get("config") or {}),
            name=data.get("name") or data["key"],
            enabled=bool(data.get("enabled", True)),
            priority=int(data.get("priority", 5)),
            entity=data.get("entity", "deal"),
            rate_limit_per_minute=int(data.get("rate_limit_per_minute", 60)),
            timeout_seconds=float(data.get("timeout_seconds", 15.0)),
        )


# =============================================================
# JOB TYPES
# =============================================================

@dataclass
class IngestionJob:
    """One execution of the pipeline for a single source."""
    job_id: UUID
    source: SourceDescriptor
    enqueued_at: datetime
    attempts: int = 0
    max_attempts: int = 3
    name: Optional[str] = None

    @property
    def source_key(self) -> str:
        return self.source.key


# Source-shaped record as returned by a fetcher. For RSS this is
# the element tree produced by fetchers.xml_tree.parse_xml.
RawItem = Dict[str, Any]


# =============================================================
# DEAL TYPES
# =============================================================

@dataclass(frozen=True)
class NormalizedDeal:
    """
    Canonical deal shape produced by the normalizer.

    title and url are always present; a raw item that cannot
    provide both never becomes a NormalizedDeal.
    """
    title: str
    url: str
    source: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    merchant: Optional[str] = None
    category: Optional[str] = None
    published_at: Optional[datetime] = None
    external_id: Optional[str] = None
    coupon_code: Optional[str] = None
    price: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "source": self.source,
            "description": self.description,
            "image_url": self.image_url,
            "merchant": self.merchant,
            "category": self.category,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "external_id": self.external_id,
            "coupon_code": self.coupon_code,
            "price": str(self.price) if self.price is not None else None,
            "original_price": str(self.original_price) if self.original_price is not None else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass(frozen=True)
class DealOutcome:
    """Result of processing a single deal."""
    action: DealAction
    deal_id: Optional[UUID] = None
    reason: Optional[str] = None
    store_unavailable: bool = False


# =============================================================
# RESULT TYPES
# =============================================================

@dataclass
class ProcessingResult:
    """Per-job aggregate of item outcomes. Never persisted."""
    source: str = ""
    items_fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    error_messages: List[str] = field(default_factory=list)

    def record(self, outcome: DealOutcome) -> None:
        """Count one item outcome."""
        if outcome.action == DealAction.CREATED:
            self.created += 1
        elif outcome.action == DealAction.UPDATED:
            self.updated += 1
        elif outcome.action == DealAction.SKIPPED:
            self.skipped += 1
        else:
            self.add_error(outcome.reason or "unknown error")

    def add_error(self, message: str) -> None:
        self.errors += 1
        self.error_messages.append(message)

    def mark_complete(self, completed_at: datetime) -> None:
        """Mark the job as complete and calculate duration."""
        self.completed_at = completed_at
        if self.started_at:
            delta = completed_at - self.started_at
            self.duration_seconds = delta.total_seconds()

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.skipped

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/monitoring."""
        return {
            "source": self.source,
            "items_fetched": self.items_fetched,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
            "error_messages": self.error_messages[:5],  # Limit for logging
        }


@dataclass
class IngestionMetrics:
    """In-process metrics fed by the scheduler's hooks."""
    jobs_completed: int = 0
    jobs_failed: int = 0

    total_created: int = 0
    total_updated: int = 0
    total_skipped: int = 0
    total_errors: int = 0

    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None

    # Per-source metrics
    source_metrics: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def _source(self, source: str) -> Dict[str, Any]:
        if source not in self.source_metrics:
            self.source_metrics[source] = {
                "completed": 0,
                "failed": 0,
                "created": 0,
                "last_error": None,
            }
        return self.source_metrics[source]

    def record_result(self, result: ProcessingResult) -> None:
        self.jobs_completed += 1
        self.total_created += result.created
        self.total_updated += result.updated
        self.total_skipped += result.skipped
        self.total_errors += result.errors
        self.last_success_at = result.completed_at

        stats = self._source(result.source)
        stats["completed"] += 1
        stats["created"] += result.created

    def record_failure(self, source: str, error: str, failed_at: datetime) -> None:
        self.jobs_failed += 1
        self.last_failure_at = failed_at

        stats = self._source(source)
        stats["failed"] += 1
        stats["last_error"] = error


# =============================================================
# ERROR TYPES
# =============================================================

class IngestionError(PipelineException):
    """Base exception for ingestion errors."""

    def __init__(
        self,
        message: str,
        source: str,
        recoverable: bool = True,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            context={"source": source, **(details or {})},
            recoverable=recoverable,
            cause=cause,
        )
        self.source = source
        self.details = details or {}


class FetchError(IngestionError):
    """The whole source is unusable this cycle (network, timeout, bad body)."""
    default_severity = Severity.MEDIUM


class NormalizationError(IngestionError):
    """A single raw item cannot become a valid NormalizedDeal."""
    default_severity = Severity.LOW


class PersistenceError(IngestionError):
    """A store operation failed."""
    default_severity = Severity.LOW


class StoreUnavailableError(PersistenceError):
    """The store is unreachable for the whole job."""
    default_severity = Severity.MEDIUM
