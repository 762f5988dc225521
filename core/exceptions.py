"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the base exceptions shared by every pipeline package.

- Provides a clear exception hierarchy
- Carries recoverability so the scheduler can decide on retries
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
PipelineException (base)
├── ConfigurationError
│   └── InvalidConfigError
└── (data_ingestion.types) IngestionError
    ├── FetchError
    ├── NormalizationError
    └── PersistenceError
        └── StoreUnavailableError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    """Single item affected."""

    MEDIUM = "medium"
    """A whole job affected, retry may succeed."""

    HIGH = "high"
    """Worker cannot operate without intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class PipelineException(Exception):
    """
    Base exception for all pipeline errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - recoverable: whether retrying the job may succeed
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_recoverable: bool = True

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(PipelineException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_recoverable = False

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            config_key=key,
            actual_value=value,
            context={"reason": reason},
        )


__all__ = [
    "Severity",
    "PipelineException",
    "ConfigurationError",
    "InvalidConfigError",
]
