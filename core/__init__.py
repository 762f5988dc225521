"""
Core Module Package.

This package contains the infrastructure components
that all other pipeline packages depend on.

Components:
- clock: Unified time abstraction
- exceptions: Base exception hierarchy
"""

from .clock import ClockFactory, ClockProtocol, MockClock, SystemClock, ensure_utc
from .exceptions import (
    ConfigurationError,
    InvalidConfigError,
    PipelineException,
    Severity,
)

__all__ = [
    "ClockFactory",
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "ensure_utc",
    "ConfigurationError",
    "InvalidConfigError",
    "PipelineException",
    "Severity",
]
