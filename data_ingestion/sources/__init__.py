"""
Deal Sources.

The static source catalog and the registry that serves it.
"""

from data_ingestion.sources.registry import BUILTIN_SOURCES, SourceRegistry

__all__ = ["BUILTIN_SOURCES", "SourceRegistry"]
