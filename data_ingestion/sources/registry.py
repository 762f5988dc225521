"""
Source Registry - Static catalog of deal sources.

Provides:
- The built-in source catalog
- Loading a replacement catalog from a JSON file
- Lookup by key, by type, and of enabled sources in priority order

Sources are configuration only: fetch behaviour lives in
data_ingestion.fetchers.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from core.exceptions import ConfigurationError, InvalidConfigError
from data_ingestion.types import SourceConfig, SourceDescriptor, SourceType


logger = logging.getLogger(__name__)


SLICKDEALS_FRONTPAGE_URL = (
    "https://slickdeals.net/newsearch.php"
    "?mode=frontpage&searcharea=deals&searchin=first&rss=1"
)


BUILTIN_SOURCES = (
    # RSS feeds
    SourceDescriptor(
        key="slickdeals_rss",
        type=SourceType.RSS,
        name="Slickdeals Frontpage",
        enabled=True,
        priority=1,
        config=SourceConfig(feed_url=SLICKDEALS_FRONTPAGE_URL),
    ),
    SourceDescriptor(
        key="slickdeals_coupons",
        type=SourceType.RSS,
        name="Slickdeals Coupon Codes",
        enabled=True,
        priority=2,
        config=SourceConfig(feed_url=f"{SLICKDEALS_FRONTPAGE_URL}&q=coupon+code"),
    ),
    SourceDescriptor(
        key="dealnews_rss",
        type=SourceType.RSS,
        name="DealNews",
        enabled=False,
        priority=2,
        config=SourceConfig(
            feed_url="https://www.dealnews.com/rss/deals.xml",
            headers={"User-Agent": "Mozilla/5.0 (compatible; DealsIngestionBot/1.0)"},
        ),
    ),
    SourceDescriptor(
        key="dealnews_coupons",
        type=SourceType.RSS,
        name="DealNews Coupons",
        enabled=False,
        priority=3,
        config=SourceConfig(feed_url="https://www.dealnews.com/rss/coupons.xml"),
    ),
    SourceDescriptor(
        key="techbargains_rss",
        type=SourceType.RSS,
        name="TechBargains",
        enabled=False,
        priority=3,
        config=SourceConfig(feed_url="https://www.techbargains.com/rss.xml"),
    ),
    # Affiliate APIs (credentials required)
    SourceDescriptor(
        key="cj_affiliate",
        type=SourceType.API,
        name="CJ Affiliate",
        enabled=False,
        priority=1,
        config=SourceConfig(fetcher_ref="cj_affiliate"),
    ),
    SourceDescriptor(
        key="amazon_pa",
        type=SourceType.API,
        name="Amazon Product Advertising",
        enabled=False,
        priority=1,
        rate_limit_per_minute=1,
        config=SourceConfig(fetcher_ref="amazon_pa"),
    ),
    SourceDescriptor(
        key="impact",
        type=SourceType.API,
        name="Impact Radius",
        enabled=False,
        priority=2,
        config=SourceConfig(fetcher_ref="impact"),
    ),
    SourceDescriptor(
        key="shareasale",
        type=SourceType.API,
        name="ShareASale",
        enabled=False,
        priority=2,
        config=SourceConfig(fetcher_ref="shareasale"),
    ),
)


class SourceRegistry:
    """
    Catalog of configured sources keyed by source key.

    Usage:
        registry = SourceRegistry.builtin()
        for source in registry.get_enabled_sources():
            ...
    """

    def __init__(self, sources: Iterable[SourceDescriptor] = ()) -> None:
        self._sources: Dict[str, SourceDescriptor] = {}
        for source in sources:
            self.register(source)

    @classmethod
    def builtin(cls) -> "SourceRegistry":
        return cls(BUILTIN_SOURCES)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "SourceRegistry":
        """
        Load a catalog from a JSON file.

        The file holds either a list of source objects or
        {"sources": [...]}. Each object uses the keys of
        SourceDescriptor.to_dict().
        """
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigurationError(f"Sources file not found: {path}", config_key="sources_file") from e
        except json.JSONDecodeError as e:
            raise InvalidConfigError("sources_file", str(path), f"invalid JSON: {e}") from e

        entries = data.get("sources", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise InvalidConfigError("sources_file", str(path), "expected a list of sources")

        registry = cls()
        for entry in entries:
            registry.register(cls._parse_entry(entry))
        logger.info(f"Loaded {len(registry)} sources from {path}")
        return registry

    @staticmethod
    def _parse_entry(entry: Any) -> SourceDescriptor:
        if not isinstance(entry, dict) or "key" not in entry or "type" not in entry:
            raise InvalidConfigError("source", entry, "each source needs 'key' and 'type'")
        try:
            source = SourceDescriptor.from_dict(entry)
        except (ValueError, TypeError) as e:
            raise InvalidConfigError(f"source.{entry.get('key')}", entry, str(e)) from e

        if source.type == SourceType.RSS and not source.config.feed_url:
            raise InvalidConfigError(f"source.{source.key}", entry, "rss source needs config.feed_url")
        if source.type == SourceType.API and not source.config.fetcher_ref:
            raise InvalidConfigError(f"source.{source.key}", entry, "api source needs config.fetcher_ref")
        return source

    def register(self, source: SourceDescriptor) -> None:
        if source.key in self._sources:
            raise InvalidConfigError("source.key", source.key, "duplicate source key")
        self._sources[source.key] = source

    def get_source(self, key: str) -> Optional[SourceDescriptor]:
        return self._sources.get(key)

    def require_source(self, key: str) -> SourceDescriptor:
        source = self._sources.get(key)
        if source is None:
            raise ConfigurationError(f"Unknown source: {key}", config_key="source")
        return source

    def is_source_enabled(self, key: str) -> bool:
        source = self._sources.get(key)
        return bool(source and source.enabled)

    def get_enabled_sources(self) -> List[SourceDescriptor]:
        """Enabled sources, lowest priority value first."""
        enabled = [s for s in self._sources.values() if s.enabled]
        return sorted(enabled, key=lambda s: s.priority)

    def get_sources_by_type(self, source_type: SourceType) -> List[SourceDescriptor]:
        return [s for s in self._sources.values() if s.type == source_type]

    def list_sources(self) -> List[str]:
        return list(self._sources)

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, key: str) -> bool:
        return key in self._sources
