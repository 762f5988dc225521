"""
RSS Fetcher - RSS 2.0, Atom and RDF feeds.

Retrieve -> sanitize -> lenient parse -> extract. A feed that
parses to zero items is a successful fetch of nothing; only an
unusable body fails the source.
"""

import logging
from typing import Dict, List

from data_ingestion.fetchers.base import BaseFetcher
from data_ingestion.fetchers.xml_tree import extract_items, parse_xml, sanitize_xml
from data_ingestion.types import FetchError, RawItem, SourceDescriptor


logger = logging.getLogger(__name__)


class RssFetcher(BaseFetcher):
    """Fetcher for feed sources (type "rss")."""

    def build_headers(self, source: SourceDescriptor) -> Dict[str, str]:
        """Default feed headers, overridden by the source's own."""
        config = self._http.config
        headers = {
            "Accept": config.rss_accept,
            "User-Agent": config.user_agent,
        }
        headers.update(source.config.headers)
        return headers

    async def fetch_items(self, source: SourceDescriptor) -> List[RawItem]:
        feed_url = source.config.feed_url
        if not feed_url:
            raise FetchError(
                f"Source {source.key} has no feed_url",
                source=source.key,
                recoverable=False,
            )

        body = await self._http.get_text(
            feed_url,
            headers=self.build_headers(source),
            timeout=source.timeout_seconds,
            source=source.key,
        )
        if not isinstance(body, str) or not body.strip():
            raise FetchError(f"Empty response from {feed_url}", source=source.key)

        tree = parse_xml(sanitize_xml(body), source=source.key)
        items = extract_items(tree)
        if not items:
            logger.warning(f"[{source.key}] Feed parsed but no items found (root: {list(tree)})")
        return items
