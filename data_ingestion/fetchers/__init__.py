"""
Fetchers.

Retrieve raw items for a source over HTTP.

- RssFetcher: RSS 2.0 / Atom / RDF feeds
- ApiFetcher: source-specific fetchers resolved by fetcher_ref
- SourceFetcher: dispatch by type behind a per-source circuit breaker
"""

from data_ingestion.fetchers.api import (
    ApiFetcher,
    FetcherRegistration,
    FetcherRegistry,
    default_fetcher_registry,
)
from data_ingestion.fetchers.base import BaseFetcher
from data_ingestion.fetchers.circuit_breaker import (
    BreakerState,
    CircuitBreaker,
    CircuitBreakerRegistry,
)
from data_ingestion.fetchers.http_client import HttpClient
from data_ingestion.fetchers.router import SourceFetcher
from data_ingestion.fetchers.rss import RssFetcher
from data_ingestion.fetchers.xml_tree import extract_items, parse_xml, sanitize_xml

__all__ = [
    "ApiFetcher",
    "BaseFetcher",
    "BreakerState",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "FetcherRegistration",
    "FetcherRegistry",
    "HttpClient",
    "RssFetcher",
    "SourceFetcher",
    "default_fetcher_registry",
    "extract_items",
    "parse_xml",
    "sanitize_xml",
]
