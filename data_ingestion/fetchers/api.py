"""
API Fetcher - Source-specific fetchers resolved by reference.

An API source names its fetcher with config.fetcher_ref. The
reference is looked up in a registry of statically imported
functions, so adding a provider means registering a function,
not loading code at runtime.

Fetcher function signature:
    async def fetch(source: SourceDescriptor, http: HttpClient) -> list[RawItem]
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from data_ingestion.fetchers.base import BaseFetcher
from data_ingestion.fetchers.http_client import HttpClient
from data_ingestion.types import FetchError, RawItem, SourceDescriptor, SourceType


logger = logging.getLogger(__name__)


ApiFetchFunction = Callable[[SourceDescriptor, HttpClient], Awaitable[List[RawItem]]]


@dataclass(frozen=True)
class FetcherRegistration:
    """Registration entry for an API fetcher."""

    ref: str
    fetch: ApiFetchFunction
    description: str = ""


class FetcherRegistry:
    """fetcher_ref -> registered fetch function."""

    def __init__(self, registrations: Iterable[FetcherRegistration] = ()) -> None:
        self._registrations: Dict[str, FetcherRegistration] = {}
        for registration in registrations:
            self.register(registration)

    def register(self, registration: FetcherRegistration) -> None:
        self._registrations[registration.ref] = registration

    def resolve(self, ref: Optional[str]) -> Optional[FetcherRegistration]:
        if not ref:
            return None
        return self._registrations.get(ref)

    def refs(self) -> List[str]:
        return sorted(self._registrations)

    def missing_refs(self, sources: Iterable[SourceDescriptor]) -> List[str]:
        """Keys of enabled API sources whose fetcher_ref is not registered."""
        return [
            source.key
            for source in sources
            if source.enabled
            and source.type == SourceType.API
            and self.resolve(source.config.fetcher_ref) is None
        ]


# =============================================================
# BUILT-IN FETCHERS
# =============================================================

def _dig(payload: Any, path: str) -> Any:
    """Follow a dotted key path through nested dicts."""
    for part in path.split("."):
        if not isinstance(payload, dict):
            return None
        payload = payload.get(part)
    return payload


async def fetch_json_api(source: SourceDescriptor, http: HttpClient) -> List[RawItem]:
    """
    Generic JSON endpoint.

    options:
        endpoint   URL to GET (required)
        items_key  dotted path to the item list (default "items")
    """
    endpoint = source.config.options.get("endpoint")
    if not endpoint:
        raise FetchError(
            f"Source {source.key} has no options.endpoint",
            source=source.key,
            recoverable=False,
        )

    payload = await http.get_json(
        endpoint,
        headers={"Accept": "application/json", **source.config.headers},
        timeout=source.timeout_seconds,
        source=source.key,
    )
    items = payload if isinstance(payload, list) else _dig(payload, source.config.options.get("items_key", "items"))
    if not isinstance(items, list):
        raise FetchError(
            f"No item list in response from {endpoint}",
            source=source.key,
            recoverable=False,
        )
    return items


BUILTIN_FETCHERS = (
    FetcherRegistration(
        ref="json_api",
        fetch=fetch_json_api,
        description="Generic JSON endpoint returning a list of deal objects",
    ),
)


def default_fetcher_registry() -> FetcherRegistry:
    return FetcherRegistry(BUILTIN_FETCHERS)


# =============================================================
# FETCHER
# =============================================================

class ApiFetcher(BaseFetcher):
    """Fetcher for API sources (type "api")."""

    def __init__(self, http: HttpClient, registry: Optional[FetcherRegistry] = None) -> None:
        super().__init__(http)
        self._registry = registry or default_fetcher_registry()

    @property
    def registry(self) -> FetcherRegistry:
        return self._registry

    async def fetch_items(self, source: SourceDescriptor) -> List[RawItem]:
        registration = self._registry.resolve(source.config.fetcher_ref)
        if registration is None:
            raise FetchError(
                f"No API fetcher registered for ref {source.config.fetcher_ref!r}",
                source=source.key,
                recoverable=False,
            )
        return await registration.fetch(source, self._http)
