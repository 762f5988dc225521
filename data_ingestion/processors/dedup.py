"""
Dedup Keys.

A DedupKey identifies the underlying offer, independent of which
pass observed it:

- (source, external_id) when the source supplies an id distinct
  from the url
- otherwise the normalized url

The key is a SHA-256 hex digest so it fits a fixed-width unique
column.
"""

import hashlib
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


TRACKING_PARAMS = frozenset({
    "ref",
    "referrer",
    "source",
    "affiliate",
    "aff",
    "partner",
    "gclid",
    "fbclid",
    "msclkid",
    "dclid",
    "zanpid",
    "clickid",
    "mc_cid",
    "mc_eid",
    "_ga",
    "_gl",
})
TRACKING_PREFIXES = ("utm_",)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _is_tracking_param(name: str) -> bool:
    name = name.lower()
    return name in TRACKING_PARAMS or name.startswith(TRACKING_PREFIXES)


def normalize_url(url: str) -> str:
    """
    Canonical form of a deal url.

    Drops tracking parameters and the fragment, sorts the remaining
    parameters, lowercases scheme and host, removes a leading
    "www." and any trailing slash on the path.
    """
    url = url.strip()
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return url.lower()

    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    netloc = host
    if port and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{port}"

    params = [
        (name, value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(name)
    ]
    query = urlencode(sorted(params))
    path = parts.path.rstrip("/")

    return urlunsplit((scheme, netloc, path, query, ""))


def compute_dedup_key(source: str, external_id: Optional[str], url: str) -> str:
    if external_id and external_id != url:
        basis = f"id:{source}:{external_id}"
    else:
        basis = f"url:{normalize_url(url)}"
    return hashlib.sha256(basis.encode("utf-8")).hexdigest()
