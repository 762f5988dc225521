"""
Data Ingestion - Deal Normalizer.

============================================================
RESPONSIBILITY
============================================================
Reduces one raw item (feed element tree or flat API object)
to a NormalizedDeal.

- Resolves shape-ambiguous fields through text_fields
- Cleans description text
- Applies the heuristic tables for merchant, coupon and price
- Rejects items that lack a usable title or url

============================================================
FIELD PRECEDENCE
============================================================
url:       link text -> Atom link href -> url -> guid (absolute
           URLs only) -> enclosure url
image_url: image/* enclosure -> media:content -> media:thumbnail
           -> image field -> <img src> in description HTML
dates:     pubDate -> published -> updated -> date -> dc:date

============================================================
"""

import re
from collections.abc import Mapping
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, List, Optional
from urllib.parse import urlparse

from core.clock import ensure_utc
from data_ingestion.config import ProcessingConfig
from data_ingestion.normalizers.heuristics import (
    extract_coupon_code,
    extract_merchant,
    extract_title_price,
    parse_price,
)
from data_ingestion.normalizers.text_fields import (
    Attributed,
    Plain,
    Wrapped,
    clean_description,
    clean_text,
    decode_text_field,
    extract_text,
    raw_text,
)
from data_ingestion.types import NormalizationError, NormalizedDeal, RawItem


DESCRIPTION_KEYS = ("description", "summary", "content", "content:encoded")
DATE_KEYS = ("pubdate", "published", "updated", "date", "dc:date", "published_at")
EXPIRY_KEYS = ("expires_at", "expiration_date", "expiry")
IMAGE_HTML_KEYS = ("description", "content:encoded", "content")

MAX_CATEGORY_LENGTH = 50

_IMG_SRC_PATTERN = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def parse_datetime(text: Optional[str]) -> Optional[datetime]:
    """RFC 2822 or ISO 8601 to an aware UTC datetime; None if unparseable."""
    if not text:
        return None
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        parsed = None
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(text.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return ensure_utc(parsed)


def is_absolute_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class DealNormalizer:
    """
    Raw item -> NormalizedDeal.

    Raises NormalizationError for items that cannot be reduced;
    the dedup engine counts those as item errors.
    """

    def __init__(self, config: Optional[ProcessingConfig] = None) -> None:
        self._config = config or ProcessingConfig()

    def normalize(self, raw: RawItem, source_key: str) -> NormalizedDeal:
        if not isinstance(raw, Mapping):
            raise NormalizationError(
                f"Raw item is not an object: {type(raw).__name__}",
                source=source_key,
                recoverable=False,
            )

        title = extract_text(raw.get("title"))
        url = self.extract_url(raw)
        if not title or not url:
            raise NormalizationError(
                "Item missing title or url",
                source=source_key,
                recoverable=False,
                details={"title": (title or "")[:80], "url": url},
            )
        if not is_absolute_http_url(url):
            raise NormalizationError(
                f"Item url is not an absolute http(s) URL: {url[:120]}",
                source=source_key,
                recoverable=False,
            )
        title = title[: self._config.max_title_length]

        description_html = self._description_html(raw)
        # Heuristics need the [domain.com] references that
        # clean_description strips
        heuristic_text = clean_text(description_html) if description_html else ""

        external_id = self.extract_external_id(raw, url)

        price = parse_price(extract_text(raw.get("price"), stringify=False))
        if price is None:
            price = extract_title_price(title)
        original_price = parse_price(
            extract_text(raw.get("list_price") or raw.get("original_price"), stringify=False)
        )
        if original_price is not None and price is not None and original_price <= price:
            original_price = None

        return NormalizedDeal(
            title=title,
            url=url,
            source=source_key,
            description=clean_description(description_html),
            image_url=self.extract_image(raw),
            merchant=(
                extract_text(raw.get("merchant"), stringify=False)
                or extract_merchant(title, heuristic_text)
            ),
            category=self.extract_category(raw),
            published_at=self._first_date(raw, DATE_KEYS),
            external_id=external_id,
            coupon_code=(
                self._explicit_coupon(raw)
                or extract_coupon_code(f"{title} {heuristic_text}")
            ),
            price=price,
            original_price=original_price,
            expires_at=self._first_date(raw, EXPIRY_KEYS),
        )

    # =========================================================
    # FIELD EXTRACTION
    # =========================================================

    def extract_url(self, raw: RawItem) -> Optional[str]:
        link = raw.get("link")
        url = extract_text(link, stringify=False)
        if not url:
            url = self._atom_link_href(link)
        if not url:
            url = extract_text(raw.get("url"), stringify=False)
        if not url:
            guid = extract_text(raw.get("guid"), stringify=False)
            if guid and guid.startswith("http"):
                url = guid
        if not url:
            enclosure = decode_text_field(raw.get("enclosure"))
            if isinstance(enclosure, Attributed):
                url = enclosure.get("url")
        return url.strip() if url else None

    @staticmethod
    def _atom_link_href(link: Any) -> Optional[str]:
        candidates = [entry for entry in _as_list(link) if isinstance(entry, Mapping) and entry.get("href")]
        for entry in candidates:
            if entry.get("rel") in (None, "", "alternate"):
                return str(entry["href"]).strip()
        if candidates:
            return str(candidates[0]["href"]).strip()
        return None

    @staticmethod
    def extract_external_id(raw: RawItem, url: str) -> Optional[str]:
        """Feed guid/id, kept only when it adds identity beyond the url."""
        external_id = extract_text(raw.get("guid"), stringify=False) or extract_text(
            raw.get("id"), stringify=False
        )
        if not external_id or external_id == url:
            return None
        return external_id

    @staticmethod
    def _description_html(raw: RawItem) -> Optional[str]:
        for key in DESCRIPTION_KEYS:
            text = raw_text(decode_text_field(raw.get(key)))
            if text and text.strip():
                return text
        return None

    def extract_image(self, raw: RawItem) -> Optional[str]:
        for enclosure in _as_list(raw.get("enclosure")):
            if isinstance(enclosure, Mapping):
                media_type = str(enclosure.get("type") or "").lower()
                if media_type.startswith("image/") and enclosure.get("url"):
                    return str(enclosure["url"]).strip()

        for key in ("media:content", "media:thumbnail"):
            field = decode_text_field(raw.get(key))
            if isinstance(field, Attributed) and field.get("url"):
                return field.get("url")

        for key in ("image", "image_url"):
            field = decode_text_field(raw.get(key))
            if isinstance(field, (Plain, Wrapped)):
                return field.value.strip()
            if isinstance(field, Attributed):
                url = field.get("url") or field.text
                if url:
                    return url.strip()

        for key in IMAGE_HTML_KEYS:
            html = raw_text(decode_text_field(raw.get(key)), stringify=False)
            if html:
                match = _IMG_SRC_PATTERN.search(html)
                if match:
                    return match.group(1)
        return None

    @staticmethod
    def extract_category(raw: RawItem) -> Optional[str]:
        category = extract_text(raw.get("category"))
        if category and len(category) < MAX_CATEGORY_LENGTH:
            return category
        return None

    @staticmethod
    def _explicit_coupon(raw: RawItem) -> Optional[str]:
        code = extract_text(raw.get("coupon_code"), stringify=False)
        return code.upper() if code else None

    @staticmethod
    def _first_date(raw: RawItem, keys: Iterable[str]) -> Optional[datetime]:
        for key in keys:
            parsed = parse_datetime(extract_text(raw.get(key), stringify=False))
            if parsed is not None:
                return parsed
        return None
