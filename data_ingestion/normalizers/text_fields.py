"""
Data Ingestion - Text Fields.

============================================================
RESPONSIBILITY
============================================================
Turns shape-ambiguous feed values into clean strings.

A field read from a parsed feed may be a scalar, a list of
values, or an element dict carrying its text under a key.
decode_text_field() reduces each of these to one of three
variants, and extract_text() resolves any variant to text.

============================================================
TEXT FIELD VARIANTS
============================================================
Plain(value)         scalar value
Wrapped(value)       string inside a list (repeatable element)
Attributed(mapping)  element dict with attributes and/or a
                     text carrier

============================================================
"""

import html
import json
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union


TEXT_CARRIER_KEYS = ("_", "$t", "_text", "#text")


@dataclass(frozen=True)
class Plain:
    value: str


@dataclass(frozen=True)
class Wrapped:
    value: str


@dataclass(frozen=True)
class Attributed:
    attributes: Mapping[str, Any]

    def get(self, key: str) -> Optional[str]:
        """Attribute value as a stripped string, or None."""
        value = self.attributes.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if value is None or isinstance(value, (dict, list)):
            return None
        text = str(value).strip()
        return text or None

    @property
    def text(self) -> Optional[str]:
        """Value of the first text carrier present, if any."""
        for key in TEXT_CARRIER_KEYS:
            value = self.attributes.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return None


TextField = Union[Plain, Wrapped, Attributed]


def decode_text_field(raw: Any) -> Optional[TextField]:
    """Classify a raw feed value. Empty values decode to None."""
    if raw is None:
        return None
    if isinstance(raw, list):
        if not raw:
            return None
        first = raw[0]
        if isinstance(first, Mapping):
            return Attributed(first)
        if first is None or isinstance(first, list):
            return None
        text = str(first)
        return Wrapped(text) if text.strip() else None
    if isinstance(raw, Mapping):
        return Attributed(raw)
    text = str(raw)
    return Plain(text) if text.strip() else None


def raw_text(field: Optional[TextField], stringify: bool = True) -> Optional[str]:
    """
    Uncleaned text of a field.

    For Attributed fields without a text carrier, falls back to a
    JSON rendering of the mapping unless stringify is False.
    """
    if field is None:
        return None
    if isinstance(field, (Plain, Wrapped)):
        return field.value
    text = field.text
    if text is not None:
        return text
    if not stringify or not field.attributes:
        return None
    return json.dumps(dict(field.attributes), sort_keys=True, default=str)


def extract_text(raw: Any, stringify: bool = True) -> Optional[str]:
    """Decode, resolve and clean a raw feed value."""
    text = raw_text(decode_text_field(raw), stringify=stringify)
    if text is None:
        return None
    return clean_text(text) or None


# =============================================================
# CLEANING
# =============================================================

_HTML_TAG_PATTERN = re.compile(r"</?[a-zA-Z!][^>]*>")
_WHITESPACE_PATTERN = re.compile(r"\s+")

# Ordered (pattern, replacement) pairs for forum markup
FORUM_MARKUP_RULES = (
    (re.compile(r"\[url[^\]]*\]|\[/url\]", re.IGNORECASE), ""),
    (re.compile(r"\[/?list[^\]]*\]", re.IGNORECASE), ""),
    (re.compile(r"\[\*\]"), "• "),
    (re.compile(r"\[/?[biu]\]", re.IGNORECASE), ""),
    (re.compile(r"\[[a-z0-9.-]+\.(?:com|net|org|io)\]", re.IGNORECASE), ""),
    (re.compile(r"\*+"), ""),
)


def clean_text(text: str) -> str:
    """Strip HTML tags, decode entities, collapse whitespace."""
    text = _HTML_TAG_PATTERN.sub(" ", text)
    text = html.unescape(text)
    # Entity-encoded markup only becomes visible after decoding
    text = _HTML_TAG_PATTERN.sub(" ", text)
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def strip_forum_markup(text: str) -> str:
    for pattern, replacement in FORUM_MARKUP_RULES:
        text = pattern.sub(replacement, text)
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def clean_description(text: Optional[str]) -> Optional[str]:
    """clean_text plus forum markup removal. Empty results become None."""
    if not text:
        return None
    cleaned = strip_forum_markup(clean_text(text))
    return cleaned or None
