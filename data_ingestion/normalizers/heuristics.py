"""
Data Ingestion - Extraction Heuristics.

Ordered, immutable rule tables for fields that feeds never state
explicitly. Every table is evaluated first-match-wins; extending a
heuristic means adding a row, not touching control flow.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional, Pattern, Tuple


# =============================================================
# MERCHANT RULES
# =============================================================

# (pattern over the description, merchant name)
MERCHANT_DOMAIN_RULES: Tuple[Tuple[Pattern, str], ...] = tuple(
    (re.compile(rf"\[{re.escape(domain)}\.com\]", re.IGNORECASE), name)
    for domain, name in (
        ("amazon", "Amazon"),
        ("walmart", "Walmart"),
        ("target", "Target"),
        ("bestbuy", "Best Buy"),
        ("ebay", "eBay"),
        ("newegg", "Newegg"),
        ("homedepot", "Home Depot"),
        ("lowes", "Lowe's"),
        ("costco", "Costco"),
        ("kohls", "Kohl's"),
        ("macys", "Macy's"),
        ("nordstrom", "Nordstrom"),
        ("adidas", "Adidas"),
        ("nike", "Nike"),
        ("bhphotovideo", "B&H Photo"),
        ("samsclub", "Sam's Club"),
        ("staples", "Staples"),
        ("dell", "Dell"),
        ("hp", "HP"),
        ("lenovo", "Lenovo"),
        ("microsoft", "Microsoft"),
        ("cvs", "CVS"),
        ("walgreens", "Walgreens"),
    )
)

GENERIC_MERCHANT_PATTERN = re.compile(r"\[([a-z0-9-]+)\.com\]", re.IGNORECASE)

ATTRIBUTION_PATTERN = re.compile(r"\b(?:via|at|from)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)")

MERCHANT_KEYWORDS: Tuple[str, ...] = (
    "Amazon",
    "Walmart",
    "Target",
    "Best Buy",
    "Home Depot",
    "Costco",
    "eBay",
    "Newegg",
    "CVS",
    "Walgreens",
    "HP",
    "Dell",
    "Lenovo",
    "Microsoft",
    "Adidas",
    "Nike",
    "Macy",
    "Nordstrom",
    "Kohl's",
    "Lowe's",
    "Staples",
    "B&H Photo",
    "Sam's Club",
    "Sephora",
    "IKEA",
)

_KEYWORD_PATTERNS: Tuple[Tuple[Pattern, str], ...] = tuple(
    (re.compile(rf"(?<!\w){re.escape(keyword)}(?!\w)"), keyword)
    for keyword in MERCHANT_KEYWORDS
)


def extract_merchant(title: str, description: Optional[str]) -> Optional[str]:
    """
    Storefront name from the deal text.

    description must still contain its [domain.com] references,
    i.e. cleaned of HTML but not of forum markup.
    """
    description = description or ""

    for pattern, name in MERCHANT_DOMAIN_RULES:
        if pattern.search(description):
            return name

    match = GENERIC_MERCHANT_PATTERN.search(description)
    if match:
        words = match.group(1).replace("-", " ")
        return words[:1].upper() + words[1:].lower()

    for text in (title, description):
        match = ATTRIBUTION_PATTERN.search(text)
        if match:
            return match.group(1)

    combined = f"{title} {description}"
    for pattern, keyword in _KEYWORD_PATTERNS:
        if pattern.search(combined):
            return keyword

    return None


# =============================================================
# COUPON RULES
# =============================================================

# Matching is case-insensitive; a captured word that is ordinary
# English ("use code at checkout") is not a code.
COUPON_CODE_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"(?:w/|with|use|via)\s+(?:coupon\s+|promo\s+)?code\s+([A-Z0-9]{3,20})\b", re.IGNORECASE),
    re.compile(r"(?:coupon|promo)?\s*code:\s*([A-Z0-9]{3,20})\b", re.IGNORECASE),
    re.compile(r"coupon code:\s*([A-Z0-9]{3,20})\b", re.IGNORECASE),
)

COUPON_STOP_WORDS = frozenset({
    "and", "any", "applied", "at", "below", "both", "for", "from",
    "here", "needed", "none", "not", "required", "the", "then", "this",
    "when", "will", "you", "your",
})


def extract_coupon_code(text: str) -> Optional[str]:
    for pattern in COUPON_CODE_PATTERNS:
        for match in pattern.finditer(text):
            code = match.group(1)
            if code.lower() not in COUPON_STOP_WORDS:
                return code.upper()
    return None


# =============================================================
# PRICE RULES
# =============================================================

PRICE_PATTERN = re.compile(r"\$\s?(\d{1,3}(?:,\d{3})*(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)")

MAX_PRICE = Decimal("1000000")


def parse_price(value) -> Optional[Decimal]:
    """Number or currency string to a Decimal in [0, MAX_PRICE], else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    else:
        text = re.sub(r"[^\d.]", "", str(value))
    if not text:
        return None
    try:
        price = Decimal(text).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None
    if price < 0 or price > MAX_PRICE:
        return None
    return price


def extract_title_price(title: str) -> Optional[Decimal]:
    """First dollar amount in a title, e.g. "Headphones $49.99"."""
    match = PRICE_PATTERN.search(title)
    if not match:
        return None
    return parse_price(match.group(1))
