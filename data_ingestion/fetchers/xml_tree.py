"""
XML Tree - Sanitize, parse and extract items from feed bodies.

============================================================
RESPONSIBILITY
============================================================
Three independent steps, each testable on its own:

1. sanitize_xml(text)      -> text a lenient parser can digest
2. parse_xml(text)         -> generic tree of dicts/lists/strings
3. extract_items(tree)     -> list of raw items

============================================================
TREE SHAPE
============================================================
- Tag and attribute names are lowercased; namespace prefixes
  are kept ("media:content", "dc:date").
- The root is {root_name: value}.
- A leaf element with no attributes is a plain string.
- Any other element is a dict: attributes merged in as strings,
  each child name maps to a list of child values, and direct
  text (if any) is under "_". For mixed content "_" holds the
  inner markup so HTML inside descriptions survives.

============================================================
"""

import re
from typing import Any, Dict, List, Optional

from lxml import etree

from data_ingestion.types import FetchError, RawItem


MAX_SEARCH_DEPTH = 5
ITEM_KEYS = ("item", "entry")
TEXT_KEY = "_"

_XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"

_UNESCAPED_AMPERSAND = re.compile(r"&(?!(?:amp|lt|gt|quot|apos);|#\d+;|#x[0-9a-fA-F]+;)")
_STRAY_LESS_THAN = re.compile(r"<(?![/a-zA-Z!?])")
_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)


# =============================================================
# SANITIZE
# =============================================================

def sanitize_xml(text: str) -> str:
    """
    Repair the most common feed breakage before parsing.

    - `&` not starting a known entity becomes `&amp;`
    - `<` not starting a tag, comment or processing instruction
      becomes `&lt;`
    - control characters outside the XML character range are dropped
    """
    text = _UNESCAPED_AMPERSAND.sub("&amp;", text)
    text = _STRAY_LESS_THAN.sub("&lt;", text)
    text = _INVALID_XML_CHARS.sub("", text)
    return text.strip()


# =============================================================
# PARSE
# =============================================================

def parse_xml(text: Any, source: str = "rss") -> Dict[str, Any]:
    """
    Parse a (sanitized) feed body leniently.

    Raises:
        FetchError: body is empty, not a string, or beyond recovery
    """
    if not isinstance(text, str) or not text.strip():
        raise FetchError("Empty or non-text feed body", source=source)

    # The declared encoding no longer applies once the body is a str
    body = _XML_DECLARATION.sub("", text.lstrip("\ufeff"), count=1)

    parser = etree.XMLParser(
        recover=True,
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        remove_pis=True,
    )
    try:
        root = etree.fromstring(body.encode("utf-8"), parser=parser)
    except etree.XMLSyntaxError as e:
        raise FetchError(f"Unparseable feed body: {e}", source=source, cause=e) from e

    if root is None:
        raise FetchError("Unparseable feed body", source=source)

    return {_element_name(root): _element_value(root)}


def _element_name(element: Any) -> str:
    tag = element.tag
    local = tag.split("}", 1)[1] if tag.startswith("{") else tag
    if element.prefix:
        return f"{element.prefix}:{local}".lower()
    return local.lower()


def _attribute_name(element: Any, name: str) -> str:
    if not name.startswith("{"):
        return name.lower()
    uri, local = name[1:].split("}", 1)
    if uri == _XML_NAMESPACE:
        return f"xml:{local}".lower()
    for prefix, ns_uri in element.nsmap.items():
        if ns_uri == uri and prefix:
            return f"{prefix}:{local}".lower()
    return local.lower()


def _element_value(element: Any) -> Any:
    children = [child for child in element if isinstance(child.tag, str)]
    attributes = {
        _attribute_name(element, name): value
        for name, value in element.attrib.items()
    }
    text = element.text or ""

    if not children:
        if not attributes:
            return text.strip()
        node: Dict[str, Any] = dict(attributes)
        if text.strip():
            node[TEXT_KEY] = text.strip()
        return node

    node = dict(attributes)
    for child in children:
        name = _element_name(child)
        if not isinstance(node.get(name), list):
            node[name] = []
        node[name].append(_element_value(child))

    has_direct_text = bool(text.strip()) or any(
        (child.tail or "").strip() for child in children
    )
    if has_direct_text:
        inner = text + "".join(
            etree.tostring(child, encoding="unicode", with_tail=True)
            for child in children
        )
        node[TEXT_KEY] = inner.strip()
    return node


# =============================================================
# EXTRACT
# =============================================================

def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def extract_items(tree: Dict[str, Any]) -> List[RawItem]:
    """
    Pull the item list out of a parsed feed.

    Known shapes are tried first: RSS 2.0 (rss.channel[0].item),
    Atom (feed.entry), RDF (rdf.item). Anything else falls back to
    a depth-limited search for an "item" or "entry" list.
    """
    rss = tree.get("rss")
    if isinstance(rss, dict):
        channel = _first(rss.get("channel"))
        if isinstance(channel, dict) and isinstance(channel.get("item"), list):
            return list(channel["item"])

    feed = tree.get("feed")
    if isinstance(feed, dict) and isinstance(feed.get("entry"), list):
        return list(feed["entry"])

    rdf = tree.get("rdf") or tree.get("rdf:rdf")
    if isinstance(rdf, dict) and isinstance(rdf.get("item"), list):
        return list(rdf["item"])

    found = find_item_list(tree)
    return list(found) if found else []


def find_item_list(
    node: Any,
    depth: int = 0,
    max_depth: int = MAX_SEARCH_DEPTH,
) -> Optional[List[Any]]:
    """Depth-first search for a non-empty "item"/"entry" list, at most max_depth levels down."""
    if depth > max_depth:
        return None

    if isinstance(node, dict):
        for key in ITEM_KEYS:
            value = node.get(key)
            if isinstance(value, list) and value:
                return value
        children = node.values()
    elif isinstance(node, list):
        children = node
    else:
        return None

    for child in children:
        found = find_item_list(child, depth + 1, max_depth)
        if found:
            return found
    return None
