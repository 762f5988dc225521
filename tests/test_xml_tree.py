"""
Tests for feed sanitizing, parsing and item extraction.

Tests cover:
- Sanitizer rules
- Generic tree shape (leaves, attributes, namespaces, mixed content)
- RSS 2.0, Atom and RDF item extraction
- Depth-limited fallback search
"""

import pytest

from data_ingestion.fetchers.xml_tree import (
    MAX_SEARCH_DEPTH,
    extract_items,
    find_item_list,
    parse_xml,
    sanitize_xml,
)
from data_ingestion.types import FetchError


# =============================================================
# FIXTURES
# =============================================================

RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/" xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Frontpage Deals</title>
    <item>
      <title>Sony Headphones $49.99</title>
      <link>https://example.com/deals/1</link>
      <guid isPermaLink="false">deal-1</guid>
      <dc:date>2026-10-01T12:00:00Z</dc:date>
      <media:content url="https://img.example.com/1.jpg" medium="image"/>
    </item>
    <item>
      <title>Laptop Stand</title>
      <link>https://example.com/deals/2</link>
    </item>
  </channel>
</rss>"""

ATOM_FEED = """<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Deals</title>
  <entry>
    <title>Coffee Maker</title>
    <link rel="alternate" href="https://example.com/atom/1"/>
    <id>urn:deal:1</id>
  </entry>
</feed>"""

RDF_FEED = """<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#" xmlns="http://purl.org/rss/1.0/">
  <channel><title>RDF Deals</title></channel>
  <item><title>Desk Lamp</title><link>https://example.com/rdf/1</link></item>
  <item><title>Monitor</title><link>https://example.com/rdf/2</link></item>
</rdf:RDF>"""


# =============================================================
# TEST: Sanitizer
# =============================================================

class TestSanitizeXml:
    """Test sanitize_xml repairs."""

    def test_bare_ampersand_escaped(self):
        assert sanitize_xml("<t>AT&T</t>") == "<t>AT&amp;T</t>"

    def test_known_entities_untouched(self):
        text = "<t>&amp; &lt; &gt; &quot; &apos; &#169; &#xA9;</t>"
        assert sanitize_xml(text) == text

    def test_stray_less_than_escaped(self):
        assert sanitize_xml("<t>price < 50</t>") == "<t>price &lt; 50</t>"

    def test_tags_comments_and_declarations_untouched(self):
        text = '<?xml version="1.0"?><!-- c --><a><![CDATA[x]]></a>'
        assert sanitize_xml(text) == text

    def test_control_characters_removed(self):
        assert sanitize_xml("<t>a\x00b\x1fc\x7f</t>") == "<t>abc</t>"

    def test_whitespace_preserving_characters_kept(self):
        assert sanitize_xml("<t>a\tb\nc</t>") == "<t>a\tb\nc</t>"

    def test_surrounding_whitespace_stripped(self):
        assert sanitize_xml("  \n<t>x</t>\n ") == "<t>x</t>"

    def test_sanitizing_valid_feed_preserves_tree(self):
        assert parse_xml(sanitize_xml(RSS_FEED)) == parse_xml(RSS_FEED)


# =============================================================
# TEST: Parser
# =============================================================

class TestParseXml:
    """Test parse_xml tree shape."""

    def test_root_is_keyed_by_name(self):
        tree = parse_xml(RSS_FEED)
        assert list(tree) == ["rss"]
        assert tree["rss"]["version"] == "2.0"

    def test_children_are_lists_and_leaves_are_strings(self):
        channel = parse_xml(RSS_FEED)["rss"]["channel"]
        assert isinstance(channel, list)
        assert channel[0]["title"] == ["Frontpage Deals"]

    def test_leaf_with_attributes_keeps_text_under_underscore(self):
        item = parse_xml(RSS_FEED)["rss"]["channel"][0]["item"][0]
        assert item["guid"] == [{"ispermalink": "false", "_": "deal-1"}]

    def test_namespace_prefixes_kept(self):
        item = parse_xml(RSS_FEED)["rss"]["channel"][0]["item"][0]
        assert item["dc:date"] == ["2026-10-01T12:00:00Z"]
        assert item["media:content"] == [
            {"url": "https://img.example.com/1.jpg", "medium": "image"}
        ]

    def test_default_namespace_dropped_from_names(self):
        tree = parse_xml(ATOM_FEED)
        assert "feed" in tree
        assert tree["feed"]["entry"][0]["link"] == [
            {"rel": "alternate", "href": "https://example.com/atom/1"}
        ]

    def test_mixed_content_keeps_inner_markup(self):
        tree = parse_xml("<item><description>Hello <b>world</b> today</description></item>")
        description = tree["item"]["description"][0]
        assert description["_"] == "Hello <b>world</b> today"
        assert description["b"] == ["world"]

    def test_cdata_becomes_text(self):
        tree = parse_xml("<item><description><![CDATA[<p>Great deal</p>]]></description></item>")
        assert tree["item"]["description"] == ["<p>Great deal</p>"]

    def test_entities_decoded(self):
        tree = parse_xml("<item><title>Deal &amp; more</title></item>")
        assert tree["item"]["title"] == ["Deal & more"]

    def test_bom_and_encoding_declaration_tolerated(self):
        body = '\ufeff<?xml version="1.0" encoding="ISO-8859-1"?><rss><channel><item><title>x</title></item></channel></rss>'
        tree = parse_xml(body)
        assert tree["rss"]["channel"][0]["item"][0]["title"] == ["x"]

    def test_sanitized_broken_feed_parses(self):
        body = "<rss><channel><item><title>AT&T deal < $10</title><link>https://e.com/1</link></item></channel></rss>"
        tree = parse_xml(sanitize_xml(body))
        assert tree["rss"]["channel"][0]["item"][0]["title"] == ["AT&T deal < $10"]

    def test_truncated_feed_recovers_leading_items(self):
        body = "<rss><channel><item><title>A</title><link>https://e.com/a</link></item><item><title>B"
        items = extract_items(parse_xml(body))
        assert items[0]["title"] == ["A"]

    @pytest.mark.parametrize("body", ["", "   ", None, 42])
    def test_empty_or_non_text_body_raises(self, body):
        with pytest.raises(FetchError):
            parse_xml(body, source="src")

    def test_non_xml_body_raises(self):
        with pytest.raises(FetchError):
            parse_xml("this is not xml at all")


# =============================================================
# TEST: Item Extraction
# =============================================================

class TestExtractItems:
    """Test extract_items over the known feed shapes."""

    def test_rss_items(self):
        items = extract_items(parse_xml(RSS_FEED))
        assert [item["title"][0] for item in items] == ["Sony Headphones $49.99", "Laptop Stand"]

    def test_atom_entries(self):
        items = extract_items(parse_xml(ATOM_FEED))
        assert len(items) == 1
        assert items[0]["title"] == ["Coffee Maker"]

    def test_rdf_items(self):
        items = extract_items(parse_xml(RDF_FEED))
        assert [item["title"][0] for item in items] == ["Desk Lamp", "Monitor"]

    def test_channel_without_items_is_empty(self):
        assert extract_items(parse_xml("<rss><channel><title>Empty</title></channel></rss>")) == []

    def test_unknown_shape_found_by_search(self):
        body = "<response><data><item><title>Nested</title></item></data></response>"
        items = extract_items(parse_xml(body))
        assert items == [{"title": ["Nested"]}]

    def test_unknown_shape_beyond_depth_limit_not_found(self):
        body = (
            "<root><a><b><c><d><e>"
            "<item><title>Too deep</title></item>"
            "</e></d></c></b></a></root>"
        )
        assert extract_items(parse_xml(body)) == []


class TestFindItemList:
    """Test the bounded recursive search directly."""

    def test_finds_entry_key(self):
        assert find_item_list({"x": {"entry": [1, 2]}}) == [1, 2]

    def test_ignores_empty_lists(self):
        assert find_item_list({"item": [], "other": {"item": ["x"]}}) == ["x"]

    def test_scalars_yield_none(self):
        assert find_item_list("item") is None
        assert find_item_list(None) is None

    def test_respects_max_depth(self):
        node = {"item": ["found"]}
        for _ in range(MAX_SEARCH_DEPTH + 1):
            node = {"wrap": node}
        assert find_item_list(node) is None
        assert find_item_list(node, max_depth=MAX_SEARCH_DEPTH + 1) == ["found"]
