"""
Tests for the deal normalizer.

Tests cover:
- The reference scenario item
- URL, image and date precedence
- Price handling
- Rejection of malformed items
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from data_ingestion.config import ProcessingConfig
from data_ingestion.fetchers.xml_tree import extract_items, parse_xml
from data_ingestion.normalizers.deal_normalizer import DealNormalizer, parse_datetime
from data_ingestion.types import NormalizationError


# =============================================================
# FIXTURES
# =============================================================

@pytest.fixture
def normalizer():
    return DealNormalizer()


def _rss_item(inner: str):
    body = f'<rss xmlns:media="http://search.yahoo.com/mrss/"><channel><item>{inner}</item></channel></rss>'
    return extract_items(parse_xml(body))[0]


# =============================================================
# TEST: Reference Scenario
# =============================================================

class TestScenario:
    """The headphones item from a flat feed object and from XML."""

    def test_flat_item(self, normalizer):
        deal = normalizer.normalize(
            {
                "title": "50% Off Headphones",
                "link": "https://x.com/d1",
                "description": "Amazon [amazon.com] has headphones w/ code SAVE50",
                "guid": "abc123",
            },
            "slickdeals_rss",
        )

        assert deal.title == "50% Off Headphones"
        assert deal.url == "https://x.com/d1"
        assert deal.merchant == "Amazon"
        assert deal.coupon_code == "SAVE50"
        assert deal.external_id == "abc123"
        assert deal.source == "slickdeals_rss"
        assert deal.description == "Amazon has headphones w/ code SAVE50"
        assert deal.price is None

    def test_parsed_xml_item(self, normalizer):
        raw = _rss_item(
            "<title>50% Off Headphones</title>"
            "<link>https://x.com/d1</link>"
            "<description>Amazon [amazon.com] has headphones w/ code SAVE50</description>"
            '<guid isPermaLink="false">abc123</guid>'
        )
        deal = normalizer.normalize(raw, "slickdeals_rss")

        assert (deal.title, deal.url, deal.merchant, deal.coupon_code, deal.external_id) == (
            "50% Off Headphones",
            "https://x.com/d1",
            "Amazon",
            "SAVE50",
            "abc123",
        )


# =============================================================
# TEST: URL and Identity
# =============================================================

class TestUrlExtraction:
    """Test url precedence."""

    def test_atom_alternate_link_preferred(self, normalizer):
        raw = {
            "title": "x",
            "link": [
                {"rel": "self", "href": "https://e.com/feed"},
                {"rel": "alternate", "href": "https://e.com/deal"},
            ],
        }
        assert normalizer.extract_url(raw) == "https://e.com/deal"

    def test_atom_link_without_rel(self, normalizer):
        assert normalizer.extract_url({"link": [{"href": "https://e.com/a"}]}) == "https://e.com/a"

    def test_url_field(self, normalizer):
        assert normalizer.extract_url({"url": "https://e.com/api/1"}) == "https://e.com/api/1"

    def test_guid_used_only_when_absolute(self, normalizer):
        assert normalizer.extract_url({"guid": "https://e.com/g"}) == "https://e.com/g"
        assert normalizer.extract_url({"guid": "abc"}) is None

    def test_enclosure_last(self, normalizer):
        raw = {"enclosure": [{"url": "https://e.com/file", "type": "audio/mpeg"}]}
        assert normalizer.extract_url(raw) == "https://e.com/file"

    def test_external_id_equal_to_url_dropped(self, normalizer):
        assert normalizer.extract_external_id({"guid": "https://e.com/1"}, "https://e.com/1") is None

    def test_atom_id_used_as_external_id(self, normalizer):
        assert normalizer.extract_external_id({"id": ["urn:deal:9"]}, "https://e.com/9") == "urn:deal:9"


# =============================================================
# TEST: Image, Category, Dates
# =============================================================

class TestImageExtraction:
    """Test image precedence."""

    def test_image_enclosure_first(self, normalizer):
        raw = {
            "enclosure": [{"url": "https://img/enc.jpg", "type": "image/jpeg"}],
            "media:content": [{"url": "https://img/media.jpg"}],
        }
        assert normalizer.extract_image(raw) == "https://img/enc.jpg"

    def test_non_image_enclosure_skipped(self, normalizer):
        raw = {
            "enclosure": [{"url": "https://e.com/a.mp3", "type": "audio/mpeg"}],
            "media:thumbnail": [{"url": "https://img/thumb.jpg"}],
        }
        assert normalizer.extract_image(raw) == "https://img/thumb.jpg"

    def test_image_field(self, normalizer):
        assert normalizer.extract_image({"image_url": "https://img/api.jpg"}) == "https://img/api.jpg"

    def test_img_tag_in_description(self, normalizer):
        raw = {"description": '<p><img class="x" src="https://img/desc.png" /> Deal</p>'}
        assert normalizer.extract_image(raw) == "https://img/desc.png"

    def test_no_image(self, normalizer):
        assert normalizer.extract_image({"description": "plain"}) is None


class TestCategoryAndDates:
    """Test category and date handling."""

    def test_category_kept_when_short(self, normalizer):
        assert normalizer.extract_category({"category": ["Electronics"]}) == "Electronics"

    def test_long_category_dropped(self, normalizer):
        assert normalizer.extract_category({"category": "x" * 60}) is None

    def test_rfc2822_date(self):
        assert parse_datetime("Thu, 01 Oct 2026 12:30:00 GMT") == datetime(
            2026, 10, 1, 12, 30, tzinfo=timezone.utc
        )

    def test_iso_date_with_z(self):
        assert parse_datetime("2026-10-01T12:30:00Z") == datetime(2026, 10, 1, 12, 30, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        assert parse_datetime("2026-10-01T14:30:00+02:00") == datetime(
            2026, 10, 1, 12, 30, tzinfo=timezone.utc
        )

    def test_unparseable_date(self):
        assert parse_datetime("next tuesday") is None

    def test_published_date_precedence(self, normalizer):
        deal = normalizer.normalize(
            {
                "title": "t",
                "link": "https://e.com/1",
                "updated": "2026-10-02T00:00:00Z",
                "pubdate": "Thu, 01 Oct 2026 00:00:00 GMT",
            },
            "src",
        )
        assert deal.published_at == datetime(2026, 10, 1, tzinfo=timezone.utc)


# =============================================================
# TEST: Prices
# =============================================================

class TestPrices:
    """Test price and original_price."""

    def test_title_price_used_when_no_field(self, normalizer):
        deal = normalizer.normalize({"title": "Mouse $19.99", "link": "https://e.com/m"}, "src")
        assert deal.price == Decimal("19.99")

    def test_explicit_price_field_wins(self, normalizer):
        deal = normalizer.normalize(
            {"title": "Mouse $19.99", "link": "https://e.com/m", "price": "17.50"}, "src"
        )
        assert deal.price == Decimal("17.50")

    def test_original_price_kept_when_higher(self, normalizer):
        deal = normalizer.normalize(
            {"title": "Mouse", "url": "https://e.com/m", "price": 10, "list_price": 25}, "src"
        )
        assert deal.original_price == Decimal("25.00")

    def test_original_price_dropped_when_not_higher(self, normalizer):
        deal = normalizer.normalize(
            {"title": "Mouse", "url": "https://e.com/m", "price": 10, "original_price": 10}, "src"
        )
        assert deal.original_price is None

    def test_explicit_merchant_and_coupon_fields(self, normalizer):
        deal = normalizer.normalize(
            {
                "title": "Shoes at Target",
                "url": "https://e.com/s",
                "merchant": "Zappos",
                "coupon_code": "shoe15",
            },
            "src",
        )
        assert deal.merchant == "Zappos"
        assert deal.coupon_code == "SHOE15"


# =============================================================
# TEST: Rejection
# =============================================================

class TestRejection:
    """Malformed items raise NormalizationError."""

    @pytest.mark.parametrize("raw", [
        {"link": "https://e.com/1"},
        {"title": "No link"},
        {"title": "   ", "link": "https://e.com/1"},
        {"title": "Relative", "link": "/deals/1"},
        {"title": "Mailto", "link": "mailto:deals@e.com"},
        {"title": "Only feed link", "link": [{"rel": "self", "type": "x"}]},
    ])
    def test_missing_or_invalid_fields(self, normalizer, raw):
        with pytest.raises(NormalizationError) as exc_info:
            normalizer.normalize(raw, "src")
        assert exc_info.value.recoverable is False
        assert exc_info.value.source == "src"

    def test_non_mapping_item(self, normalizer):
        with pytest.raises(NormalizationError):
            normalizer.normalize("just a string", "src")

    def test_long_title_truncated(self):
        normalizer = DealNormalizer(ProcessingConfig(max_title_length=10))
        deal = normalizer.normalize({"title": "A" * 40, "link": "https://e.com/1"}, "src")
        assert deal.title == "A" * 10
