"""
Tests for the dedup/merge engine.

Tests cover:
- Create, update and skip decisions
- Price tolerance and enrichment rules
- Lost create races
- Batch isolation and store escalation
- Validation rules and daily caps
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from core.clock import MockClock
from data_ingestion.config import ProcessingConfig
from data_ingestion.processors.daily_cap import DailyCapTracker
from data_ingestion.processors.deal_processor import DealProcessor
from data_ingestion.processors.dedup import compute_dedup_key
from data_ingestion.types import (
    DealAction,
    NormalizedDeal,
    StoreUnavailableError,
)
from storage.database import Database, DatabaseConfig
from storage.repositories import ConnectionError as StoreConnectionError
from storage.repositories import DealRepository


START = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

HEADPHONES = {
    "title": "50% Off Headphones",
    "link": "https://x.com/d1",
    "description": "Amazon [amazon.com] has headphones w/ code SAVE50",
    "guid": "abc123",
}


# =============================================================
# FIXTURES
# =============================================================

@pytest.fixture
def database():
    db = Database(DatabaseConfig(url="sqlite:///:memory:"))
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    session = database.new_session()
    yield session
    session.close()


@pytest.fixture
def repo(session):
    return DealRepository(session)


@pytest.fixture
def clock():
    return MockClock(START)


@pytest.fixture
def processor(repo, clock):
    return DealProcessor(repo, clock=clock)


def make_deal(**overrides):
    values = {
        "title": "Widget Deluxe",
        "url": "https://e.com/w",
        "source": "src",
        "external_id": "w-1",
        "price": Decimal("20.00"),
    }
    values.update(overrides)
    return NormalizedDeal(**values)


def stored(repo, deal):
    return repo.find_by_dedup_key(compute_dedup_key(deal.source, deal.external_id, deal.url))


# =============================================================
# TEST: Reference Scenario
# =============================================================

class TestScenario:
    """The same feed item ingested twice."""

    def test_first_created_then_skipped(self, processor, repo):
        first = processor.process_raw(HEADPHONES, "slickdeals_rss")
        second = processor.process_raw(HEADPHONES, "slickdeals_rss")

        assert first.action == DealAction.CREATED
        assert second.action == DealAction.SKIPPED
        assert second.deal_id == first.deal_id
        assert repo.count() == 1

        record = repo.get_by_id(first.deal_id)
        assert record.status == "pending"
        assert record.merchant == "Amazon"
        assert record.coupon_code == "SAVE50"
        assert record.source == "slickdeals_rss"
        assert record.verification_count == 0
        # merchant and coupon_code of six weighted fields
        assert record.quality_score == round(2 / 6, 4)


# =============================================================
# TEST: Update / Skip Decisions
# =============================================================

class TestMergeDecisions:
    """Test the update-or-skip rules."""

    def test_price_change_updates_in_place(self, processor, repo, clock):
        created = processor.process(make_deal(), "src")
        clock.advance(seconds=60)

        outcome = processor.process(make_deal(price=Decimal("15.00")), "src")

        assert outcome.action == DealAction.UPDATED
        assert outcome.deal_id == created.deal_id
        record = repo.get_by_id(created.deal_id)
        assert record.price == Decimal("15.00")
        assert record.verification_count == 1
        assert record.last_verified_at.replace(tzinfo=timezone.utc) == clock.now()
        assert repo.count() == 1

    def test_title_change_updates(self, processor):
        processor.process(make_deal(), "src")
        assert processor.process(make_deal(title="Widget Deluxe Pro"), "src").action == DealAction.UPDATED

    def test_title_whitespace_only_is_not_a_change(self, processor):
        processor.process(make_deal(), "src")
        assert processor.process(make_deal(title="  Widget Deluxe "), "src").action == DealAction.SKIPPED

    def test_price_within_tolerance_skipped(self, processor):
        processor.process(make_deal(), "src")
        assert processor.process(make_deal(price=Decimal("20.01")), "src").action == DealAction.SKIPPED

    def test_missing_incoming_price_skipped(self, processor, repo):
        created = processor.process(make_deal(), "src")
        outcome = processor.process(make_deal(price=None), "src")

        assert outcome.action == DealAction.SKIPPED
        assert repo.get_by_id(created.deal_id).price == Decimal("20.00")

    def test_new_coupon_updates(self, processor):
        processor.process(make_deal(), "src")
        assert processor.process(make_deal(coupon_code="NEW10"), "src").action == DealAction.UPDATED

    def test_enrichment_alone_skipped(self, processor, repo):
        created = processor.process(make_deal(), "src")
        outcome = processor.process(make_deal(image_url="https://img/w.jpg"), "src")

        assert outcome.action == DealAction.SKIPPED
        assert repo.get_by_id(created.deal_id).image_url is None

    def test_enrichment_applied_with_material_change(self, processor, repo):
        created = processor.process(make_deal(), "src")
        processor.process(
            make_deal(price=Decimal("12.00"), image_url="https://img/w.jpg", category="Tools"),
            "src",
        )

        record = repo.get_by_id(created.deal_id)
        assert record.image_url == "https://img/w.jpg"
        assert record.category == "Tools"

    def test_quality_score_not_rewritten_on_update(self, processor, repo):
        created = processor.process(make_deal(), "src")
        score = repo.get_by_id(created.deal_id).quality_score
        processor.process(make_deal(price=Decimal("5.00"), merchant="Amazon", category="Tools"), "src")

        assert repo.get_by_id(created.deal_id).quality_score == score

    def test_source_override(self, processor, repo):
        outcome = processor.process(make_deal(source="other"), "src")
        assert repo.get_by_id(outcome.deal_id).source == "src"


# =============================================================
# TEST: Concurrency
# =============================================================

class TestCreateRace:
    """A create that loses to a concurrent insert merges instead."""

    def test_lost_race_resolves_to_skip(self, processor, repo):
        deal = make_deal()
        processor.process(deal, "src")

        real_find = repo.find_by_dedup_key
        calls = []

        def stale_first_read(key):
            calls.append(key)
            return None if len(calls) == 1 else real_find(key)

        with patch.object(repo, "find_by_dedup_key", side_effect=stale_first_read):
            outcome = processor.process(deal, "src")

        assert outcome.action == DealAction.SKIPPED
        assert len(calls) == 2
        assert repo.count() == 1

    def test_lost_race_with_change_resolves_to_update(self, processor, repo):
        processor.process(make_deal(), "src")

        real_find = repo.find_by_dedup_key
        calls = []

        def stale_first_read(key):
            calls.append(key)
            return None if len(calls) == 1 else real_find(key)

        with patch.object(repo, "find_by_dedup_key", side_effect=stale_first_read):
            outcome = processor.process(make_deal(price=Decimal("9.00")), "src")

        assert outcome.action == DealAction.UPDATED
        assert repo.count_by_dedup_key(compute_dedup_key("src", "w-1", "https://e.com/w")) == 1


# =============================================================
# TEST: Batches
# =============================================================

class TestProcessBatch:
    """Test process_batch aggregation and isolation."""

    def _items(self):
        return [
            {"title": "Deal title A", "link": "https://e.com/a"},
            {"title": "B"},
            {"title": "Deal title C", "link": "https://e.com/c"},
            {"link": "https://e.com/d"},
            {"title": "Deal title E", "link": "https://e.com/e"},
        ]

    def test_malformed_items_do_not_abort_batch(self, processor, repo):
        result = processor.process_batch(self._items(), "src")

        assert result.created == 3
        assert result.errors == 2
        assert len(result.error_messages) == 2
        assert all("normalization error" in m for m in result.error_messages)
        assert repo.count() == 3

    def test_rerun_is_idempotent(self, processor, repo):
        processor.process_batch(self._items(), "src")
        second = processor.process_batch(self._items(), "src")

        assert second.created == 0
        assert second.skipped == 3
        assert repo.count() == 3

    def test_duplicates_within_one_batch(self, processor, repo):
        items = [HEADPHONES, dict(HEADPHONES)]
        result = processor.process_batch(items, "slickdeals_rss")

        assert (result.created, result.skipped) == (1, 1)
        assert repo.count() == 1


class TestStoreFailures:
    """Test per-item and whole-job store failures."""

    def _unreachable_repo(self):
        repo = MagicMock(spec=DealRepository)
        repo.find_by_dedup_key.side_effect = StoreConnectionError(
            repository_name="DealRepository",
            operation="query_scalar",
            original_error="connection refused",
        )
        return repo

    def test_single_store_error_is_item_error(self, clock):
        processor = DealProcessor(self._unreachable_repo(), clock=clock)
        outcome = processor.process(make_deal(), "src")

        assert outcome.action == DealAction.ERROR
        assert outcome.store_unavailable is True

    def test_consecutive_store_errors_fail_the_job(self, clock):
        processor = DealProcessor(self._unreachable_repo(), clock=clock)
        items = [{"title": f"Store item {i}", "link": f"https://e.com/{i}"} for i in range(5)]

        with pytest.raises(StoreUnavailableError) as exc_info:
            processor.process_batch(items, "src")

        assert exc_info.value.recoverable is True
        assert exc_info.value.details["errors"] == 3

    def test_unexpected_exception_is_item_error(self, clock):
        repo = MagicMock(spec=DealRepository)
        repo.find_by_dedup_key.side_effect = RuntimeError("boom")
        processor = DealProcessor(repo, clock=clock)

        outcome = processor.process(make_deal(), "src")

        assert outcome.action == DealAction.ERROR
        assert "boom" in outcome.reason
        repo.rollback.assert_called_once()


# =============================================================
# TEST: Validation
# =============================================================

class TestValidation:
    """Deals failing business rules are skipped before any lookup."""

    def test_short_title_skipped(self, processor, repo):
        outcome = processor.process(make_deal(title="Widget"), "src")

        assert outcome.action == DealAction.SKIPPED
        assert outcome.reason.startswith("validation_failed")
        assert "title shorter than 10" in outcome.reason
        assert repo.count() == 0

    def test_expired_deal_skipped(self, processor, repo):
        outcome = processor.process(make_deal(expires_at=START - timedelta(days=1)), "src")

        assert outcome.action == DealAction.SKIPPED
        assert "already expired" in outcome.reason
        assert repo.count() == 0

    def test_future_expiry_accepted(self, processor):
        outcome = processor.process(make_deal(expires_at=START + timedelta(days=1)), "src")
        assert outcome.action == DealAction.CREATED

    def test_tiny_discount_skipped(self, processor):
        deal = make_deal(price=Decimal("99.50"), original_price=Decimal("100.00"))
        outcome = processor.process(deal, "src")

        assert outcome.action == DealAction.SKIPPED
        assert "discount too small" in outcome.reason

    def test_price_not_below_original_skipped(self, processor):
        deal = make_deal(price=Decimal("20.00"), original_price=Decimal("20.00"))
        assert "price not below original price" in processor.process(deal, "src").reason

    def test_huge_discount_accepted(self, processor):
        deal = make_deal(price=Decimal("0.50"), original_price=Decimal("100.00"))
        assert processor.process(deal, "src").action == DealAction.CREATED

    def test_validation_skips_count_as_skipped_in_batch(self, processor):
        items = [
            {"title": "Short", "link": "https://e.com/s"},
            {"title": "Long enough title", "link": "https://e.com/l"},
        ]
        result = processor.process_batch(items, "src")

        assert (result.created, result.skipped, result.errors) == (1, 1, 0)


# =============================================================
# TEST: Daily Caps
# =============================================================

class TestDailyCap:
    """New deals per source per day are capped."""

    def _processor(self, repo, clock, cap):
        config = ProcessingConfig(daily_cap_default=cap, daily_caps={})
        return DealProcessor(repo, config=config, clock=clock, daily_caps=DailyCapTracker(config, clock))

    def test_creates_beyond_cap_skipped(self, repo, clock):
        processor = self._processor(repo, clock, cap=2)
        outcomes = [
            processor.process(make_deal(external_id=f"w-{i}", url=f"https://e.com/w{i}"), "src")
            for i in range(3)
        ]

        assert [o.action for o in outcomes] == [DealAction.CREATED, DealAction.CREATED, DealAction.SKIPPED]
        assert outcomes[2].reason == "daily_cap_reached"
        assert repo.count() == 2

    def test_updates_allowed_at_cap(self, repo, clock):
        processor = self._processor(repo, clock, cap=1)
        processor.process(make_deal(), "src")

        outcome = processor.process(make_deal(price=Decimal("5.00")), "src")
        assert outcome.action == DealAction.UPDATED

    def test_cap_resets_next_day(self, repo, clock):
        processor = self._processor(repo, clock, cap=1)
        processor.process(make_deal(), "src")
        clock.advance(days=1)

        outcome = processor.process(make_deal(external_id="w-2", url="https://e.com/w2"), "src")
        assert outcome.action == DealAction.CREATED

    def test_caps_are_per_source(self, repo, clock):
        processor = self._processor(repo, clock, cap=1)
        processor.process(make_deal(), "src")
        assert processor.process(make_deal(), "other").action == DealAction.CREATED

    def test_zero_disables_cap(self, clock):
        tracker = DailyCapTracker(ProcessingConfig(daily_cap_default=0, daily_caps={}), clock)
        for _ in range(3):
            tracker.record_created("src")
        assert tracker.allows("src") is True
        assert tracker.counts() == {"src": 3}

    def test_builtin_source_overrides(self):
        config = ProcessingConfig()
        assert config.daily_cap_for("slickdeals_coupons") == 100
        assert config.daily_cap_for("unknown") == 500
