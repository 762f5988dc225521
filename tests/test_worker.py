"""
End-to-end tests for the ingestion worker.

Only the HTTP transport is faked: feed parsing, normalization,
dedup, the job queue and the scheduler all run for real against
in-memory SQLite.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.clock import MockClock
from core.exceptions import ConfigurationError
from data_ingestion.config import HttpConfig
from data_ingestion.sources import SourceRegistry
from data_ingestion.types import FetchError, SourceConfig, SourceDescriptor, SourceType
from orchestrator.config import SchedulerConfig
from orchestrator.core import IngestionWorker
from storage.database import Database, DatabaseConfig
from storage.repositories import DealRepository


START = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

FEEDS = {
    "https://e.com/deals.xml": """<rss version="2.0"><channel>
        <item>
          <title>50% Off Headphones</title>
          <link>https://x.com/d1</link>
          <description>Amazon [amazon.com] has headphones w/ code SAVE50</description>
          <guid isPermaLink="false">abc123</guid>
        </item>
        <item>
          <title>Monitor $199 at Best Buy</title>
          <link>https://x.com/d2</link>
        </item>
        <item><description>no title or link</description></item>
    </channel></rss>""",
    "https://e.com/atom.xml": """<feed xmlns="http://www.w3.org/2005/Atom">
        <entry>
          <title>Desk Lamp $25</title>
          <link rel="alternate" href="https://y.com/lamp"/>
          <id>urn:lamp:1</id>
        </entry>
    </feed>""",
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
def http():
    async def get_text(url, headers=None, timeout=None, source="http"):
        if url not in FEEDS:
            raise FetchError(f"HTTP 404 from {url}", source=source, recoverable=False)
        return FEEDS[url]

    client = MagicMock()
    client.config = HttpConfig()
    client.get_text = AsyncMock(side_effect=get_text)
    client.close = AsyncMock()
    return client


@pytest.fixture
def sources():
    return SourceRegistry([
        SourceDescriptor(
            key="deals_rss", type=SourceType.RSS, priority=1,
            config=SourceConfig(feed_url="https://e.com/deals.xml"),
        ),
        SourceDescriptor(
            key="lamps_atom", type=SourceType.RSS, priority=2,
            config=SourceConfig(feed_url="https://e.com/atom.xml"),
        ),
        SourceDescriptor(
            key="gone_rss", type=SourceType.RSS, enabled=False,
            config=SourceConfig(feed_url="https://e.com/gone.xml"),
        ),
        SourceDescriptor(
            key="partner_api", type=SourceType.API, enabled=True, priority=3,
            config=SourceConfig(fetcher_ref="unregistered"),
        ),
    ])


@pytest.fixture
def worker(sources, database, http):
    return IngestionWorker(
        sources,
        database,
        scheduler_config=SchedulerConfig(backoff_base_seconds=0.0, rate_limit=100),
        http=http,
        clock=MockClock(START),
    )


def count_deals(database):
    with database.session() as session:
        return DealRepository(session).count()


# =============================================================
# TEST: Run Once
# =============================================================

class TestRunOnce:
    """One full pass over the enabled sources."""

    @pytest.mark.asyncio
    async def test_full_pass(self, worker, database):
        jobs = worker.enqueue_sources()
        assert [j.source_key for j in jobs] == ["deals_rss", "lamps_atom", "partner_api"]

        metrics = await worker.run_once()

        assert metrics.jobs_completed == 2
        assert metrics.total_created == 3
        assert metrics.total_errors == 1
        assert count_deals(database) == 3
        # unregistered fetcher_ref fails on the first attempt
        assert metrics.source_metrics["partner_api"]["failed"] == 1
        assert worker.health()["queue"] == {"queued": 0, "running": 0, "completed": 2, "failed": 1}

    @pytest.mark.asyncio
    async def test_second_pass_creates_nothing(self, worker, database):
        worker.enqueue_sources(["deals_rss"])
        await worker.run_once()
        worker.enqueue_sources(["deals_rss"])
        metrics = await worker.run_once()

        assert metrics.total_created == 2
        assert metrics.total_skipped == 2
        assert count_deals(database) == 2

    @pytest.mark.asyncio
    async def test_disabled_source_can_be_named(self, worker, http):
        worker.enqueue_sources(["gone_rss"])
        metrics = await worker.run_once()

        assert metrics.jobs_failed == 1
        http.get_text.assert_awaited_once()

    def test_unknown_source_rejected(self, worker):
        with pytest.raises(ConfigurationError):
            worker.enqueue_sources(["nope"])

    def test_validate_sources(self, worker):
        assert worker.validate_sources() == ["partner_api"]

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, worker, http, database):
        calls = {"n": 0}
        real = http.get_text.side_effect

        async def flaky(url, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise FetchError("HTTP 503", source=kwargs.get("source", "http"))
            return await real(url, **kwargs)

        http.get_text.side_effect = flaky
        worker.enqueue_sources(["lamps_atom"])
        metrics = await worker.run_once()

        assert calls["n"] == 2
        assert metrics.jobs_completed == 1
        assert count_deals(database) == 1


# =============================================================
# TEST: Lifecycle
# =============================================================

class TestLifecycle:
    """Long-running mode and shutdown."""

    @pytest.mark.asyncio
    async def test_run_forever_until_shutdown(self, worker, database):
        worker.scheduler._config.poll_interval_seconds = 0.01
        done = asyncio.Event()
        worker.scheduler.on_completed(lambda job, result: done.set())
        worker.enqueue_sources(["lamps_atom"])

        runner = asyncio.create_task(worker.run_forever())
        await asyncio.wait_for(done.wait(), timeout=2.0)
        worker.request_shutdown()
        await asyncio.wait_for(runner, timeout=2.0)

        assert not worker.scheduler.is_running
        assert count_deals(database) == 1

    @pytest.mark.asyncio
    async def test_close(self, worker, http):
        await worker.close()
        http.close.assert_awaited_once()
