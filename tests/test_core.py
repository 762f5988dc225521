"""
Tests for the shared clock and exception base.
"""

from datetime import datetime, timedelta, timezone

from core.clock import ClockFactory, MockClock, SystemClock, ensure_utc
from core.exceptions import InvalidConfigError, PipelineException, Severity


class TestClock:
    """Test clock implementations and the factory."""

    def test_mock_clock_advance(self):
        clock = MockClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))
        clock.advance(seconds=30, minutes=1)
        assert clock.now() == datetime(2026, 10, 19, 12, 1, 30, tzinfo=timezone.utc)

    def test_use_mock_restores_previous_clock(self):
        ClockFactory.reset()
        original = ClockFactory.get_clock()

        with ClockFactory.use_mock(datetime(2026, 1, 1, tzinfo=timezone.utc)) as mock:
            assert ClockFactory.get_clock() is mock
            assert ClockFactory.get_clock().now().year == 2026

        assert ClockFactory.get_clock() is original
        assert isinstance(original, SystemClock)

    def test_ensure_utc(self):
        naive = datetime(2026, 10, 19, 12, 0)
        assert ensure_utc(naive).tzinfo == timezone.utc
        offset = datetime(2026, 10, 19, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert ensure_utc(offset) == datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        assert ensure_utc(None) is None


class TestPipelineException:
    """Test the exception base."""

    def test_to_dict(self):
        cause = ValueError("bad")
        error = PipelineException("failed", context={"source": "feed"}, cause=cause)
        data = error.to_dict()

        assert data["type"] == "PipelineException"
        assert data["severity"] == Severity.MEDIUM.value
        assert data["recoverable"] is True
        assert data["context"]["cause_type"] == "ValueError"
        assert data["cause"] == "bad"

    def test_configuration_errors_not_recoverable(self):
        error = InvalidConfigError("parallelism", 0, "must be at least 1")
        assert error.recoverable is False
        assert error.severity == Severity.HIGH
        assert error.context["config_key"] == "parallelism"
