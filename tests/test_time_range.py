"""
Unit tests for time-range resolution.
"""

from datetime import datetime, timedelta, timezone

import pytest

from clarity.core.time_range import RANGE_DURATIONS, TimeWindow, resolve_time_range
from clarity.errors import UnsupportedRangeError, ValidationError

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class TestResolveTimeRange:
    """Test token mapping."""

    @pytest.mark.parametrize("token,expected", [
        ("1h", timedelta(hours=1)),
        ("last_hour", timedelta(hours=1)),
        ("24h", timedelta(hours=24)),
        ("today", timedelta(hours=24)),
        ("7d", timedelta(days=7)),
        ("week", timedelta(days=7)),
        ("30d", timedelta(days=30)),
        ("month", timedelta(days=30)),
        ("90d", timedelta(days=90)),
        ("last_90d", timedelta(days=90)),
    ])
    def test_known_tokens(self, token, expected):
        window = resolve_time_range(token, NOW)
        assert window.end == NOW
        assert window.duration == expected

    def test_every_documented_token_resolves(self):
        for token in RANGE_DURATIONS:
            assert resolve_time_range(token, NOW).start < NOW

    def test_case_and_whitespace_ignored(self):
        assert resolve_time_range(" WEEK ", NOW).duration == timedelta(days=7)

    def test_unknown_token(self):
        with pytest.raises(UnsupportedRangeError, match="unsupported time range: 2y"):
            resolve_time_range("2y", NOW)

    def test_defaults_to_current_time(self):
        window = resolve_time_range("1h")
        assert window.end.tzinfo is not None


class TestTimeWindow:
    """Test window helpers."""

    def test_previous_is_adjacent_and_equal_length(self):
        window = resolve_time_range("7d", NOW)
        previous = window.previous()
        assert previous.end == window.start
        assert previous.duration == window.duration

    def test_inverted_window_rejected(self):
        with pytest.raises(ValidationError):
            TimeWindow(start=NOW, end=NOW - timedelta(hours=1))

    def test_days(self):
        assert resolve_time_range("30d", NOW).days == pytest.approx(30.0)
