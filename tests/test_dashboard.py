"""
Unit tests for dashboard aggregation.
"""

import math
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from clarity.core.dashboard import DashboardAggregator, percent_change
from clarity.core.time_range import TimeWindow
from clarity.storage.models import ModelStats, WindowTotals

NOW = datetime(2024, 6, 15, 12, tzinfo=timezone.utc)


class TestPercentChange:
    """Test trend guards."""

    def test_regular_change(self):
        assert percent_change(100.0, 150.0) == pytest.approx(50.0)
        assert percent_change(200.0, 100.0) == pytest.approx(-50.0)

    def test_zero_baseline_with_growth(self):
        assert percent_change(0, 5) == 100.0

    def test_zero_baseline_without_growth(self):
        assert percent_change(0, 0) == 0.0

    def test_non_finite_collapses_to_zero(self):
        assert percent_change(1.0, math.inf) == 0.0
        assert percent_change(math.nan, 1.0) == 0.0


class TestDashboardAggregator:
    """Test assembling stats from repository aggregations."""

    def _repo(self, current, previous):
        repo = MagicMock()
        repo.get_window_totals.side_effect = [current, previous]
        repo.get_top_models.return_value = [ModelStats(model="gpt-4", count=3, cost=0.3)]
        repo.get_cost_by_day.return_value = []
        repo.get_traces_by_status.return_value = []
        return repo

    def test_rates_and_trends(self):
        current = WindowTotals(trace_count=4, total_cost=2.0, total_tokens=400, avg_latency_ms=300.0,
                               error_count=1, success_count=3)
        previous = WindowTotals(trace_count=2, total_cost=2.0, total_tokens=0, avg_latency_ms=600.0,
                                error_count=0, success_count=2)
        repo = self._repo(current, previous)
        window = TimeWindow(start=NOW - timedelta(hours=24), end=NOW)

        stats = DashboardAggregator(repo).build("org-1", window, top_n=5)

        assert stats.total_traces == 4
        assert stats.error_rate == pytest.approx(25.0)
        assert stats.success_rate == pytest.approx(75.0)
        assert stats.trends.traces == pytest.approx(100.0)
        assert stats.trends.cost == pytest.approx(0.0)
        assert stats.trends.tokens == 100.0
        assert stats.trends.latency == pytest.approx(-50.0)
        assert stats.top_models[0].model == "gpt-4"

        prior_call = repo.get_window_totals.call_args_list[1]
        assert prior_call.args == ("org-1", None, NOW - timedelta(hours=48), NOW - timedelta(hours=24))
        repo.get_top_models.assert_called_once_with("org-1", None, window.start, window.end, limit=5)

    def test_empty_window_is_all_zero(self):
        empty = WindowTotals(trace_count=0, total_cost=0.0, total_tokens=0, avg_latency_ms=0.0,
                             error_count=0, success_count=0)
        repo = self._repo(empty, empty)
        repo.get_top_models.return_value = []
        stats = DashboardAggregator(repo).build("org-1", TimeWindow(start=NOW - timedelta(hours=1), end=NOW))

        assert stats.total_traces == 0
        assert stats.error_rate == 0.0
        assert stats.success_rate == 0.0
        assert stats.trends.traces == 0.0
        assert stats.insights == []
