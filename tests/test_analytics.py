"""
Unit tests for cost and model analytics.
"""

from datetime import datetime, timedelta, timezone

import pytest

from clarity.core.analytics import (
    PerformanceGrade,
    analyze_costs,
    annotate_cost_shares,
    compare_models,
    efficiency_score,
    grade_performance,
)
from clarity.core.time_range import TimeWindow
from clarity.storage.models import CostBreakdownItem, MetricSummary, ModelUsage

NOW = datetime(2024, 6, 15, tzinfo=timezone.utc)


def item(model, cost, calls=1):
    return CostBreakdownItem(model=model, total_cost=cost, total_calls=calls, avg_cost=cost / calls)


class TestCostShares:
    """Test percentage annotation."""

    def test_shares_sum_to_hundred(self):
        annotated = annotate_cost_shares([item("a", 3.0), item("b", 1.0)])
        assert [i.percentage for i in annotated] == pytest.approx([75.0, 25.0])

    def test_zero_total_gives_zero_shares(self):
        annotated = annotate_cost_shares([item("a", 0.0), item("b", 0.0)])
        assert [i.percentage for i in annotated] == [0.0, 0.0]


class TestCompareModels:
    """Test ranking by efficiency score."""

    def test_efficiency_score(self):
        # 1500ms -> 1.5, $0.02 -> 2.0
        assert efficiency_score(1500.0, 0.02) == pytest.approx(3.5)

    def test_sorted_best_first_with_name_tie_break(self):
        usage = [
            ModelUsage(model="slow", call_count=10, total_tokens=1000, total_cost=0.1, avg_latency_ms=3000.0),
            ModelUsage(model="b-fast", call_count=10, total_tokens=500, total_cost=0.01, avg_latency_ms=100.0),
            ModelUsage(model="a-fast", call_count=10, total_tokens=500, total_cost=0.01, avg_latency_ms=100.0),
        ]
        ranked = compare_models(usage)
        assert [c.model for c in ranked] == ["a-fast", "b-fast", "slow"]
        assert ranked[0].avg_cost_per_request == pytest.approx(0.001)
        assert ranked[0].avg_tokens_per_request == pytest.approx(50.0)

    def test_zero_calls_do_not_divide(self):
        ranked = compare_models([ModelUsage(model="x", call_count=0, total_tokens=0, total_cost=0.0, avg_latency_ms=0.0)])
        assert ranked[0].avg_cost_per_request == 0.0


class TestAnalyzeCosts:
    """Test daily average and projection."""

    def test_projection_over_seven_days(self):
        window = TimeWindow(start=NOW - timedelta(days=7), end=NOW)
        analysis = analyze_costs([item("gpt-4", 5.0), item("haiku", 2.0)], window)
        assert analysis.total_cost == pytest.approx(7.0)
        assert analysis.daily_average == pytest.approx(1.0)
        assert analysis.monthly_projection == pytest.approx(30.0)
        assert analysis.most_expensive_model == "gpt-4"
        assert analysis.highest_cost == pytest.approx(5.0)

    def test_short_window_counts_as_one_day(self):
        window = TimeWindow(start=NOW - timedelta(hours=1), end=NOW)
        analysis = analyze_costs([item("gpt-4", 2.0)], window)
        assert analysis.daily_average == pytest.approx(2.0)

    def test_empty_breakdown(self):
        window = TimeWindow(start=NOW - timedelta(days=1), end=NOW)
        analysis = analyze_costs([], window)
        assert analysis.total_cost == 0.0
        assert analysis.most_expensive_model is None


class TestGradePerformance:
    """Test grade thresholds."""

    @pytest.mark.parametrize("p95,error_rate,grade", [
        (400.0, 0.5, PerformanceGrade.EXCELLENT),
        (400.0, 2.0, PerformanceGrade.GOOD),
        (900.0, 0.0, PerformanceGrade.GOOD),
        (1500.0, 8.0, PerformanceGrade.FAIR),
        (2500.0, 0.0, PerformanceGrade.POOR),
        (100.0, 15.0, PerformanceGrade.POOR),
    ])
    def test_grades(self, p95, error_rate, grade):
        report = grade_performance(MetricSummary(p95_latency_ms=p95, error_rate=error_rate))
        assert report.grade == grade
        assert report.recommendation

    def test_empty_window_is_excellent(self):
        report = grade_performance(MetricSummary())
        assert report.recommendation == "Performance is optimal. Continue monitoring."
