"""
Cost and model analytics.

Post-processes the per-model aggregates returned by storage: cost shares,
model comparison with an efficiency heuristic, cost projection and a coarse
performance grade.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Sequence

from clarity.storage.models import CostBreakdownItem, MetricSummary, ModelUsage
from .time_range import TimeWindow

PROJECTION_DAYS = 30


@dataclass(frozen=True)
class ModelComparison:
    """Per-model averages and an efficiency score (lower is better).

    The score adds latency in seconds to cost per request in cents. It is a
    ranking heuristic, not a normalized unit.
    """
    model: str
    total_calls: int
    total_cost: float
    avg_cost_per_request: float
    avg_latency_ms: float
    avg_tokens_per_request: float
    efficiency_score: float


@dataclass(frozen=True)
class CostAnalysis:
    """Cost totals and a 30-day projection for a window."""
    total_cost: float
    daily_average: float
    monthly_projection: float
    cost_breakdown: List[CostBreakdownItem]
    most_expensive_model: Optional[str]
    highest_cost: float


class PerformanceGrade(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass(frozen=True)
class PerformanceReport:
    """Metric summary with a grade and a recommendation."""
    summary: MetricSummary
    grade: PerformanceGrade
    recommendation: str


def annotate_cost_shares(items: Sequence[CostBreakdownItem]) -> List[CostBreakdownItem]:
    """Set each item's percentage of total cost.

    Percentages are zero when the total cost is zero.
    """
    total_cost = sum(item.total_cost for item in items)
    annotated = []
    for item in items:
        percentage = (item.total_cost / total_cost) * 100.0 if total_cost > 0 else 0.0
        annotated.append(replace(item, percentage=percentage))
    return annotated


def efficiency_score(avg_latency_ms: float, avg_cost_per_request: float) -> float:
    """Latency in seconds plus cost per request in cents. Lower is better."""
    return (avg_latency_ms / 1000.0) + (avg_cost_per_request * 100.0)


def compare_models(usage: Sequence[ModelUsage]) -> List[ModelComparison]:
    """Compare models by per-request cost, tokens and efficiency.

    Returns:
        Comparisons ranked by efficiency score, best first, ties by model name
    """
    comparisons = []
    for item in usage:
        avg_cost = 0.0
        avg_tokens = 0.0
        if item.call_count > 0:
            avg_cost = item.total_cost / item.call_count
            avg_tokens = item.total_tokens / item.call_count
        comparisons.append(ModelComparison(
            model=item.model,
            total_calls=item.call_count,
            total_cost=item.total_cost,
            avg_cost_per_request=avg_cost,
            avg_latency_ms=item.avg_latency_ms,
            avg_tokens_per_request=avg_tokens,
            efficiency_score=efficiency_score(item.avg_latency_ms, avg_cost),
        ))
    comparisons.sort(key=lambda c: (c.efficiency_score, c.model))
    return comparisons


def analyze_costs(breakdown: Sequence[CostBreakdownItem], window: TimeWindow) -> CostAnalysis:
    """Summarize cost for a window and project it over 30 days.

    Windows shorter than one day are treated as one day for the average.
    """
    annotated = annotate_cost_shares(breakdown)
    total_cost = sum(item.total_cost for item in annotated)

    days = window.days
    if days < 1:
        days = 1.0
    daily_average = total_cost / days

    most_expensive = min(annotated, key=lambda item: (-item.total_cost, item.model)) if annotated else None

    return CostAnalysis(
        total_cost=total_cost,
        daily_average=daily_average,
        monthly_projection=daily_average * PROJECTION_DAYS,
        cost_breakdown=annotated,
        most_expensive_model=most_expensive.model if most_expensive else None,
        highest_cost=most_expensive.total_cost if most_expensive else 0.0,
    )


def grade_performance(summary: MetricSummary) -> PerformanceReport:
    """Grade latency and reliability for a window.

    Thresholds (p95 latency, error rate):
    - excellent: < 500ms and < 1%
    - good: < 1000ms and < 5%
    - fair: < 2000ms and < 10%
    - poor: anything else
    """
    p95 = summary.p95_latency_ms
    error_rate = summary.error_rate

    if p95 < 500 and error_rate < 1.0:
        grade, recommendation = PerformanceGrade.EXCELLENT, "Performance is optimal. Continue monitoring."
    elif p95 < 1000 and error_rate < 5.0:
        grade, recommendation = PerformanceGrade.GOOD, "Performance is acceptable but could be improved."
    elif p95 < 2000 and error_rate < 10.0:
        grade, recommendation = PerformanceGrade.FAIR, "Performance issues detected. Consider optimization."
    else:
        grade, recommendation = PerformanceGrade.POOR, "Critical performance issues. Immediate attention required."

    return PerformanceReport(summary=summary, grade=grade, recommendation=recommendation)
