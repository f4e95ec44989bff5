"""
Analytics service.

Read-only entry points over a time window: dashboard, summary, cost
analysis, performance grading, model comparison and raw metrics.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, List, Optional

from clarity.core.analytics import (
    CostAnalysis,
    ModelComparison,
    PerformanceReport,
    analyze_costs,
    annotate_cost_shares,
    compare_models,
    grade_performance,
)
from clarity.core.cancellation import CancelToken
from clarity.core.dashboard import DEFAULT_TOP_MODELS, DashboardAggregator, DashboardStats
from clarity.core.insights import Insight, generate_insights
from clarity.core.time_range import TimeWindow, resolve_time_range
from clarity.errors import ValidationError
from clarity.storage.models import (
    DEFAULT_METRIC_LIMIT,
    CostBreakdownItem,
    Metric,
    MetricQuery,
    MetricSummary,
    ModelUsage,
    effective_limit,
)
from clarity.storage.repository import TraceRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DashboardSummary:
    """Summary statistics with per-model detail and insights."""
    window: TimeWindow
    summary: MetricSummary
    cost_breakdown: List[CostBreakdownItem] = field(default_factory=list)
    model_usage: List[ModelUsage] = field(default_factory=list)
    insights: List[Insight] = field(default_factory=list)


def _require_org(organization_id: str) -> None:
    if not organization_id:
        raise ValidationError("organization_id is required", field="organization_id")


def _check(cancel_token: Optional[CancelToken], action: str) -> None:
    if cancel_token is not None:
        cancel_token.raise_if_cancelled(action)


class AnalyticsService:
    """Time-windowed analytics over stored traces.

    Every method takes a range token (see resolve_time_range) and raises
    UnsupportedRangeError for an unknown one.
    """

    def __init__(self, repository: TraceRepository, now: Optional[Callable[[], datetime]] = None):
        self.repository = repository
        self.aggregator = DashboardAggregator(repository)
        self._now = now

    def _window(self, range_token: str) -> TimeWindow:
        return resolve_time_range(range_token, self._now() if self._now else None)

    def _insight_inputs(
        self,
        organization_id: str,
        project_id: Optional[str],
        window: TimeWindow,
        cancel_token: Optional[CancelToken] = None,
    ):
        _check(cancel_token, "analytics")
        summary = self.repository.get_metric_summary(organization_id, project_id, window.start, window.end)
        _check(cancel_token, "analytics")
        breakdown = annotate_cost_shares(
            self.repository.get_cost_breakdown(organization_id, project_id, window.start, window.end)
        )
        _check(cancel_token, "analytics")
        usage = self.repository.get_model_usage(organization_id, project_id, window.start, window.end)
        return summary, breakdown, usage

    def get_dashboard(
        self,
        organization_id: str,
        range_token: str = "24h",
        project_id: Optional[str] = None,
        top_n: int = DEFAULT_TOP_MODELS,
        cancel_token: Optional[CancelToken] = None,
    ) -> DashboardStats:
        """Dashboard statistics, trends and insights for a window.

        Args:
            organization_id: Organization to aggregate
            range_token: Range token such as '24h' or 'week'
            project_id: Optional project filter
            top_n: Number of top models to include
            cancel_token: Checked between repository reads

        Returns:
            DashboardStats; all zeros and no insights for an empty window

        Raises:
            ValidationError: If organization_id is empty
            UnsupportedRangeError: If the range token is unknown
            StorageError: If a read fails
            OperationCancelled: If cancelled between reads
        """
        _require_org(organization_id)
        window = self._window(range_token)
        _check(cancel_token, "dashboard")
        stats = self.aggregator.build(organization_id, window, project_id, top_n=top_n)
        _check(cancel_token, "dashboard")
        if stats.total_traces == 0:
            return stats
        insights = generate_insights(*self._insight_inputs(organization_id, project_id, window, cancel_token))
        return replace(stats, insights=insights)

    def get_dashboard_summary(
        self,
        organization_id: str,
        range_token: str = "24h",
        project_id: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> DashboardSummary:
        """Metric summary, cost breakdown, model usage and insights for a window."""
        _require_org(organization_id)
        window = self._window(range_token)
        summary, breakdown, usage = self._insight_inputs(organization_id, project_id, window, cancel_token)
        insights = generate_insights(summary, breakdown, usage) if summary.total_requests else []
        return DashboardSummary(
            window=window,
            summary=summary,
            cost_breakdown=breakdown,
            model_usage=usage,
            insights=insights,
        )

    def get_cost_analysis(
        self,
        organization_id: str,
        range_token: str = "30d",
        project_id: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> CostAnalysis:
        """Cost breakdown, daily average and 30-day projection."""
        _require_org(organization_id)
        window = self._window(range_token)
        _check(cancel_token, "cost analysis")
        breakdown = self.repository.get_cost_breakdown(organization_id, project_id, window.start, window.end)
        return analyze_costs(breakdown, window)

    def get_performance_metrics(
        self,
        organization_id: str,
        range_token: str = "24h",
        project_id: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> PerformanceReport:
        """Latency percentiles and error rates with a performance grade."""
        _require_org(organization_id)
        window = self._window(range_token)
        _check(cancel_token, "performance metrics")
        summary = self.repository.get_metric_summary(organization_id, project_id, window.start, window.end)
        report = grade_performance(summary)
        logger.debug("Performance for %s over %s: %s", organization_id, window.label, report.grade.value)
        return report

    def get_model_comparison(
        self,
        organization_id: str,
        range_token: str = "7d",
        project_id: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> List[ModelComparison]:
        """Models ranked by efficiency score, best first."""
        _require_org(organization_id)
        window = self._window(range_token)
        _check(cancel_token, "model comparison")
        usage = self.repository.get_model_usage(organization_id, project_id, window.start, window.end)
        return compare_models(usage)

    def get_metrics(self, query: MetricQuery, cancel_token: Optional[CancelToken] = None) -> List[Metric]:
        """Emitted metrics matching a query, newest first.

        A limit of 0 means the default and limits above MAX_QUERY_LIMIT are
        capped.
        """
        _require_org(query.organization_id)
        if query.limit < 0:
            raise ValidationError("limit cannot be negative", field="limit")
        _check(cancel_token, "metrics")
        return self.repository.get_metrics(replace(query, limit=effective_limit(query.limit, DEFAULT_METRIC_LIMIT)))
