"""
Dashboard aggregation.

Builds current-period statistics for a window and compares them with the
equal-length window immediately before it.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

from clarity.storage.models import DailyCost, ModelStats, StatusCount, WindowTotals
from clarity.storage.repository import TraceRepository
from .insights import Insight
from .time_range import TimeWindow

logger = logging.getLogger(__name__)

DEFAULT_TOP_MODELS = 10


@dataclass(frozen=True)
class TrendData:
    """Percent change from the previous window to the current one."""
    traces: float = 0.0
    cost: float = 0.0
    tokens: float = 0.0
    latency: float = 0.0


@dataclass(frozen=True)
class DashboardStats:
    """Read-only dashboard view for one window."""
    total_traces: int
    total_cost: float
    total_tokens: int
    avg_latency: float
    error_rate: float
    success_rate: float
    trends: TrendData
    top_models: List[ModelStats] = field(default_factory=list)
    cost_by_day: List[DailyCost] = field(default_factory=list)
    traces_by_status: List[StatusCount] = field(default_factory=list)
    insights: List[Insight] = field(default_factory=list)


def percent_change(old: float, new: float) -> float:
    """Percent change from old to new.

    A zero baseline yields 100 when the new value is positive and 0
    otherwise. Non-finite results collapse to 0.
    """
    if old == 0:
        return 100.0 if new > 0 else 0.0
    change = ((new - old) / old) * 100.0
    if not math.isfinite(change):
        return 0.0
    return change


def _rate(count: int, total: int) -> float:
    if total == 0:
        return 0.0
    return (count / total) * 100.0


def compute_trends(previous: WindowTotals, current: WindowTotals) -> TrendData:
    return TrendData(
        traces=percent_change(previous.trace_count, current.trace_count),
        cost=percent_change(previous.total_cost, current.total_cost),
        tokens=percent_change(previous.total_tokens, current.total_tokens),
        latency=percent_change(previous.avg_latency_ms, current.avg_latency_ms),
    )


class DashboardAggregator:
    """Assembles DashboardStats from the repository's named aggregations."""

    def __init__(self, repository: TraceRepository):
        self.repository = repository

    def build(
        self,
        organization_id: str,
        window: TimeWindow,
        project_id: Optional[str] = None,
        top_n: int = DEFAULT_TOP_MODELS,
    ) -> DashboardStats:
        """Compute dashboard statistics for a window.

        Args:
            organization_id: Organization to aggregate
            window: Current window; trends compare against window.previous()
            project_id: Optional project filter
            top_n: Number of models to include, by call count

        Returns:
            DashboardStats with empty insights

        Raises:
            StorageError: If any read fails
        """
        repo = self.repository
        current = repo.get_window_totals(organization_id, project_id, window.start, window.end)
        prior = window.previous()
        previous = repo.get_window_totals(organization_id, project_id, prior.start, prior.end)

        logger.debug(
            "Dashboard for %s: %d traces now, %d in previous window",
            organization_id, current.trace_count, previous.trace_count,
        )

        return DashboardStats(
            total_traces=current.trace_count,
            total_cost=current.total_cost,
            total_tokens=current.total_tokens,
            avg_latency=current.avg_latency_ms,
            error_rate=_rate(current.error_count, current.trace_count),
            success_rate=_rate(current.success_count, current.trace_count),
            trends=compute_trends(previous, current),
            top_models=repo.get_top_models(organization_id, project_id, window.start, window.end, limit=top_n),
            cost_by_day=repo.get_cost_by_day(organization_id, project_id, window.start, window.end),
            traces_by_status=repo.get_traces_by_status(organization_id, project_id, window.start, window.end),
        )
