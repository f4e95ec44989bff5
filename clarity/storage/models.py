"""
Data models for storage layer.

Defines persisted entities, query descriptors and the aggregate rows the
storage collaborator returns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

DEFAULT_QUERY_LIMIT = 50
MAX_QUERY_LIMIT = 1000
DEFAULT_METRIC_LIMIT = 1000


def effective_limit(limit: int, default: int) -> int:
    """Zero means the default; anything above the hard cap is capped."""
    if limit == 0:
        return default
    return min(limit, MAX_QUERY_LIMIT)


@dataclass(frozen=True)
class Span:
    """One model call inside a trace. Owned by its trace."""
    span_id: str
    trace_id: str
    name: str
    model: str
    provider: str
    input: str
    output: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost: float
    status: str
    start_time: datetime
    end_time: datetime
    duration_ms: int
    parent_span_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Trace:
    """Immutable record of one ingested execution.

    Totals are sums over spans; a trace is written once and never updated.
    """
    trace_id: str
    organization_id: str
    project_id: str
    trace_type: str
    model: str
    provider: str
    status: str
    total_tokens: int
    total_cost: float
    duration_ms: int
    timestamp: datetime
    user_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    spans: List[Span] = field(default_factory=list)


@dataclass(frozen=True)
class Metric:
    """Derived, denormalized fact emitted after a trace is saved."""
    timestamp: datetime
    organization_id: str
    project_id: str
    metric_name: str
    metric_value: float
    tags: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TraceQuery:
    """Filter and pagination for listing traces. Bounds are [start, end)."""
    organization_id: str
    project_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    model: Optional[str] = None
    provider: Optional[str] = None
    status: Optional[str] = None
    user_id: Optional[str] = None
    limit: int = DEFAULT_QUERY_LIMIT
    offset: int = 0


@dataclass
class MetricQuery:
    """Filter for reading emitted metrics. Bounds are [start, end)."""
    organization_id: str
    project_id: Optional[str] = None
    metric_name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: int = DEFAULT_METRIC_LIMIT


@dataclass(frozen=True)
class MetricSummary:
    """Aggregate statistics over traces in a window."""
    total_requests: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    avg_cost_per_request: float = 0.0
    avg_latency_ms: float = 0.0
    p50_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    error_rate: float = 0.0
    success_rate: float = 0.0


@dataclass(frozen=True)
class CostBreakdownItem:
    """Cost and call count for one model, with its share of total cost."""
    model: str
    total_cost: float
    total_calls: int
    avg_cost: float
    percentage: float = 0.0


@dataclass(frozen=True)
class ModelUsage:
    """Usage statistics for one model."""
    model: str
    call_count: int
    total_tokens: int
    total_cost: float
    avg_latency_ms: float


@dataclass(frozen=True)
class WindowTotals:
    """Raw counts for a window, used by the dashboard."""
    trace_count: int = 0
    total_cost: float = 0.0
    total_tokens: int = 0
    avg_latency_ms: float = 0.0
    error_count: int = 0
    success_count: int = 0


@dataclass(frozen=True)
class ModelStats:
    """Call count and cost for one model."""
    model: str
    count: int
    cost: float


@dataclass(frozen=True)
class DailyCost:
    """Cost for one UTC calendar day (YYYY-MM-DD)."""
    date: str
    cost: float


@dataclass(frozen=True)
class StatusCount:
    """Trace count for one status."""
    status: str
    count: int
