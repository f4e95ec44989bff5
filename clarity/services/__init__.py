"""Service layer: ingestion and analytics entry points."""

from .analytics_service import AnalyticsService, DashboardSummary
from .trace_service import BatchResult, TraceAccepted, TracePage, TraceService

__all__ = [
    "AnalyticsService",
    "BatchResult",
    "DashboardSummary",
    "TraceAccepted",
    "TracePage",
    "TraceService",
]
