"""
Trace status resolution.

Derives one overall status for a trace from the statuses of its spans.
"""

from enum import Enum
from typing import Iterable


class TraceStatus(Enum):
    """Overall trace status, in decreasing precedence."""
    ERROR = "error"
    TIMEOUT = "timeout"
    SUCCESS = "success"
    UNKNOWN = "unknown"


ERROR_SPAN_STATUSES = frozenset({"error", "failed"})
TIMEOUT_SPAN_STATUSES = frozenset({"timeout"})


def resolve_trace_status(span_statuses: Iterable[str]) -> TraceStatus:
    """Resolve the trace status from span statuses.

    Precedence is fixed and independent of span order: error (or failed)
    beats timeout, timeout beats success. No spans means unknown. Any other
    span status counts as success.

    Args:
        span_statuses: Status strings of the trace's spans

    Returns:
        The resolved TraceStatus
    """
    seen_any = False
    has_timeout = False
    for status in span_statuses:
        seen_any = True
        normalized = (status or "").strip().lower()
        if normalized in ERROR_SPAN_STATUSES:
            return TraceStatus.ERROR
        if normalized in TIMEOUT_SPAN_STATUSES:
            has_timeout = True

    if has_timeout:
        return TraceStatus.TIMEOUT
    if not seen_any:
        return TraceStatus.UNKNOWN
    return TraceStatus.SUCCESS
