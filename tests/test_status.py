"""
Unit tests for trace status resolution.
"""

import itertools

from clarity.core.status import TraceStatus, resolve_trace_status


class TestResolveTraceStatus:
    """Test precedence and edge cases."""

    def test_no_spans_is_unknown(self):
        assert resolve_trace_status([]) == TraceStatus.UNKNOWN

    def test_all_success(self):
        assert resolve_trace_status(["success", "success"]) == TraceStatus.SUCCESS

    def test_error_beats_timeout(self):
        assert resolve_trace_status(["timeout", "success", "error"]) == TraceStatus.ERROR

    def test_failed_counts_as_error(self):
        assert resolve_trace_status(["success", "failed"]) == TraceStatus.ERROR

    def test_timeout_beats_success(self):
        assert resolve_trace_status(["success", "timeout"]) == TraceStatus.TIMEOUT

    def test_unrecognised_status_counts_as_success(self):
        assert resolve_trace_status(["cached"]) == TraceStatus.SUCCESS

    def test_case_insensitive(self):
        assert resolve_trace_status(["ERROR"]) == TraceStatus.ERROR

    def test_order_independent(self):
        statuses = ["success", "timeout", "error"]
        results = {resolve_trace_status(list(p)) for p in itertools.permutations(statuses)}
        assert results == {TraceStatus.ERROR}
