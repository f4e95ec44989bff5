"""
Unit tests for the storage layer.

Tests schema creation, transactional trace writes, filtering and the named
aggregations.
"""

import os
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from clarity.errors import NotFoundError, StorageError
from clarity.storage.db import from_db_timestamp, get_connection, to_db_timestamp
from clarity.storage.models import Metric, MetricQuery, Span, Trace, TraceQuery
from clarity.storage.repository import (
    SQLiteTraceRepository,
    _compute_exact_percentile,
    initialize_schema,
)

BASE = datetime(2024, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


def make_span(trace_id: str, index: int = 0, status: str = "success", cost: float = 0.01, duration: int = 100):
    start = BASE + timedelta(milliseconds=index * 200)
    return Span(
        span_id=f"{trace_id}-span-{index}",
        trace_id=trace_id,
        name=f"span_{index}",
        model="gpt-4",
        provider="openai",
        input="hello",
        output="world",
        prompt_tokens=10,
        completion_tokens=5,
        total_tokens=15,
        cost=cost,
        status=status,
        start_time=start,
        end_time=start + timedelta(milliseconds=duration),
        duration_ms=duration,
    )


def make_trace(
    trace_id: str,
    org: str = "org-1",
    project: str = "proj-1",
    model: str = "gpt-4",
    status: str = "success",
    cost: float = 0.01,
    tokens: int = 15,
    duration: int = 100,
    timestamp: datetime = BASE,
    spans=None,
):
    return Trace(
        trace_id=trace_id,
        organization_id=org,
        project_id=project,
        trace_type="single_call",
        model=model,
        provider="openai",
        status=status,
        total_tokens=tokens,
        total_cost=cost,
        duration_ms=duration,
        timestamp=timestamp,
        metadata={"env": "test"},
        spans=spans if spans is not None else [make_span(trace_id, cost=cost, duration=duration)],
    )


@pytest.fixture
def repo():
    with tempfile.TemporaryDirectory() as temp_dir:
        db_path = os.path.join(temp_dir, "test.db")
        initialize_schema(db_path)
        yield SQLiteTraceRepository(db_path)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
                tables = {row[0] for row in cursor.fetchall()}
                assert {"traces", "spans", "metrics"} <= tables
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class TestTimestamps:
    """Test timestamp encoding."""

    def test_round_trip_preserves_instant(self):
        value = datetime(2024, 1, 2, 3, 4, 5, 678, tzinfo=timezone.utc)
        assert from_db_timestamp(to_db_timestamp(value)) == value

    def test_naive_is_treated_as_utc(self):
        assert to_db_timestamp(datetime(2024, 1, 1)) == "2024-01-01T00:00:00.000000+00:00"

    def test_other_offsets_are_normalized(self):
        plus_two = timezone(timedelta(hours=2))
        encoded = to_db_timestamp(datetime(2024, 1, 1, 2, 0, tzinfo=plus_two))
        assert encoded.startswith("2024-01-01T00:00:00")


class TestTraceWrites:
    """Test trace persistence."""

    def test_save_and_fetch_trace_with_spans(self, repo):
        spans = [make_span("t1", 0), make_span("t1", 1, status="error")]
        repo.save_trace(make_trace("t1", spans=spans))

        fetched = repo.get_trace_by_id("t1")
        assert fetched.organization_id == "org-1"
        assert fetched.metadata == {"env": "test"}
        assert fetched.timestamp == BASE
        assert [s.span_id for s in fetched.spans] == ["t1-span-0", "t1-span-1"]
        assert fetched.spans[1].status == "error"

    def test_missing_trace_raises_not_found(self, repo):
        with pytest.raises(NotFoundError):
            repo.get_trace_by_id("nope")

    def test_failed_span_insert_rolls_back_trace(self, repo):
        """A duplicate span id aborts the whole write."""
        duplicate = make_span("t2", 0)
        trace = make_trace("t2", spans=[duplicate, duplicate])

        with pytest.raises(StorageError):
            repo.save_trace(trace)

        with pytest.raises(NotFoundError):
            repo.get_trace_by_id("t2")
        assert repo.get_spans_by_trace_id("t2") == []

    def test_save_span_appends(self, repo):
        repo.save_trace(make_trace("t3", spans=[make_span("t3", 0)]))
        repo.save_span(make_span("t3", 1, status="timeout", duration=250))

        spans = repo.get_spans_by_trace_id("t3")
        assert [s.span_id for s in spans] == ["t3-span-0", "t3-span-1"]
        appended = spans[1]
        assert appended.status == "timeout"
        assert appended.duration_ms == 250
        assert appended.start_time == BASE + timedelta(milliseconds=200)
        assert appended.cost == pytest.approx(0.01)
        assert len(repo.get_trace_by_id("t3").spans) == 2

    def test_save_span_for_unknown_trace_fails(self, repo):
        with pytest.raises(StorageError):
            repo.save_span(make_span("missing", 0))

    def test_sqlite_error_becomes_storage_error(self, repo):
        with patch("clarity.storage.repository.get_connection", side_effect=sqlite3.OperationalError("disk I/O")):
            with pytest.raises(StorageError, match="failed to save trace"):
                repo.save_trace(make_trace("t4"))


class TestTraceQueries:
    """Test filtering and pagination."""

    def test_filters_and_half_open_window(self, repo):
        repo.save_trace(make_trace("a", timestamp=BASE))
        repo.save_trace(make_trace("b", timestamp=BASE + timedelta(hours=1), status="error"))
        repo.save_trace(make_trace("c", timestamp=BASE + timedelta(hours=2)))
        repo.save_trace(make_trace("d", org="org-2"))

        query = TraceQuery(
            organization_id="org-1",
            start_time=BASE,
            end_time=BASE + timedelta(hours=2),
        )
        ids = [t.trace_id for t in repo.get_traces(query)]
        # Newest first; end bound excluded
        assert ids == ["b", "a"]
        assert repo.get_trace_count(query) == 2

        errors = repo.get_traces(TraceQuery(organization_id="org-1", status="error"))
        assert [t.trace_id for t in errors] == ["b"]

    def test_listing_does_not_load_spans(self, repo):
        repo.save_trace(make_trace("a"))
        assert repo.get_traces(TraceQuery(organization_id="org-1"))[0].spans == []

    def test_pagination(self, repo):
        for i in range(5):
            repo.save_trace(make_trace(f"t{i}", timestamp=BASE + timedelta(minutes=i)))
        page = repo.get_traces(TraceQuery(organization_id="org-1", limit=2, offset=2))
        assert [t.trace_id for t in page] == ["t2", "t1"]


class TestMetrics:
    """Test metric writes and reads."""

    def test_save_and_filter_metrics(self, repo):
        for name, value in (("cost_usd", 0.5), ("latency_ms", 120.0)):
            repo.save_metric(Metric(
                timestamp=BASE,
                organization_id="org-1",
                project_id="proj-1",
                metric_name=name,
                metric_value=value,
                tags={"model": "gpt-4"},
            ))

        metrics = repo.get_metrics(MetricQuery(organization_id="org-1", metric_name="cost_usd"))
        assert len(metrics) == 1
        assert metrics[0].metric_value == 0.5
        assert metrics[0].tags == {"model": "gpt-4"}


class TestAggregations:
    """Test the named window aggregations."""

    def _seed(self, repo):
        repo.save_trace(make_trace("a", model="gpt-4", cost=0.30, duration=100, tokens=100))
        repo.save_trace(make_trace("b", model="gpt-4", cost=0.10, duration=300, status="error", tokens=200))
        repo.save_trace(make_trace(
            "c", model="claude-3-haiku", cost=0.05, duration=200, tokens=50,
            timestamp=BASE + timedelta(days=1),
        ))
        repo.save_trace(make_trace("d", project="proj-2", model="gpt-4", cost=1.0))

    def test_metric_summary(self, repo):
        self._seed(repo)
        summary = repo.get_metric_summary("org-1", "proj-1", BASE, BASE + timedelta(days=2))
        assert summary.total_requests == 3
        assert summary.total_tokens == 350
        assert summary.total_cost == pytest.approx(0.45)
        assert summary.p50_latency_ms == pytest.approx(200.0)
        assert summary.error_rate == pytest.approx(100 / 3)
        assert summary.success_rate == pytest.approx(200 / 3)

    def test_empty_summary_is_zero(self, repo):
        summary = repo.get_metric_summary("org-1", None, BASE, BASE + timedelta(days=1))
        assert summary.total_requests == 0
        assert summary.error_rate == 0.0

    def test_cost_breakdown_and_usage(self, repo):
        self._seed(repo)
        breakdown = repo.get_cost_breakdown("org-1", "proj-1", BASE, BASE + timedelta(days=2))
        assert [item.model for item in breakdown] == ["gpt-4", "claude-3-haiku"]
        assert breakdown[0].total_calls == 2

        usage = repo.get_model_usage("org-1", "proj-1", BASE, BASE + timedelta(days=2))
        assert usage[0].model == "gpt-4"
        assert usage[0].avg_latency_ms == pytest.approx(200.0)

    def test_window_totals_without_project_filter(self, repo):
        self._seed(repo)
        totals = repo.get_window_totals("org-1", None, BASE, BASE + timedelta(days=2))
        assert totals.trace_count == 4
        assert totals.error_count == 1
        assert totals.success_count == 3

    def test_cost_by_day_and_status(self, repo):
        self._seed(repo)
        days = repo.get_cost_by_day("org-1", "proj-1", BASE, BASE + timedelta(days=2))
        assert [d.date for d in days] == ["2024-03-10", "2024-03-11"]
        assert days[0].cost == pytest.approx(0.40)

        statuses = repo.get_traces_by_status("org-1", "proj-1", BASE, BASE + timedelta(days=2))
        assert [(s.status, s.count) for s in statuses] == [("success", 2), ("error", 1)]

    def test_top_models_limit(self, repo):
        self._seed(repo)
        top = repo.get_top_models("org-1", None, BASE, BASE + timedelta(days=2), limit=1)
        assert len(top) == 1
        assert top[0].model == "gpt-4"
        assert top[0].count == 3


class TestPercentile:
    """Test exact percentile computation."""

    def test_empty_is_zero(self):
        assert _compute_exact_percentile([], 95) == 0.0

    def test_linear_interpolation(self):
        assert _compute_exact_percentile([1, 2, 3, 4], 50) == pytest.approx(2.5)

    def test_invalid_percentile(self):
        with pytest.raises(ValueError):
            _compute_exact_percentile([1.0], 101)
