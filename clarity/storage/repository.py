"""
Repository pattern for data access.

TraceRepository is the storage contract the services consume.
SQLiteTraceRepository implements it on top of sqlite3. All time bounds are
half-open [start, end) and every read is scoped by organization.
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from clarity.errors import NotFoundError, StorageError
from .db import DEFAULT_DB_PATH, from_db_timestamp, get_connection, to_db_timestamp
from .models import (
    CostBreakdownItem,
    DailyCost,
    Metric,
    MetricQuery,
    MetricSummary,
    ModelStats,
    ModelUsage,
    Span,
    StatusCount,
    Trace,
    TraceQuery,
    WindowTotals,
)

logger = logging.getLogger(__name__)


class TraceRepository(ABC):
    """Storage contract for traces, spans and metrics."""

    @abstractmethod
    def save_trace(self, trace: Trace) -> None:
        """Persist a trace and all of its spans as one atomic write."""

    @abstractmethod
    def save_span(self, span: Span) -> None:
        """Append a single span to an existing trace."""

    @abstractmethod
    def get_trace_by_id(self, trace_id: str) -> Trace:
        """Return a trace with its spans, or raise NotFoundError."""

    @abstractmethod
    def get_spans_by_trace_id(self, trace_id: str) -> List[Span]:
        """Return the spans of a trace in start order."""

    @abstractmethod
    def get_traces(self, query: TraceQuery) -> List[Trace]:
        """Return trace headers (no spans) matching the query, newest first."""

    @abstractmethod
    def get_trace_count(self, query: TraceQuery) -> int:
        """Return the number of traces matching the query, ignoring paging."""

    @abstractmethod
    def save_metric(self, metric: Metric) -> None:
        """Persist one derived metric."""

    @abstractmethod
    def get_metrics(self, query: MetricQuery) -> List[Metric]:
        """Return metrics matching the query, newest first."""

    @abstractmethod
    def get_metric_summary(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> MetricSummary:
        """Aggregate counts, cost, latency percentiles and rates."""

    @abstractmethod
    def get_cost_breakdown(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> List[CostBreakdownItem]:
        """Cost and calls per model, most expensive first."""

    @abstractmethod
    def get_model_usage(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> List[ModelUsage]:
        """Usage per model, most called first."""

    @abstractmethod
    def get_window_totals(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> WindowTotals:
        """Raw totals for the dashboard."""

    @abstractmethod
    def get_top_models(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime, limit: int = 10
    ) -> List[ModelStats]:
        """Models by call count, highest first."""

    @abstractmethod
    def get_cost_by_day(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> List[DailyCost]:
        """Cost per UTC calendar day, oldest first."""

    @abstractmethod
    def get_traces_by_status(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> List[StatusCount]:
        """Trace count per status, highest first."""


_TRACE_COLUMNS = """
    trace_id, organization_id, project_id, timestamp, trace_type,
    duration_ms, status, total_cost_usd, total_tokens, model, provider,
    user_id, metadata
"""

_SPAN_COLUMNS = """
    span_id, trace_id, parent_span_id, name, start_time, end_time,
    duration_ms, model, provider, input, output, prompt_tokens,
    completion_tokens, total_tokens, cost_usd, status, error_message, metadata
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the traces, spans and metrics tables if they don't exist.

    Traces and spans are append-only: no UPDATE or DELETE is ever issued.

    Args:
        db_path: Path to SQLite database file
    """
    try:
        conn = get_connection(db_path)
    except sqlite3.Error as e:
        raise StorageError(f"failed to open database {db_path}: {e}") from e
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS traces (
                trace_id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                project_id TEXT NOT NULL DEFAULT '',
                timestamp TEXT NOT NULL,
                trace_type TEXT NOT NULL,
                duration_ms INTEGER NOT NULL,
                status TEXT NOT NULL,
                total_cost_usd REAL NOT NULL,
                total_tokens INTEGER NOT NULL,
                model TEXT NOT NULL,
                provider TEXT NOT NULL,
                user_id TEXT,
                metadata TEXT NOT NULL DEFAULT '{}'
            );
            CREATE INDEX IF NOT EXISTS idx_traces_org_time
                ON traces (organization_id, timestamp);

            CREATE TABLE IF NOT EXISTS spans (
                span_id TEXT PRIMARY KEY,
                trace_id TEXT NOT NULL REFERENCES traces (trace_id),
                parent_span_id TEXT,
                name TEXT NOT NULL,
                start_time TEXT NOT NULL,
                end_time TEXT NOT NULL,
                duration_ms INTEGER NOT NULL,
                model TEXT NOT NULL,
                provider TEXT NOT NULL,
                input TEXT NOT NULL,
                output TEXT NOT NULL,
                prompt_tokens INTEGER NOT NULL,
                completion_tokens INTEGER NOT NULL,
                total_tokens INTEGER NOT NULL,
                cost_usd REAL NOT NULL,
                status TEXT NOT NULL,
                error_message TEXT,
                metadata TEXT NOT NULL DEFAULT '{}'
            );
            CREATE INDEX IF NOT EXISTS idx_spans_trace ON spans (trace_id);

            CREATE TABLE IF NOT EXISTS metrics (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                organization_id TEXT NOT NULL,
                project_id TEXT NOT NULL DEFAULT '',
                metric_name TEXT NOT NULL,
                metric_value REAL NOT NULL,
                tags TEXT NOT NULL DEFAULT '{}'
            );
            CREATE INDEX IF NOT EXISTS idx_metrics_org_time
                ON metrics (organization_id, metric_name, timestamp);
        """)
        conn.commit()
    except sqlite3.Error as e:
        raise StorageError(f"failed to initialize schema: {e}") from e
    finally:
        conn.close()


def _compute_exact_percentile(values: Sequence[float], percentile: int) -> float:
    """Compute exact percentile using linear interpolation.

    Uses the same method as numpy.percentile with interpolation='linear'.
    Returns 0.0 for an empty input.
    """
    if not values:
        return 0.0
    if percentile < 0 or percentile > 100:
        raise ValueError("Percentile must be between 0 and 100")

    sorted_values = sorted(values)
    n = len(sorted_values)

    # Convert percentile to position (0-indexed)
    position = (percentile / 100.0) * (n - 1)

    lower_index = int(position)
    upper_index = min(lower_index + 1, n - 1)
    fraction = position - lower_index

    lower_value = sorted_values[lower_index]
    upper_value = sorted_values[upper_index]

    return lower_value + fraction * (upper_value - lower_value)


def _rate(count: int, total: int) -> float:
    if total == 0:
        return 0.0
    return (count / total) * 100.0


class SQLiteTraceRepository(TraceRepository):
    """SQLite implementation of the storage contract.

    Opens a short-lived connection per call, so one instance can be shared
    between the request path and background workers.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    @contextmanager
    def _connect(self, action: str) -> Iterator[sqlite3.Connection]:
        """Yield a connection, translating sqlite errors into StorageError."""
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"failed to {action}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"failed to {action}: {e}") from e
        finally:
            conn.close()

    # -- writes -------------------------------------------------------------

    def save_trace(self, trace: Trace) -> None:
        """Insert a trace and its spans in a single transaction.

        Either the trace and every span become visible together or nothing
        does; any failure rolls the transaction back.
        """
        with self._connect("save trace") as conn:
            try:
                conn.execute("BEGIN TRANSACTION")
                conn.execute(
                    f"INSERT INTO traces ({_TRACE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        trace.trace_id,
                        trace.organization_id,
                        trace.project_id or "",
                        to_db_timestamp(trace.timestamp),
                        trace.trace_type,
                        trace.duration_ms,
                        trace.status,
                        trace.total_cost,
                        trace.total_tokens,
                        trace.model,
                        trace.provider,
                        trace.user_id,
                        json.dumps(trace.metadata or {}),
                    ),
                )
                for span in trace.spans:
                    self._insert_span(conn, span)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        logger.debug("Saved trace %s with %d spans", trace.trace_id, len(trace.spans))

    def save_span(self, span: Span) -> None:
        with self._connect("save span") as conn:
            try:
                self._insert_span(conn, span)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    @staticmethod
    def _insert_span(conn: sqlite3.Connection, span: Span) -> None:
        conn.execute(
            f"INSERT INTO spans ({_SPAN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                span.span_id,
                span.trace_id,
                span.parent_span_id,
                span.name,
                to_db_timestamp(span.start_time),
                to_db_timestamp(span.end_time),
                span.duration_ms,
                span.model,
                span.provider,
                span.input,
                span.output,
                span.prompt_tokens,
                span.completion_tokens,
                span.total_tokens,
                span.cost,
                span.status,
                span.error_message,
                json.dumps(span.metadata or {}),
            ),
        )

    def save_metric(self, metric: Metric) -> None:
        with self._connect("save metric") as conn:
            conn.execute(
                """
                INSERT INTO metrics
                (timestamp, organization_id, project_id, metric_name, metric_value, tags)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    to_db_timestamp(metric.timestamp),
                    metric.organization_id,
                    metric.project_id or "",
                    metric.metric_name,
                    metric.metric_value,
                    json.dumps(metric.tags or {}),
                ),
            )
            conn.commit()

    # -- trace reads --------------------------------------------------------

    def get_trace_by_id(self, trace_id: str) -> Trace:
        with self._connect("get trace") as conn:
            row = conn.execute(
                f"SELECT {_TRACE_COLUMNS} FROM traces WHERE trace_id = ? LIMIT 1",
                (trace_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"trace not found: {trace_id}")
            spans = self._fetch_spans(conn, trace_id)
        return self._row_to_trace(row, spans)

    def get_spans_by_trace_id(self, trace_id: str) -> List[Span]:
        with self._connect("get spans") as conn:
            return self._fetch_spans(conn, trace_id)

    def _fetch_spans(self, conn: sqlite3.Connection, trace_id: str) -> List[Span]:
        cursor = conn.execute(
            f"SELECT {_SPAN_COLUMNS} FROM spans WHERE trace_id = ? ORDER BY start_time, rowid",
            (trace_id,),
        )
        return [self._row_to_span(row) for row in cursor.fetchall()]

    def get_traces(self, query: TraceQuery) -> List[Trace]:
        where, params = self._trace_filters(query)
        with self._connect("get traces") as conn:
            cursor = conn.execute(
                f"SELECT {_TRACE_COLUMNS} FROM traces {where} "
                "ORDER BY timestamp DESC, trace_id LIMIT ? OFFSET ?",
                params + [query.limit, query.offset],
            )
            return [self._row_to_trace(row, []) for row in cursor.fetchall()]

    def get_trace_count(self, query: TraceQuery) -> int:
        where, params = self._trace_filters(query)
        with self._connect("count traces") as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM traces {where}", params).fetchone()
            return int(row[0] or 0)

    @staticmethod
    def _trace_filters(query: TraceQuery) -> Tuple[str, List[Any]]:
        conditions = ["organization_id = ?"]
        params: List[Any] = [query.organization_id]

        if query.project_id:
            conditions.append("project_id = ?")
            params.append(query.project_id)
        if query.start_time is not None:
            conditions.append("timestamp >= ?")
            params.append(to_db_timestamp(query.start_time))
        if query.end_time is not None:
            conditions.append("timestamp < ?")
            params.append(to_db_timestamp(query.end_time))
        if query.model:
            conditions.append("model = ?")
            params.append(query.model)
        if query.provider:
            conditions.append("provider = ?")
            params.append(query.provider)
        if query.status:
            conditions.append("status = ?")
            params.append(query.status)
        if query.user_id:
            conditions.append("user_id = ?")
            params.append(query.user_id)

        return "WHERE " + " AND ".join(conditions), params

    # -- metric reads -------------------------------------------------------

    def get_metrics(self, query: MetricQuery) -> List[Metric]:
        conditions = ["organization_id = ?"]
        params: List[Any] = [query.organization_id]
        if query.project_id:
            conditions.append("project_id = ?")
            params.append(query.project_id)
        if query.metric_name:
            conditions.append("metric_name = ?")
            params.append(query.metric_name)
        if query.start_time is not None:
            conditions.append("timestamp >= ?")
            params.append(to_db_timestamp(query.start_time))
        if query.end_time is not None:
            conditions.append("timestamp < ?")
            params.append(to_db_timestamp(query.end_time))

        with self._connect("get metrics") as conn:
            cursor = conn.execute(
                "SELECT timestamp, organization_id, project_id, metric_name, metric_value, tags "
                f"FROM metrics WHERE {' AND '.join(conditions)} "
                "ORDER BY timestamp DESC, id DESC LIMIT ?",
                params + [query.limit],
            )
            return [
                Metric(
                    timestamp=from_db_timestamp(row["timestamp"]),
                    organization_id=row["organization_id"],
                    project_id=row["project_id"],
                    metric_name=row["metric_name"],
                    metric_value=row["metric_value"],
                    tags=json.loads(row["tags"] or "{}"),
                )
                for row in cursor.fetchall()
            ]

    # -- aggregations -------------------------------------------------------

    @staticmethod
    def _window(
        organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> Tuple[str, List[Any]]:
        conditions = ["organization_id = ?", "timestamp >= ?", "timestamp < ?"]
        params: List[Any] = [organization_id, to_db_timestamp(start), to_db_timestamp(end)]
        if project_id:
            conditions.append("project_id = ?")
            params.append(project_id)
        return "WHERE " + " AND ".join(conditions), params

    def get_metric_summary(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> MetricSummary:
        where, params = self._window(organization_id, project_id, start, end)
        with self._connect("get metric summary") as conn:
            row = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS total_requests,
                    COALESCE(SUM(total_tokens), 0) AS total_tokens,
                    COALESCE(SUM(total_cost_usd), 0) AS total_cost,
                    COALESCE(AVG(total_cost_usd), 0) AS avg_cost,
                    COALESCE(AVG(duration_ms), 0) AS avg_latency,
                    SUM(CASE WHEN status = 'error' THEN 1 ELSE 0 END) AS errors,
                    SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successes
                FROM traces {where}
                """,
                params,
            ).fetchone()
            total = int(row["total_requests"] or 0)
            if total == 0:
                return MetricSummary()
            durations = [
                float(r[0]) for r in conn.execute(f"SELECT duration_ms FROM traces {where}", params).fetchall()
            ]

        return MetricSummary(
            total_requests=total,
            total_tokens=int(row["total_tokens"]),
            total_cost=float(row["total_cost"]),
            avg_cost_per_request=float(row["avg_cost"]),
            avg_latency_ms=float(row["avg_latency"]),
            p50_latency_ms=_compute_exact_percentile(durations, 50),
            p95_latency_ms=_compute_exact_percentile(durations, 95),
            p99_latency_ms=_compute_exact_percentile(durations, 99),
            error_rate=_rate(int(row["errors"] or 0), total),
            success_rate=_rate(int(row["successes"] or 0), total),
        )

    def get_cost_breakdown(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> List[CostBreakdownItem]:
        where, params = self._window(organization_id, project_id, start, end)
        with self._connect("get cost breakdown") as conn:
            cursor = conn.execute(
                f"""
                SELECT model,
                       SUM(total_cost_usd) AS total_cost,
                       COUNT(*) AS total_calls,
                       AVG(total_cost_usd) AS avg_cost
                FROM traces {where}
                GROUP BY model
                ORDER BY total_cost DESC, model ASC
                """,
                params,
            )
            return [
                CostBreakdownItem(
                    model=row["model"],
                    total_cost=float(row["total_cost"] or 0),
                    total_calls=int(row["total_calls"]),
                    avg_cost=float(row["avg_cost"] or 0),
                )
                for row in cursor.fetchall()
            ]

    def get_model_usage(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> List[ModelUsage]:
        where, params = self._window(organization_id, project_id, start, end)
        with self._connect("get model usage") as conn:
            cursor = conn.execute(
                f"""
                SELECT model,
                       COUNT(*) AS call_count,
                       SUM(total_tokens) AS total_tokens,
                       SUM(total_cost_usd) AS total_cost,
                       AVG(duration_ms) AS avg_latency
                FROM traces {where}
                GROUP BY model
                ORDER BY call_count DESC, model ASC
                """,
                params,
            )
            return [
                ModelUsage(
                    model=row["model"],
                    call_count=int(row["call_count"]),
                    total_tokens=int(row["total_tokens"] or 0),
                    total_cost=float(row["total_cost"] or 0),
                    avg_latency_ms=float(row["avg_latency"] or 0),
                )
                for row in cursor.fetchall()
            ]

    def get_window_totals(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> WindowTotals:
        where, params = self._window(organization_id, project_id, start, end)
        with self._connect("get window totals") as conn:
            row = conn.execute(
                f"""
                SELECT
                    COUNT(*) AS trace_count,
                    COALESCE(SUM(total_cost_usd), 0) AS total_cost,
                    COALESCE(SUM(total_tokens), 0) AS total_tokens,
                    COALESCE(AVG(duration_ms), 0) AS avg_latency,
                    COALESCE(SUM(CASE WHEN status = 'error' THEN 1 ELSE 0 END), 0) AS errors,
                    COALESCE(SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END), 0) AS successes
                FROM traces {where}
                """,
                params,
            ).fetchone()
        return WindowTotals(
            trace_count=int(row["trace_count"]),
            total_cost=float(row["total_cost"]),
            total_tokens=int(row["total_tokens"]),
            avg_latency_ms=float(row["avg_latency"]),
            error_count=int(row["errors"]),
            success_count=int(row["successes"]),
        )

    def get_top_models(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime, limit: int = 10
    ) -> List[ModelStats]:
        where, params = self._window(organization_id, project_id, start, end)
        with self._connect("get top models") as conn:
            cursor = conn.execute(
                f"""
                SELECT model, COUNT(*) AS count, SUM(total_cost_usd) AS cost
                FROM traces {where}
                GROUP BY model
                ORDER BY count DESC, model ASC
                LIMIT ?
                """,
                params + [limit],
            )
            return [
                ModelStats(model=row["model"], count=int(row["count"]), cost=float(row["cost"] or 0))
                for row in cursor.fetchall()
            ]

    def get_cost_by_day(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> List[DailyCost]:
        where, params = self._window(organization_id, project_id, start, end)
        # Timestamps are stored as UTC ISO strings, so the first 10 chars are the UTC date
        with self._connect("get cost by day") as conn:
            cursor = conn.execute(
                f"""
                SELECT substr(timestamp, 1, 10) AS date, SUM(total_cost_usd) AS cost
                FROM traces {where}
                GROUP BY date
                ORDER BY date ASC
                """,
                params,
            )
            return [DailyCost(date=row["date"], cost=float(row["cost"] or 0)) for row in cursor.fetchall()]

    def get_traces_by_status(
        self, organization_id: str, project_id: Optional[str], start: datetime, end: datetime
    ) -> List[StatusCount]:
        where, params = self._window(organization_id, project_id, start, end)
        with self._connect("get traces by status") as conn:
            cursor = conn.execute(
                f"""
                SELECT status, COUNT(*) AS count
                FROM traces {where}
                GROUP BY status
                ORDER BY count DESC, status ASC
                """,
                params,
            )
            return [StatusCount(status=row["status"], count=int(row["count"])) for row in cursor.fetchall()]

    # -- row mapping --------------------------------------------------------

    @staticmethod
    def _row_to_trace(row: sqlite3.Row, spans: List[Span]) -> Trace:
        return Trace(
            trace_id=row["trace_id"],
            organization_id=row["organization_id"],
            project_id=row["project_id"],
            trace_type=row["trace_type"],
            model=row["model"],
            provider=row["provider"],
            status=row["status"],
            total_tokens=int(row["total_tokens"]),
            total_cost=float(row["total_cost_usd"]),
            duration_ms=int(row["duration_ms"]),
            timestamp=from_db_timestamp(row["timestamp"]),
            user_id=row["user_id"],
            metadata=json.loads(row["metadata"] or "{}"),
            spans=spans,
        )

    @staticmethod
    def _row_to_span(row: sqlite3.Row) -> Span:
        return Span(
            span_id=row["span_id"],
            trace_id=row["trace_id"],
            parent_span_id=row["parent_span_id"],
            name=row["name"],
            start_time=from_db_timestamp(row["start_time"]),
            end_time=from_db_timestamp(row["end_time"]),
            duration_ms=int(row["duration_ms"]),
            model=row["model"],
            provider=row["provider"],
            input=row["input"],
            output=row["output"],
            prompt_tokens=int(row["prompt_tokens"]),
            completion_tokens=int(row["completion_tokens"]),
            total_tokens=int(row["total_tokens"]),
            cost=float(row["cost_usd"]),
            status=row["status"],
            error_message=row["error_message"],
            metadata=json.loads(row["metadata"] or "{}"),
        )
