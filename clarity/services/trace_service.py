"""
Trace ingestion service.

Validates submissions, enriches spans, persists each trace in one write and
hands metric emission and event publication to the side-effect dispatcher.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, FrozenSet, List, Mapping, Optional, Sequence, Union

from clarity.config.loader import IngestionConfig
from clarity.core.cancellation import CancelToken
from clarity.core.dispatch import SideEffectDispatcher
from clarity.core.enrichment import enrich_spans
from clarity.core.pricing import CostModel
from clarity.core.status import resolve_trace_status
from clarity.core.submission import SpanSubmission, TraceSubmission
from clarity.errors import ClarityError, ValidationError
from clarity.events.publisher import EventPublisher
from clarity.storage.models import DEFAULT_QUERY_LIMIT, Metric, Trace, TraceQuery, effective_limit
from clarity.storage.repository import TraceRepository

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"


@dataclass(frozen=True)
class TraceAccepted:
    """Acknowledgement returned for an ingested trace."""
    trace_id: str
    status: str
    trace_status: str
    total_tokens: int
    total_cost: float
    duration_ms: int
    timestamp: datetime
    message: str = "Trace ingested successfully"


@dataclass(frozen=True)
class BatchResult:
    """Per-batch accounting. accepted + rejected equals the batch size."""
    accepted: int
    rejected: int
    errors: List[str] = field(default_factory=list)
    trace_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TracePage:
    """One page of trace headers (spans are not loaded)."""
    traces: List[Trace]
    total: int
    limit: int
    offset: int


class TraceService:
    """Ingestion orchestrator and trace read path.

    Args:
        repository: Storage collaborator
        cost_model: Prices each span
        dispatcher: Runs side effects in the background; when None they run
            inline, still best-effort
        event_publisher: Optional lifecycle event destination
        ingestion: Trace types and limits
        clock: Source of the trace timestamp
    """

    def __init__(
        self,
        repository: TraceRepository,
        cost_model: Optional[CostModel] = None,
        dispatcher: Optional[SideEffectDispatcher] = None,
        event_publisher: Optional[EventPublisher] = None,
        ingestion: Optional[IngestionConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.repository = repository
        self.cost_model = cost_model or CostModel()
        self.dispatcher = dispatcher
        self.event_publisher = event_publisher
        self.ingestion = ingestion or IngestionConfig()
        self._clock = clock

    @property
    def accepted_trace_types(self) -> FrozenSet[str]:
        return self.ingestion.trace_types

    # -- ingestion ----------------------------------------------------------

    def create_trace(
        self, submission: TraceSubmission, cancel_token: Optional[CancelToken] = None
    ) -> TraceAccepted:
        """Validate, enrich and persist one trace.

        Args:
            submission: Raw trace submission
            cancel_token: Checked once, right before persisting

        Returns:
            TraceAccepted acknowledgement

        Raises:
            ValidationError: If the submission is malformed; nothing is written
            StorageError: If the write fails; no partial trace is visible
            OperationCancelled: If cancelled before persisting
        """
        try:
            self._validate(submission)
        except ValidationError as e:
            logger.info("Rejected trace for org %s: %s", submission.organization_id, e)
            raise

        trace_id = str(uuid.uuid4())
        timestamp = self._clock()
        spans = enrich_spans(
            submission.spans,
            trace_id,
            timestamp,
            self.cost_model,
            max_text_length=self.ingestion.max_text_length,
            span_gap_ms=self.ingestion.span_gap_ms,
        )
        first = spans[0]
        trace = Trace(
            trace_id=trace_id,
            organization_id=submission.organization_id,
            project_id=submission.project_id or "",
            trace_type=submission.trace_type,
            model=submission.model or first.model,
            provider=submission.provider or first.provider,
            status=resolve_trace_status(span.status for span in spans).value,
            total_tokens=sum(span.total_tokens for span in spans),
            total_cost=sum(span.cost for span in spans),
            duration_ms=sum(span.duration_ms for span in spans),
            timestamp=timestamp,
            user_id=submission.user_id or None,
            metadata=dict(submission.metadata),
            spans=spans,
        )

        if cancel_token is not None:
            cancel_token.raise_if_cancelled("trace ingestion")

        self.repository.save_trace(trace)
        logger.debug(
            "Accepted trace %s (org=%s, spans=%d, cost=%.8f)",
            trace.trace_id, trace.organization_id, len(spans), trace.total_cost,
        )

        self._dispatch(lambda: self._emit_metrics(trace), f"metrics for trace {trace_id}")
        if self.event_publisher is not None:
            self._dispatch(lambda: self._publish_events(trace), f"events for trace {trace_id}")

        return TraceAccepted(
            trace_id=trace.trace_id,
            status=ACCEPTED,
            trace_status=trace.status,
            total_tokens=trace.total_tokens,
            total_cost=trace.total_cost,
            duration_ms=trace.duration_ms,
            timestamp=trace.timestamp,
        )

    def create_batch(
        self,
        submissions: Sequence[Union[TraceSubmission, Mapping[str, Any]]],
        cancel_token: Optional[CancelToken] = None,
    ) -> BatchResult:
        """Ingest traces one by one, collecting per-item failures.

        Items may be TraceSubmission objects or decoded JSON objects; the
        latter are decoded per item so one malformed payload only rejects
        itself. Errors are reported as "item <i>: <reason>" with a 0-based
        index, in submission order. Items reached after cancellation are
        rejected with the cancellation reason.

        Raises:
            ValidationError: If the batch is empty or larger than the limit
        """
        size = len(submissions)
        if size == 0:
            raise ValidationError("batch must contain at least one trace", field="traces")
        if size > self.ingestion.max_batch_size:
            raise ValidationError(
                f"batch size {size} exceeds maximum of {self.ingestion.max_batch_size}", field="traces"
            )

        accepted = 0
        errors: List[str] = []
        trace_ids: List[str] = []
        for index, submission in enumerate(submissions):
            try:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled("batch ingestion")
                if not isinstance(submission, TraceSubmission):
                    submission = TraceSubmission.from_dict(submission)
                result = self.create_trace(submission, cancel_token)
            except ClarityError as e:
                errors.append(f"item {index}: {e}")
                continue
            except Exception as e:
                logger.error("Unexpected failure ingesting batch item %d", index, exc_info=True)
                errors.append(f"item {index}: {str(e) or type(e).__name__}")
                continue
            accepted += 1
            trace_ids.append(result.trace_id)

        logger.info("Batch of %d traces: %d accepted, %d rejected", size, accepted, len(errors))
        return BatchResult(accepted=accepted, rejected=len(errors), errors=errors, trace_ids=trace_ids)

    def _validate(self, submission: TraceSubmission) -> None:
        if not submission.organization_id:
            raise ValidationError("organization_id is required", field="organization_id")
        if not submission.trace_type:
            raise ValidationError("trace_type is required", field="trace_type")
        if submission.trace_type not in self.ingestion.trace_types:
            allowed = ", ".join(sorted(self.ingestion.trace_types))
            raise ValidationError(
                f"trace_type '{submission.trace_type}' is not one of: {allowed}", field="trace_type"
            )
        if not submission.spans:
            raise ValidationError("at least one span is required", field="spans")
        for index, span in enumerate(submission.spans):
            self._validate_span(span, f"spans[{index}]")

    @staticmethod
    def _validate_span(span: SpanSubmission, path: str) -> None:
        for name in ("model", "provider", "status"):
            if not getattr(span, name):
                raise ValidationError(f"{path}.{name} is required", field=f"{path}.{name}")
        # Empty text is allowed; only absence is rejected
        for name in ("input", "output"):
            if getattr(span, name) is None:
                raise ValidationError(f"{path}.{name} is required", field=f"{path}.{name}")
        for name in ("prompt_tokens", "completion_tokens", "duration_ms"):
            value = getattr(span, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{path}.{name} must be an integer", field=f"{path}.{name}")
            if value < 0:
                raise ValidationError(f"{path}.{name} cannot be negative", field=f"{path}.{name}")

    # -- side effects -------------------------------------------------------

    def _dispatch(self, task: Callable[[], None], description: str) -> None:
        if self.dispatcher is not None:
            self.dispatcher.submit(task, description)
            return
        try:
            task()
        except Exception:
            logger.warning("Side effect failed: %s", description, exc_info=True)

    def _emit_metrics(self, trace: Trace) -> None:
        tags = {"model": trace.model, "provider": trace.provider, "status": trace.status}
        values = (
            ("request_count", 1.0),
            ("latency_ms", float(trace.duration_ms)),
            ("cost_usd", trace.total_cost),
            ("token_count", float(trace.total_tokens)),
        )
        for name, value in values:
            self.repository.save_metric(Metric(
                timestamp=trace.timestamp,
                organization_id=trace.organization_id,
                project_id=trace.project_id,
                metric_name=name,
                metric_value=value,
                tags=dict(tags),
            ))

    def _publish_events(self, trace: Trace) -> None:
        publisher = self.event_publisher
        publisher.publish_trace_created(
            trace.trace_id,
            trace.organization_id,
            trace.project_id,
            trace.model,
            trace.provider,
            trace.total_tokens,
            trace.total_cost,
        )
        for span in trace.spans:
            publisher.publish_span_created(span.span_id, trace.trace_id, span.duration_ms, span.total_tokens)

    # -- reads --------------------------------------------------------------

    def get_trace(self, trace_id: str, cancel_token: Optional[CancelToken] = None) -> Trace:
        """Fetch one trace with its spans.

        Raises:
            ValidationError: If trace_id is empty
            NotFoundError: If no such trace exists
            OperationCancelled: If cancelled before the read
        """
        if not trace_id:
            raise ValidationError("trace_id is required", field="trace_id")
        if cancel_token is not None:
            cancel_token.raise_if_cancelled("trace lookup")
        return self.repository.get_trace_by_id(trace_id)

    def get_traces(self, query: TraceQuery, cancel_token: Optional[CancelToken] = None) -> TracePage:
        """List trace headers matching a query, newest first.

        A limit of 0 means the default page size and limits above
        MAX_QUERY_LIMIT are capped.

        Raises:
            ValidationError: If organization_id is missing or paging is invalid
            OperationCancelled: If cancelled between reads
        """
        if not query.organization_id:
            raise ValidationError("organization_id is required", field="organization_id")
        if query.limit < 0:
            raise ValidationError("limit cannot be negative", field="limit")
        if query.offset < 0:
            raise ValidationError("offset cannot be negative", field="offset")
        if query.start_time and query.end_time and query.start_time > query.end_time:
            raise ValidationError("start_time must not be after end_time", field="start_time")
        query = replace(query, limit=effective_limit(query.limit, DEFAULT_QUERY_LIMIT))

        if cancel_token is not None:
            cancel_token.raise_if_cancelled("trace listing")
        traces = self.repository.get_traces(query)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled("trace listing")
        total = self.repository.get_trace_count(query)
        return TracePage(traces=traces, total=total, limit=query.limit, offset=query.offset)
