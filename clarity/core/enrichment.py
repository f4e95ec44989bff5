"""
Span enrichment.

Turns raw span submissions into Span records: identity, synthesized
timing, cost and text truncation. Pure; no storage or network access.
"""

import uuid
from datetime import datetime, timedelta
from typing import List, Sequence

from clarity.storage.models import Span
from .pricing import CostModel
from .submission import SpanSubmission

MAX_TEXT_LENGTH = 1000
TRUNCATION_MARKER = "..."
DEFAULT_SPAN_GAP_MS = 1


def truncate_text(text: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Cap text at max_length characters, marking the cut with '...'."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + TRUNCATION_MARKER


def enrich_span(
    submission: SpanSubmission,
    trace_id: str,
    index: int,
    start_time: datetime,
    cost_model: CostModel,
    max_text_length: int = MAX_TEXT_LENGTH,
) -> Span:
    """Build a Span from a validated submission.

    Args:
        submission: Validated span submission
        trace_id: Owning trace identifier
        index: Position of the span within its trace
        start_time: Synthesized start of the span
        cost_model: Cost model used to price the call
        max_text_length: Cap for input and output text

    Returns:
        Fully populated Span
    """
    duration_ms = max(0, submission.duration_ms)
    prompt_tokens = max(0, submission.prompt_tokens)
    completion_tokens = max(0, submission.completion_tokens)

    return Span(
        span_id=str(uuid.uuid4()),
        trace_id=trace_id,
        parent_span_id=submission.parent_span_id or None,
        name=submission.name or f"span_{index}",
        model=submission.model or "",
        provider=submission.provider or "",
        input=truncate_text(submission.input or "", max_text_length),
        output=truncate_text(submission.output or "", max_text_length),
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        cost=cost_model.cost(submission.provider or "", submission.model or "", prompt_tokens, completion_tokens),
        status=submission.status or "",
        start_time=start_time,
        end_time=start_time + timedelta(milliseconds=duration_ms),
        duration_ms=duration_ms,
        error_message=submission.error_message or None,
        metadata=dict(submission.metadata),
    )


def enrich_spans(
    submissions: Sequence[SpanSubmission],
    trace_id: str,
    base_time: datetime,
    cost_model: CostModel,
    max_text_length: int = MAX_TEXT_LENGTH,
    span_gap_ms: int = DEFAULT_SPAN_GAP_MS,
) -> List[Span]:
    """Enrich spans laid out sequentially from base_time.

    The first span starts at base_time; each following span starts
    span_gap_ms after the previous one ends, so spans never overlap and
    the trace duration is the sum of span durations.
    """
    spans: List[Span] = []
    cursor = base_time
    for index, submission in enumerate(submissions):
        span = enrich_span(submission, trace_id, index, cursor, cost_model, max_text_length)
        spans.append(span)
        cursor = span.end_time + timedelta(milliseconds=span_gap_ms)
    return spans
