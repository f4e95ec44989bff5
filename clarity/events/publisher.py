"""
Event publisher contract and a logging-backed implementation.

Ingestion publishes ``trace.created`` and ``span.created`` events after a
trace is persisted. Publishing is best-effort: no acknowledgement is awaited
and callers never see publication failures.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger(__name__)

TRACE_CREATED = "trace.created"
SPAN_CREATED = "span.created"


@dataclass(frozen=True)
class Event:
    """A lifecycle event with its payload."""
    type: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return json.dumps(payload, sort_keys=True)


class EventPublisher(ABC):
    """Destination for lifecycle events.

    Subclasses implement publish_event; the typed helpers build payloads.
    """

    @abstractmethod
    def publish_event(self, event: Event) -> None:
        """Deliver one event."""

    def publish_trace_created(
        self,
        trace_id: str,
        organization_id: str,
        project_id: str,
        model: str,
        provider: str,
        tokens: int,
        cost: float,
    ) -> None:
        self.publish_event(Event(
            type=TRACE_CREATED,
            data={
                "trace_id": trace_id,
                "organization_id": organization_id,
                "project_id": project_id,
                "model": model,
                "provider": provider,
                "total_tokens": tokens,
                "total_cost_usd": cost,
            },
        ))

    def publish_span_created(self, span_id: str, trace_id: str, duration_ms: int, tokens: int) -> None:
        self.publish_event(Event(
            type=SPAN_CREATED,
            data={
                "span_id": span_id,
                "trace_id": trace_id,
                "duration_ms": duration_ms,
                "total_tokens": tokens,
            },
        ))


class LoggingEventPublisher(EventPublisher):
    """Writes each event as a JSON line to a logger."""

    def __init__(self, logger_name: str = "clarity.events", level: int = logging.INFO):
        self._logger = logging.getLogger(logger_name)
        self._level = level

    def publish_event(self, event: Event) -> None:
        self._logger.log(self._level, "%s", event.to_json())
