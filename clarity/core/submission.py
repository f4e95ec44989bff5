"""
Raw trace submissions.

These are the unvalidated inputs to ingestion, as decoded from the
instrumented application's payload.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from clarity.errors import ValidationError


@dataclass(frozen=True)
class SpanSubmission:
    """One model call as reported by the client.

    Only a duration is reported; wall-clock bounds are synthesized during
    enrichment.
    """
    model: Optional[str] = None
    provider: Optional[str] = None
    input: Optional[str] = None
    output: Optional[str] = None
    status: Optional[str] = None
    name: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    duration_ms: int = 0
    parent_span_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], path: str = "span") -> "SpanSubmission":
        """Build a span submission from decoded JSON.

        Raises:
            ValidationError: If a field has the wrong type
        """
        if not isinstance(data, Mapping):
            raise ValidationError(f"{path} must be an object", field=path)
        return cls(
            model=_optional_str(data, "model", path),
            provider=_optional_str(data, "provider", path),
            input=_optional_str(data, "input", path),
            output=_optional_str(data, "output", path),
            status=_optional_str(data, "status", path),
            name=_optional_str(data, "name", path) or "",
            prompt_tokens=_int(data, "prompt_tokens", path),
            completion_tokens=_int(data, "completion_tokens", path),
            duration_ms=_int(data, "duration_ms", path),
            parent_span_id=_optional_str(data, "parent_span_id", path),
            error_message=_optional_str(data, "error_message", path),
            metadata=_metadata(data, path),
        )


@dataclass(frozen=True)
class TraceSubmission:
    """One trace as reported by the client, spans in submission order."""
    organization_id: Optional[str] = None
    trace_type: Optional[str] = None
    spans: List[SpanSubmission] = field(default_factory=list)
    project_id: Optional[str] = None
    model: Optional[str] = None
    provider: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TraceSubmission":
        """Build a trace submission from decoded JSON.

        Raises:
            ValidationError: If a field has the wrong type
        """
        if not isinstance(data, Mapping):
            raise ValidationError("trace must be an object", field="trace")
        raw_spans = data.get("spans") or []
        if not isinstance(raw_spans, list):
            raise ValidationError("spans must be a list", field="spans")
        return cls(
            organization_id=_optional_str(data, "organization_id", "trace"),
            trace_type=_optional_str(data, "trace_type", "trace"),
            spans=[SpanSubmission.from_dict(span, f"spans[{i}]") for i, span in enumerate(raw_spans)],
            project_id=_optional_str(data, "project_id", "trace"),
            model=_optional_str(data, "model", "trace"),
            provider=_optional_str(data, "provider", "trace"),
            user_id=_optional_str(data, "user_id", "trace"),
            metadata=_metadata(data, "trace"),
        )


def _optional_str(data: Mapping[str, Any], key: str, path: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{path}.{key} must be a string", field=f"{path}.{key}")
    return value


def _int(data: Mapping[str, Any], key: str, path: str) -> int:
    value = data.get(key, 0)
    if value is None:
        return 0
    # bool is an int subclass; reject it explicitly
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or int(value) != value
    ):
        raise ValidationError(f"{path}.{key} must be an integer", field=f"{path}.{key}")
    return int(value)


def _metadata(data: Mapping[str, Any], path: str) -> Dict[str, str]:
    value = data.get("metadata") or {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"{path}.metadata must be an object", field=f"{path}.metadata")
    return {str(k): str(v) for k, v in value.items()}
