"""
Unit tests for building submissions from decoded JSON.
"""

import pytest

from clarity.core.submission import SpanSubmission, TraceSubmission
from clarity.errors import ValidationError


class TestTraceSubmissionFromDict:
    """Test parsing and type checks."""

    def test_full_payload(self):
        submission = TraceSubmission.from_dict({
            "organization_id": "org-1",
            "project_id": "proj-1",
            "trace_type": "multi_step",
            "user_id": "user-9",
            "metadata": {"env": "prod", "version": 3},
            "spans": [
                {"model": "gpt-4", "provider": "openai", "input": "q", "output": "a",
                 "status": "success", "prompt_tokens": 10, "completion_tokens": 5, "duration_ms": 120},
            ],
        })
        assert submission.organization_id == "org-1"
        assert submission.metadata == {"env": "prod", "version": "3"}
        assert submission.spans[0].prompt_tokens == 10
        assert submission.spans[0].duration_ms == 120

    def test_missing_fields_are_none(self):
        span = SpanSubmission.from_dict({})
        assert span.model is None
        assert span.input is None
        assert span.prompt_tokens == 0

    def test_wrong_type_names_field(self):
        with pytest.raises(ValidationError, match=r"spans\[1\].prompt_tokens must be an integer"):
            TraceSubmission.from_dict({"spans": [{}, {"prompt_tokens": "many"}]})

    def test_bool_is_not_an_integer(self):
        with pytest.raises(ValidationError):
            SpanSubmission.from_dict({"duration_ms": True})

    def test_spans_must_be_a_list(self):
        with pytest.raises(ValidationError, match="spans must be a list"):
            TraceSubmission.from_dict({"spans": {"model": "gpt-4"}})

    def test_non_object_rejected(self):
        with pytest.raises(ValidationError):
            TraceSubmission.from_dict(["not", "an", "object"])

    @pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_number_rejected(self, value):
        with pytest.raises(ValidationError, match=r"spans\[0\].prompt_tokens must be an integer"):
            TraceSubmission.from_dict({"spans": [{"prompt_tokens": value}]})
