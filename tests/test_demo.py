"""
Tests for demo trace generation.
"""

import os
import tempfile

from clarity.core.dispatch import SideEffectDispatcher
from clarity.demo.seed_demo_data import build_demo_submissions, seed_demo_traces
from clarity.services.trace_service import TraceService
from clarity.storage.models import TraceQuery
from clarity.storage.repository import SQLiteTraceRepository, initialize_schema


class TestDemoData:
    """Test demo submissions are valid and reproducible."""

    def test_seeded_generation_is_deterministic(self):
        first = build_demo_submissions("org-1", count=10, seed=42)
        second = build_demo_submissions("org-1", count=10, seed=42)
        assert first == second
        assert len(first) == 10

    def test_trace_type_matches_span_count(self):
        for submission in build_demo_submissions("org-1", count=30, seed=1):
            expected = "single_call" if len(submission.spans) == 1 else "multi_step"
            assert submission.trace_type == expected

    def test_all_demo_traces_are_accepted(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "demo.db")
            initialize_schema(db_path)
            repo = SQLiteTraceRepository(db_path)
            with SideEffectDispatcher(workers=1) as dispatcher:
                result = seed_demo_traces(TraceService(repo, dispatcher=dispatcher), "org-1", count=25, seed=3)
            assert result.accepted == 25
            assert result.rejected == 0
            assert repo.get_trace_count(TraceQuery(organization_id="org-1")) == 25
