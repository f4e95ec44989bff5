"""
Demo trace generation.

Feeds a mix of single-call and multi-step traces through the normal
ingestion path so the analytics commands have something to show.
"""

import random
from typing import List, Optional

from clarity.core.submission import SpanSubmission, TraceSubmission
from clarity.services.trace_service import BatchResult, TraceService

DEMO_MODELS = [
    ("openai", "gpt-4"),
    ("openai", "gpt-3.5-turbo"),
    ("anthropic", "claude-3-sonnet"),
    ("anthropic", "claude-3-haiku"),
]

DEMO_PROMPTS = [
    "Summarize the attached support ticket",
    "Classify the sentiment of this review",
    "Draft a reply to the customer",
    "Extract action items from the meeting notes",
]


def build_demo_submissions(
    organization_id: str,
    count: int = 50,
    project_id: Optional[str] = None,
    seed: Optional[int] = None,
) -> List[TraceSubmission]:
    """Build random but plausible trace submissions.

    Roughly one span in twenty fails and one in fifty times out.
    """
    rng = random.Random(seed)
    submissions = []
    for _ in range(count):
        span_count = 1 if rng.random() < 0.6 else rng.randint(2, 4)
        spans = []
        for _ in range(span_count):
            provider, model = rng.choice(DEMO_MODELS)
            roll = rng.random()
            status = "error" if roll < 0.05 else "timeout" if roll < 0.07 else "success"
            spans.append(SpanSubmission(
                model=model,
                provider=provider,
                input=rng.choice(DEMO_PROMPTS),
                output="" if status != "success" else "Done.",
                status=status,
                prompt_tokens=rng.randint(100, 3000),
                completion_tokens=rng.randint(20, 800),
                duration_ms=rng.randint(150, 2500),
                error_message="upstream error" if status == "error" else None,
            ))
        submissions.append(TraceSubmission(
            organization_id=organization_id,
            project_id=project_id,
            trace_type="single_call" if span_count == 1 else "multi_step",
            spans=spans,
        ))
    return submissions


def seed_demo_traces(
    service: TraceService,
    organization_id: str,
    count: int = 50,
    project_id: Optional[str] = None,
    seed: Optional[int] = None,
) -> BatchResult:
    """Ingest demo traces through the service."""
    return service.create_batch(build_demo_submissions(organization_id, count, project_id, seed))
