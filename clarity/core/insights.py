"""
Rule-based insights over aggregated statistics.

Each rule looks at the window's summary, cost breakdown and model usage and
contributes at most one finding. Rules are independent and additive.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from clarity.storage.models import CostBreakdownItem, MetricSummary, ModelUsage

HIGH_ERROR_RATE = 5.0
ELEVATED_ERROR_RATE = 1.0
COST_CONCENTRATION_PCT = 80.0
HIGH_P95_LATENCY_MS = 2000.0
HIGH_AVG_COST = 0.01
EXCELLENT_SUCCESS_RATE = 99.0
HIGH_MODEL_CALLS = 100
HIGH_TOKENS_PER_CALL = 2000.0
SINGLE_MODEL_MIN_CALLS = 50
DIVERSE_MODEL_COUNT = 3


class InsightType(Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class InsightSeverity(Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Insight:
    """Human-readable finding. Computed per request, never stored."""
    type: InsightType
    category: str
    title: str
    description: str
    severity: InsightSeverity


def _top_cost_item(items: Sequence[CostBreakdownItem]) -> Optional[CostBreakdownItem]:
    if not items:
        return None
    return min(items, key=lambda item: (-item.percentage, item.model))


def _most_used(usage: Sequence[ModelUsage]) -> Optional[ModelUsage]:
    if not usage:
        return None
    return min(usage, key=lambda u: (-u.call_count, u.model))


def generate_insights(
    summary: MetricSummary,
    cost_breakdown: Sequence[CostBreakdownItem],
    model_usage: Sequence[ModelUsage],
) -> List[Insight]:
    """Evaluate every rule and collect the findings.

    Rules:
    - Error rate above 5% (warning, high) or above 1% (info, medium)
    - Top model's share of cost above 80% (info, low)
    - P95 latency above 2000ms (warning, medium)
    - Average cost per request above $0.01 (info, low)
    - Success rate above 99% (success, info)
    - Most used model above 100 calls (info, info)
    - A model averaging above 2000 tokens per call (info, low), reported once
    - Exactly one model with more than 50 calls (info, low), or
      three or more models (success, info)

    Ties are broken by model name so the result does not depend on the
    order of the inputs.

    Args:
        summary: Aggregate statistics for the window
        cost_breakdown: Per-model cost with percentage shares
        model_usage: Per-model usage

    Returns:
        Insights in rule order (empty if nothing fired)
    """
    insights: List[Insight] = []

    # Reliability
    if summary.error_rate > HIGH_ERROR_RATE:
        insights.append(Insight(
            type=InsightType.WARNING,
            category="reliability",
            title="High Error Rate",
            description=f"Error rate is {summary.error_rate:.2f}%, which is above the recommended 5% threshold",
            severity=InsightSeverity.HIGH,
        ))
    elif summary.error_rate > ELEVATED_ERROR_RATE:
        insights.append(Insight(
            type=InsightType.INFO,
            category="reliability",
            title="Elevated Error Rate",
            description=f"Error rate is {summary.error_rate:.2f}%, consider investigating recent changes",
            severity=InsightSeverity.MEDIUM,
        ))

    top_cost = _top_cost_item(cost_breakdown)
    if top_cost is not None and top_cost.percentage > COST_CONCENTRATION_PCT:
        insights.append(Insight(
            type=InsightType.INFO,
            category="cost",
            title="Cost Concentration",
            description=(
                f"{top_cost.percentage:.1f}% of costs come from {top_cost.model}. "
                "Consider model optimization or caching"
            ),
            severity=InsightSeverity.LOW,
        ))

    if summary.p95_latency_ms > HIGH_P95_LATENCY_MS:
        insights.append(Insight(
            type=InsightType.WARNING,
            category="performance",
            title="High P95 Latency",
            description=f"P95 latency is {summary.p95_latency_ms:.0f}ms. Users may experience slow responses",
            severity=InsightSeverity.MEDIUM,
        ))

    if summary.avg_cost_per_request > HIGH_AVG_COST:
        insights.append(Insight(
            type=InsightType.INFO,
            category="cost",
            title="High Average Cost",
            description=(
                f"Average cost per request is ${summary.avg_cost_per_request:.4f}. "
                "Consider optimizing prompts or using cheaper models"
            ),
            severity=InsightSeverity.LOW,
        ))

    if summary.success_rate > EXCELLENT_SUCCESS_RATE:
        insights.append(Insight(
            type=InsightType.SUCCESS,
            category="reliability",
            title="Excellent Reliability",
            description=f"Success rate is {summary.success_rate:.2f}% - great job!",
            severity=InsightSeverity.INFO,
        ))

    most_used = _most_used(model_usage)
    if most_used is not None and most_used.call_count > HIGH_MODEL_CALLS:
        insights.append(Insight(
            type=InsightType.INFO,
            category="usage",
            title="High Model Usage",
            description=(
                f"{most_used.model} is your most used model with {most_used.call_count} calls. "
                "Ensure you're getting the best value"
            ),
            severity=InsightSeverity.INFO,
        ))

    # Only one token-efficiency finding: the heaviest model
    heavy = [
        (usage.total_tokens / usage.call_count, usage.model)
        for usage in model_usage
        if usage.call_count > 0 and usage.total_tokens / usage.call_count > HIGH_TOKENS_PER_CALL
    ]
    if heavy:
        avg_tokens, model = min(heavy, key=lambda pair: (-pair[0], pair[1]))
        insights.append(Insight(
            type=InsightType.INFO,
            category="efficiency",
            title="High Token Usage",
            description=f"{model} averages {avg_tokens:.0f} tokens per call. Consider prompt optimization",
            severity=InsightSeverity.LOW,
        ))

    if len(model_usage) == 1 and model_usage[0].call_count > SINGLE_MODEL_MIN_CALLS:
        insights.append(Insight(
            type=InsightType.INFO,
            category="optimization",
            title="Single Model Usage",
            description=(
                f"You're only using {model_usage[0].model}. "
                "Consider testing other models for cost/performance optimization"
            ),
            severity=InsightSeverity.LOW,
        ))
    elif len({usage.model for usage in model_usage}) >= DIVERSE_MODEL_COUNT:
        insights.append(Insight(
            type=InsightType.SUCCESS,
            category="optimization",
            title="Good Model Diversity",
            description=(
                f"Using {len({usage.model for usage in model_usage})} different models - "
                "great job optimizing for different use cases!"
            ),
            severity=InsightSeverity.INFO,
        ))

    return insights
