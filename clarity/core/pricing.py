"""
Pricing calculations and rate management.

Rates are expressed in USD per 1,000 tokens. The pricing table is an
immutable object built once and handed to a CostModel; nothing here is
module-level mutable state.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_UP
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from .token_counter import TokenUsage

logger = logging.getLogger(__name__)

TOKENS_PER_UNIT = Decimal("1000")
COST_QUANTUM = Decimal("0.00000001")


class FallbackPolicy(Enum):
    """What to charge for a (provider, model) pair missing from the table."""
    DEFAULT_RATE = "default_rate"  # Flat low rate, never free
    ZERO = "zero"                  # Unknown models cost nothing


@dataclass(frozen=True)
class ModelPricing:
    """Rates per 1K tokens for a specific model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens

    def __post_init__(self):
        """Validate rates are not negative."""
        if self.prompt_cost_per_1k < 0:
            raise ValueError("prompt_cost_per_1k cannot be negative")
        if self.completion_cost_per_1k < 0:
            raise ValueError("completion_cost_per_1k cannot be negative")

    @classmethod
    def of(cls, prompt: object, completion: object) -> "ModelPricing":
        """Build pricing from plain numbers or strings."""
        return cls(
            prompt_cost_per_1k=Decimal(str(prompt)),
            completion_cost_per_1k=Decimal(str(completion)),
        )


DEFAULT_FALLBACK_PRICING = ModelPricing.of("0.01", "0.03")


def _key(provider: str, model: str) -> Tuple[str, str]:
    return ((provider or "").strip().lower(), (model or "").strip().lower())


@dataclass(frozen=True)
class PricingTable:
    """Immutable pricing table keyed by (provider, model).

    Lookups are case-insensitive. The fallback policy decides what an
    unknown pair costs; it is part of the table so a single object fully
    describes pricing.
    """
    prices: Mapping[Tuple[str, str], ModelPricing]
    fallback_policy: FallbackPolicy = FallbackPolicy.DEFAULT_RATE
    fallback_pricing: ModelPricing = DEFAULT_FALLBACK_PRICING

    def __post_init__(self):
        normalized = {_key(provider, model): pricing for (provider, model), pricing in self.prices.items()}
        object.__setattr__(self, "prices", MappingProxyType(normalized))

    @classmethod
    def from_nested(
        cls,
        models: Mapping[str, Mapping[str, ModelPricing]],
        fallback_policy: FallbackPolicy = FallbackPolicy.DEFAULT_RATE,
        fallback_pricing: ModelPricing = DEFAULT_FALLBACK_PRICING,
    ) -> "PricingTable":
        """Build a table from a {provider: {model: pricing}} mapping."""
        prices: Dict[Tuple[str, str], ModelPricing] = {}
        for provider, provider_models in models.items():
            for model, pricing in provider_models.items():
                prices[(provider, model)] = pricing
        return cls(prices=prices, fallback_policy=fallback_policy, fallback_pricing=fallback_pricing)

    def get_pricing(self, provider: str, model: str) -> Optional[ModelPricing]:
        """Get pricing for a (provider, model) pair, or None if unknown."""
        return self.prices.get(_key(provider, model))

    def __contains__(self, item: Tuple[str, str]) -> bool:
        return _key(*item) in self.prices


def default_pricing_table(
    fallback_policy: FallbackPolicy = FallbackPolicy.DEFAULT_RATE,
) -> PricingTable:
    """Build the built-in pricing table (USD per 1K tokens)."""
    return PricingTable.from_nested(
        {
            "openai": {
                "gpt-4": ModelPricing.of("0.03", "0.06"),
                "gpt-4-turbo": ModelPricing.of("0.01", "0.03"),
                "gpt-3.5-turbo": ModelPricing.of("0.0005", "0.0015"),
            },
            "anthropic": {
                "claude-3-opus": ModelPricing.of("0.015", "0.075"),
                "claude-3-sonnet": ModelPricing.of("0.003", "0.015"),
                "claude-3-haiku": ModelPricing.of("0.00025", "0.00125"),
            },
            "cohere": {
                "command": ModelPricing.of("0.001", "0.002"),
            },
        },
        fallback_policy=fallback_policy,
    )


@dataclass(frozen=True)
class CostModel:
    """Computes the USD cost of a model call from an injected pricing table.

    Never raises: unknown pairs are priced by the table's fallback policy and
    negative token counts are treated as zero.
    """
    table: PricingTable = field(default_factory=default_pricing_table)

    def cost(self, provider: str, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        """Calculate cost for one call.

        Args:
            provider: Provider identifier (e.g. "openai")
            model: Model identifier
            prompt_tokens: Prompt token count
            completion_tokens: Completion token count

        Returns:
            Cost in USD, rounded UP to 8 decimal places
        """
        return calculate_cost(self.table, provider, model, TokenUsage.clamped(prompt_tokens, completion_tokens))


def calculate_cost(table: PricingTable, provider: str, model: str, usage: TokenUsage) -> float:
    """Calculate total cost for model usage with conservative rounding.

    Args:
        table: Pricing table to price against
        provider: Provider identifier
        model: Model identifier
        usage: Token usage data

    Returns:
        Total cost rounded UP to 8 decimal places
    """
    pricing = table.get_pricing(provider, model)
    if pricing is None:
        if table.fallback_policy == FallbackPolicy.ZERO:
            logger.debug("No pricing for %s/%s, charging zero", provider, model)
            return 0.0
        logger.debug("No pricing for %s/%s, using fallback rate", provider, model)
        pricing = table.fallback_pricing

    # (tokens / 1000) * cost_per_1k, for each side
    prompt_cost = (Decimal(usage.prompt_tokens) / TOKENS_PER_UNIT) * pricing.prompt_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / TOKENS_PER_UNIT) * pricing.completion_cost_per_1k

    total_cost = prompt_cost + completion_cost
    return float(total_cost.quantize(COST_QUANTUM, rounding=ROUND_UP))
