"""
Pricing calculations and model family resolution.

Costs are estimates for display only; they are keyed by model family
rather than by exact model identifier.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Tuple

from .clock import Clock, SystemClock
from .token_counter import TokenUsage


class ModelFamily(Enum):
    """Coarse model classification driving cost-rate lookup."""
    OPUS = "opus"
    SONNET = "sonnet"
    HAIKU = "haiku"
    UNKNOWN = "unknown"


# Substring checks run in this order; the first match wins.
_FAMILY_PRECEDENCE = (ModelFamily.OPUS, ModelFamily.SONNET, ModelFamily.HAIKU)


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a model family."""
    input_cost_per_mtok: float  # Cost per million input tokens
    output_cost_per_mtok: float  # Cost per million output tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table keyed by model family."""
    prices: Dict[ModelFamily, ModelPricing]

    def get_pricing(self, family: ModelFamily) -> ModelPricing:
        """Get pricing for a model family.

        Unknown families are priced like Sonnet.
        """
        if family in self.prices:
            return self.prices[family]
        return self.prices[ModelFamily.SONNET]


PRICING_TABLE = PricingTable({
    ModelFamily.OPUS: ModelPricing(input_cost_per_mtok=15.0, output_cost_per_mtok=75.0),
    ModelFamily.SONNET: ModelPricing(input_cost_per_mtok=3.0, output_cost_per_mtok=15.0),
    ModelFamily.HAIKU: ModelPricing(input_cost_per_mtok=1.0, output_cost_per_mtok=5.0),
    ModelFamily.UNKNOWN: ModelPricing(input_cost_per_mtok=3.0, output_cost_per_mtok=15.0),
})


def classify_model(model: Optional[str]) -> ModelFamily:
    """Map a free-form model identifier to its family.

    Matching is a case-insensitive substring test in the order opus,
    sonnet, haiku. Anything else, including a missing identifier, is
    UNKNOWN.
    """
    if not model:
        return ModelFamily.UNKNOWN
    lower = model.lower()
    for family in _FAMILY_PRECEDENCE:
        if family.value in lower:
            return family
    return ModelFamily.UNKNOWN


class ModelFamilyResolver:
    """Memoizes model identifier to family lookups.

    Entries expire after ``ttl`` and the whole cache can be dropped with
    :meth:`invalidate`. Each aggregator owns its own resolver, so there is
    no process-wide state.
    """

    def __init__(self, ttl: timedelta = timedelta(minutes=10), clock: Optional[Clock] = None):
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock or SystemClock()
        self._cache: Dict[str, Tuple[ModelFamily, datetime]] = {}

    def resolve(self, model: Optional[str]) -> ModelFamily:
        if not model:
            return ModelFamily.UNKNOWN

        now = self._clock.now()
        cached = self._cache.get(model)
        if cached is not None and now - cached[1] <= self.ttl:
            return cached[0]

        family = classify_model(model)
        self._cache[model] = (family, now)
        return family

    def invalidate(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    pricing: ModelPricing,
) -> float:
    """Estimated cost of a token count at the given per-million rates."""
    return (
        (input_tokens / 1_000_000) * pricing.input_cost_per_mtok
        + (output_tokens / 1_000_000) * pricing.output_cost_per_mtok
    )


def calculate_usage_cost(
    family: ModelFamily,
    usage: TokenUsage,
    table: PricingTable = PRICING_TABLE,
) -> float:
    """Estimated cost of a single response for the given model family."""
    return calculate_cost(usage.input_tokens, usage.output_tokens, table.get_pricing(family))
