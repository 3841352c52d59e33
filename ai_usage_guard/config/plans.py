"""
Subscription plan tiers and their usage ceilings.

Ceilings are static: they are selected by configuration and never
mutated at runtime.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Dict, Union


# Rough token throughput of one hour of active use; converts the weekly
# hour allowance into a token ceiling.
TOKENS_PER_HOUR_ESTIMATE = 50_000

# Length of the rolling session window.
WINDOW_DURATION = timedelta(hours=5)


class PlanType(Enum):
    """Subscription tiers."""
    PRO = "pro"
    MAX5 = "max5"
    MAX20 = "max20"


@dataclass(frozen=True)
class PlanLimits:
    """Usage ceilings for a single plan tier."""
    window_tokens: int  # Rolling 5-hour window ceiling
    weekly_hours: int  # Weekly allowance in hours of use

    def __post_init__(self):
        """Validate ceilings are positive."""
        if self.window_tokens <= 0:
            raise ValueError("window_tokens must be > 0")
        if self.weekly_hours <= 0:
            raise ValueError("weekly_hours must be > 0")

    @property
    def weekly_tokens(self) -> int:
        """Weekly ceiling expressed in tokens."""
        return self.weekly_hours * TOKENS_PER_HOUR_ESTIMATE


PLAN_LIMITS: Dict[PlanType, PlanLimits] = {
    PlanType.PRO: PlanLimits(window_tokens=500_000, weekly_hours=60),
    PlanType.MAX5: PlanLimits(window_tokens=2_500_000, weekly_hours=210),
    PlanType.MAX20: PlanLimits(window_tokens=10_000_000, weekly_hours=360),
}


def parse_plan_type(value: str) -> PlanType:
    """Convert a plan name such as ``"max5"`` into a PlanType.

    Raises:
        ValueError: If the name is not a known tier
    """
    try:
        return PlanType(value.strip().lower())
    except ValueError:
        valid_plans = [plan.value for plan in PlanType]
        raise ValueError(f"Unknown plan '{value}', must be one of: {valid_plans}")


def resolve_plan_limits(plan: Union[PlanType, PlanLimits, str]) -> PlanLimits:
    """Return the ceilings for a plan given as a tier, a tier name or explicit limits."""
    if isinstance(plan, PlanLimits):
        return plan
    if isinstance(plan, str):
        plan = parse_plan_type(plan)
    return PLAN_LIMITS[plan]
