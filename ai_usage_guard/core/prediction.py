"""
Limit prediction.

Projects when the rolling window and weekly ceilings will be reached if
the current burn rate holds. The result is a closed sum type: either a
prediction with both instants, or the reason no prediction is possible.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import ClassVar, Optional, Union

from ai_usage_guard.config.plans import PlanLimits, PlanType, resolve_plan_limits

from .clock import ensure_utc
from .rate import UsageRate


class PredictionFailureReason(Enum):
    """Why a prediction could not be made."""
    NO_RECENT_USAGE = "no_recent_usage"  # Burn rate is zero
    ALREADY_AT_LIMIT = "already_at_limit"  # A ceiling is already reached


@dataclass(frozen=True)
class LimitForecast:
    """Projected instants at which each ceiling is reached."""
    session_limit_at: datetime
    weekly_limit_at: datetime
    time_to_session_limit: timedelta
    time_to_weekly_limit: timedelta

    can_predict: ClassVar[bool] = True


@dataclass(frozen=True)
class PredictionUnavailable:
    """No projection; ``reason`` says why."""
    reason: PredictionFailureReason

    can_predict: ClassVar[bool] = False


LimitPrediction = Union[LimitForecast, PredictionUnavailable]


def get_remaining_tokens(current_percent: float, limit_tokens: int) -> float:
    """Tokens left before ``limit_tokens`` at ``current_percent`` used. Never negative."""
    remaining_percent = max(0.0, 100.0 - current_percent)
    return remaining_percent / 100 * limit_tokens


def estimate_time_to_limit(remaining_tokens: float, tokens_per_hour: float) -> Optional[timedelta]:
    """Time to burn ``remaining_tokens`` at ``tokens_per_hour``; None when the rate is not positive."""
    if tokens_per_hour <= 0:
        return None
    return timedelta(hours=remaining_tokens / tokens_per_hour)


def predict(
    rate: UsageRate,
    session_percent: float,
    weekly_percent: float,
    plan: Union[PlanType, PlanLimits, str],
    now: datetime,
) -> LimitPrediction:
    """Project when each limit will be hit at the current burn rate.

    Checks run in order: a non-positive rate gives NO_RECENT_USAGE, then
    either percentage at or above 100 gives ALREADY_AT_LIMIT. Otherwise
    both projections are returned together.

    Args:
        rate: Current burn rate
        session_percent: Rolling window usage percentage
        weekly_percent: Weekly usage percentage
        plan: Plan tier (or explicit limits) providing the ceilings
        now: Instant the projections are measured from

    Returns:
        LimitForecast or PredictionUnavailable
    """
    if rate.tokens_per_hour <= 0:
        return PredictionUnavailable(PredictionFailureReason.NO_RECENT_USAGE)

    if session_percent >= 100 or weekly_percent >= 100:
        return PredictionUnavailable(PredictionFailureReason.ALREADY_AT_LIMIT)

    limits = resolve_plan_limits(plan)
    now = ensure_utc(now)

    session_remaining = get_remaining_tokens(session_percent, limits.window_tokens)
    weekly_remaining = get_remaining_tokens(weekly_percent, limits.weekly_tokens)

    time_to_session = estimate_time_to_limit(session_remaining, rate.tokens_per_hour)
    time_to_weekly = estimate_time_to_limit(weekly_remaining, rate.tokens_per_hour)

    return LimitForecast(
        session_limit_at=now + time_to_session,
        weekly_limit_at=now + time_to_weekly,
        time_to_session_limit=time_to_session,
        time_to_weekly_limit=time_to_weekly,
    )
