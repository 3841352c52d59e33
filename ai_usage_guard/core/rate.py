"""
Burn rate estimation.

Velocity input for limit prediction: tokens per hour over a short
trailing sample.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from ai_usage_guard.storage.models import UsageEvent

from .clock import ensure_utc

DEFAULT_SAMPLE_WINDOW = timedelta(hours=1)


@dataclass(frozen=True)
class UsageRate:
    """Tokens consumed per hour over a trailing sample.

    A zero rate is a valid result meaning "no activity in the sample".
    """
    tokens_per_hour: float
    sample_window: timedelta
    sample_tokens: int


def estimate_rate(
    events: Iterable[UsageEvent],
    now: datetime,
    sample_window: timedelta = DEFAULT_SAMPLE_WINDOW,
) -> UsageRate:
    """Estimate tokens per hour from events in ``[now - sample_window, now]``.

    The rate is measured over the span actually covered by the sample,
    from the oldest qualifying event to ``now``, not over the nominal
    window. Activity packed into the last few minutes therefore shows as
    a high rate instead of being diluted across the full hour.

    Args:
        events: Parsed usage events
        now: End of the sample
        sample_window: How far back to look

    Returns:
        UsageRate; tokens_per_hour is 0 when the sample is empty or spans
        no time
    """
    now = ensure_utc(now)
    window_start = now - sample_window
    sample_tokens = 0
    oldest = now

    for event in events:
        ts = event.timestamp
        if ts < window_start or ts > now:
            continue
        sample_tokens += event.total_tokens
        if ts < oldest:
            oldest = ts

    if sample_tokens == 0:
        return UsageRate(tokens_per_hour=0.0, sample_window=sample_window, sample_tokens=0)

    elapsed_seconds = (now - oldest).total_seconds()
    tokens_per_hour = sample_tokens / elapsed_seconds * 3600 if elapsed_seconds > 0 else 0.0

    return UsageRate(
        tokens_per_hour=tokens_per_hour,
        sample_window=sample_window,
        sample_tokens=sample_tokens,
    )
