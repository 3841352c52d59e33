"""
Limit state tracking from live remote utilization.

Decides whether the user is currently blocked by a limit, when that
limit resets, and whether polling should stay paused.

Check Order:
1. Rolling session window
2. Weekly window, all models
3. Weekly window, Sonnet only

The first breached limit with a known reset instant wins.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Mapping, Optional, Union

from .clock import Clock, SystemClock, ensure_utc, parse_iso_timestamp

logger = logging.getLogger(__name__)

DEFAULT_WEEKLY_ALERT_THRESHOLD = 90.0


class LimitKind(Enum):
    """Which limit was breached."""
    SESSION = "session"
    WEEKLY_ALL = "weeklyAll"
    WEEKLY_SONNET = "weeklySonnet"


@dataclass(frozen=True)
class LimitWindow:
    """Utilization of one remote limit window."""
    utilization: float  # Percentage, may exceed 100
    resets_at: Optional[datetime] = None


@dataclass(frozen=True)
class RemoteUsage:
    """Snapshot of live utilization reported by the usage API."""
    session: LimitWindow
    weekly_all: LimitWindow
    weekly_sonnet: Optional[LimitWindow] = None


@dataclass(frozen=True)
class LimitReset:
    """A breached limit and the instant it resets."""
    kind: LimitKind
    reset_at: datetime


def _parse_window(raw: Any) -> Optional[LimitWindow]:
    if not isinstance(raw, Mapping):
        return None
    utilization = raw.get("utilization")
    if isinstance(utilization, bool) or not isinstance(utilization, (int, float)):
        utilization = 0.0
    return LimitWindow(
        utilization=float(utilization),
        resets_at=parse_iso_timestamp(raw.get("resets_at")),
    )


def parse_usage_response(payload: Mapping[str, Any]) -> RemoteUsage:
    """Convert a usage API response into a RemoteUsage snapshot.

    Missing session or weekly windows read as zero utilization with no
    reset. A missing Sonnet window stays None: it is treated as not
    breached rather than unknown.
    """
    empty = LimitWindow(utilization=0.0)
    return RemoteUsage(
        session=_parse_window(payload.get("five_hour")) or empty,
        weekly_all=_parse_window(payload.get("seven_day")) or empty,
        weekly_sonnet=_parse_window(payload.get("seven_day_sonnet")),
    )


def get_limit_reset(data: Optional[RemoteUsage]) -> Optional[LimitReset]:
    """Return the first breached limit that has a known reset instant.

    A limit at 100% or more without a reset instant does not count: there
    would be no way to know when to resume.
    """
    if data is None:
        return None

    candidates = (
        (LimitKind.SESSION, data.session),
        (LimitKind.WEEKLY_ALL, data.weekly_all),
        (LimitKind.WEEKLY_SONNET, data.weekly_sonnet),
    )
    for kind, window in candidates:
        if window is None:
            continue
        if window.utilization >= 100 and window.resets_at is not None:
            return LimitReset(kind=kind, reset_at=window.resets_at)
    return None


def should_remain_paused(limit: Optional[LimitReset], now: datetime) -> bool:
    """True while ``now`` is before the held reset instant."""
    return limit is not None and limit.reset_at > ensure_utc(now)


def compute_resume_delay(limit: LimitReset, now: datetime) -> timedelta:
    """Time left until ``limit`` resets; never negative."""
    return max(timedelta(0), limit.reset_at - ensure_utc(now))


def should_highlight_weekly(
    data: Optional[RemoteUsage],
    threshold: float = DEFAULT_WEEKLY_ALERT_THRESHOLD,
) -> bool:
    """Whether weekly utilization is high enough to call out.

    Only applies when the weekly window reports a reset instant.
    """
    if data is None or data.weekly_all.resets_at is None:
        return False
    return data.weekly_all.utilization >= threshold


@dataclass(frozen=True)
class Normal:
    """Polling proceeds on schedule."""
    paused: ClassVar[bool] = False


@dataclass(frozen=True)
class Paused:
    """A limit was hit; no polling until ``reset.reset_at``."""
    reset: LimitReset

    paused: ClassVar[bool] = True


LimitState = Union[Normal, Paused]


class LimitStateMachine:
    """Normal / Paused state driven by remote snapshots and the clock.

    Transitions:
    - Normal -> Paused: a snapshot reports a breached limit whose reset
      instant is still in the future.
    - Paused -> Normal: the clock passes the held reset instant.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._state: LimitState = Normal()

    @property
    def state(self) -> LimitState:
        return self._state

    @property
    def is_paused(self) -> bool:
        return self._state.paused

    @property
    def held_reset(self) -> Optional[LimitReset]:
        if isinstance(self._state, Paused):
            return self._state.reset
        return None

    def tick(self) -> LimitState:
        """Resume if the held reset instant has passed."""
        if isinstance(self._state, Paused) and not should_remain_paused(
            self._state.reset, self.clock.now()
        ):
            logger.info(
                "%s limit reset at %s, resuming",
                self._state.reset.kind.value, self._state.reset.reset_at.isoformat(),
            )
            self._state = Normal()
        return self._state

    def observe(self, data: Optional[RemoteUsage]) -> LimitState:
        """Feed a fresh snapshot and return the resulting state.

        While a held reset is still in the future the snapshot is ignored.
        """
        if self.tick().paused:
            return self._state

        reset = get_limit_reset(data)
        if reset is not None and should_remain_paused(reset, self.clock.now()):
            logger.info(
                "%s limit reached, pausing until %s",
                reset.kind.value, reset.reset_at.isoformat(),
            )
            self._state = Paused(reset)
        return self._state

    def resume_delay(self) -> Optional[timedelta]:
        """Time until the held reset instant, or None when not paused."""
        reset = self.held_reset
        if reset is None:
            return None
        return compute_resume_delay(reset, self.clock.now())
