"""
Polling control around the limit state machine.

The polling loop itself belongs to the caller. This module answers "should
I poll now?" and "when should I wake next?" and makes sure no request is
issued while a limit is in force. Time comes from an injected clock, so a
test can drive the whole pause/resume cycle by advancing a ManualClock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, ClassVar, Optional, Union

from .clock import Clock, SystemClock
from .limits import LimitState, LimitStateMachine, RemoteUsage

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = timedelta(seconds=30)
DEFAULT_RESUME_MARGIN = timedelta(seconds=1)


class FetchStatus(Enum):
    """Outcome of a remote usage fetch."""
    SUCCESS = "success"
    NO_TOKEN = "no_token"
    ERROR = "error"


@dataclass(frozen=True)
class FetchSuccess:
    data: RemoteUsage

    status: ClassVar[FetchStatus] = FetchStatus.SUCCESS


@dataclass(frozen=True)
class FetchNoToken:
    """No credentials were available, so nothing was requested."""

    status: ClassVar[FetchStatus] = FetchStatus.NO_TOKEN


@dataclass(frozen=True)
class FetchError:
    message: str

    status: ClassVar[FetchStatus] = FetchStatus.ERROR


FetchResult = Union[FetchSuccess, FetchNoToken, FetchError]


@dataclass(frozen=True)
class PollOutcome:
    """What a poll attempt did."""
    state: LimitState
    fetched: bool  # False when the attempt was suppressed by a pause
    result: Optional[FetchResult] = None  # Latest fetch result, possibly from an earlier poll


class PollingController:
    """Gatekeeper between a polling scheduler and the remote fetcher.

    - While paused, neither scheduled nor manual polls reach the fetcher.
    - Once the held reset instant (plus a small margin) passes, the next
      :meth:`run_pending` call resumes and fetches immediately instead of
      waiting a full interval.
    """

    def __init__(
        self,
        fetcher: Callable[[], FetchResult],
        clock: Optional[Clock] = None,
        interval: timedelta = DEFAULT_REFRESH_INTERVAL,
        resume_margin: timedelta = DEFAULT_RESUME_MARGIN,
        state_machine: Optional[LimitStateMachine] = None,
    ):
        """Initialize the controller.

        Args:
            fetcher: Callable returning the latest remote usage fetch result
            clock: Time source, defaults to the system clock
            interval: Time between scheduled polls in the Normal state
            resume_margin: Extra wait after a reset instant before resuming
            state_machine: Existing state machine to drive; one is created
                on the same clock when omitted
        """
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        if resume_margin < timedelta(0):
            raise ValueError("resume_margin cannot be negative")
        self.fetcher = fetcher
        self.clock = clock or SystemClock()
        self.interval = interval
        self.resume_margin = resume_margin
        self.state_machine = state_machine or LimitStateMachine(self.clock)
        self.last_result: Optional[FetchResult] = None
        self.last_poll_at: Optional[datetime] = None
        self.fetch_count = 0

    @property
    def state(self) -> LimitState:
        return self.state_machine.state

    def poll(self) -> PollOutcome:
        """Scheduled poll: fetch unless a limit is still in force."""
        state = self.state_machine.tick()
        if state.paused:
            logger.debug("Poll skipped, paused until %s", state.reset.reset_at.isoformat())
            return PollOutcome(state=state, fetched=False, result=self.last_result)
        return self._fetch()

    def refresh(self) -> PollOutcome:
        """Manual refresh. While paused this only re-reports the held reset."""
        return self.poll()

    def next_poll_at(self, now: Optional[datetime] = None) -> datetime:
        """Instant at which the scheduler should next call :meth:`run_pending`.

        A controller that has never polled is due at ``now``, which
        defaults to the current clock reading.
        """
        reset = self.state_machine.held_reset
        if reset is not None:
            return reset.reset_at + self.resume_margin
        if self.last_poll_at is None:
            return now if now is not None else self.clock.now()
        return self.last_poll_at + self.interval

    def run_pending(self) -> Optional[PollOutcome]:
        """Poll if one is due at the current clock time, else return None."""
        now = self.clock.now()
        if now < self.next_poll_at(now):
            return None
        return self.poll()

    def _fetch(self) -> PollOutcome:
        self.last_poll_at = self.clock.now()
        self.fetch_count += 1
        result = self.fetcher()
        self.last_result = result

        if isinstance(result, FetchSuccess):
            state = self.state_machine.observe(result.data)
        else:
            if isinstance(result, FetchError):
                logger.warning("Usage fetch failed: %s", result.message)
            else:
                logger.info("No credentials available for usage fetch")
            state = self.state_machine.state

        return PollOutcome(state=state, fetched=True, result=result)
