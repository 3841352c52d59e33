"""
Usage aggregation over the rolling session window and the calendar week.

The rolling window starts at the first activity inside the last five
hours, mirroring a session limit whose window opens on first use. The
calendar week is fixed: Sunday 00:00 UTC to the following Sunday.
"""

import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ai_usage_guard.config.plans import (
    TOKENS_PER_HOUR_ESTIMATE,
    WINDOW_DURATION,
    PlanLimits,
    PlanType,
    resolve_plan_limits,
)
from ai_usage_guard.storage.models import UsageEvent

from .clock import ensure_utc, utc_now
from .prediction import LimitPrediction, predict
from .pricing import PRICING_TABLE, ModelFamily, ModelFamilyResolver, PricingTable, calculate_cost
from .rate import DEFAULT_SAMPLE_WINDOW, UsageRate, estimate_rate

UNKNOWN_PROJECT = "Unknown"
MAX_PROJECTS = 10


@dataclass
class ModelUsage:
    """Calendar-week usage for one model family."""
    input_tokens: int = 0
    output_tokens: int = 0
    requests: int = 0
    cost: float = 0.0


@dataclass
class ProjectUsage:
    """Calendar-week usage for one working directory."""
    project_path: str
    project_name: str
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    requests: int = 0
    cost: float = 0.0
    percentage: float = 0.0  # Share of the week's project total


@dataclass(frozen=True)
class ProjectBreakdown:
    """Top projects by token volume for the current week.

    ``total_tokens`` and ``total_cost`` cover every project, including
    those cut from ``projects``.
    """
    projects: List[ProjectUsage] = field(default_factory=list)
    total_tokens: int = 0
    total_cost: float = 0.0


@dataclass(frozen=True)
class UsageSummary:
    """Result of one aggregation pass. Rebuilt from scratch on every call."""
    plan: PlanLimits
    window_tokens: int
    weekly_tokens: int
    window_percentage: float
    weekly_percentage: float
    window_start: datetime
    window_end: datetime
    week_start: datetime
    week_end: datetime
    window_event_count: int
    weekly_event_count: int
    estimated_hours_used: float
    model_breakdown: Dict[ModelFamily, ModelUsage]
    total_cost: float
    project_breakdown: Optional[ProjectBreakdown] = None
    usage_rate: Optional[UsageRate] = None
    prediction: Optional[LimitPrediction] = None


def get_week_boundaries(now: datetime) -> Tuple[datetime, datetime]:
    """Return the UTC Sunday-to-Sunday week containing ``now``."""
    now = ensure_utc(now)
    # weekday(): Monday == 0 ... Sunday == 6
    days_since_sunday = (now.weekday() + 1) % 7
    week_start = (now - timedelta(days=days_since_sunday)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return week_start, week_start + timedelta(days=7)


def get_window_start(
    events: Iterable[UsageEvent],
    now: datetime,
    window: timedelta = WINDOW_DURATION,
) -> datetime:
    """Earliest event timestamp within ``window`` of ``now``.

    Falls back to ``now - window`` when nothing qualifies. Events after
    ``now`` are ignored so the start never lies in the future.
    """
    now = ensure_utc(now)
    window_ago = now - window
    earliest: Optional[datetime] = None
    for event in events:
        ts = event.timestamp
        if window_ago <= ts <= now and (earliest is None or ts < earliest):
            earliest = ts
    return earliest if earliest is not None else window_ago


def usage_percentage(tokens: int, ceiling: int) -> float:
    """Share of ``ceiling`` consumed, clamped to [0, 100]."""
    if ceiling <= 0:
        return 100.0
    return max(0.0, min(100.0, tokens / ceiling * 100))


def _project_name(project_path: str, cache: Dict[str, str]) -> str:
    name = cache.get(project_path)
    if name is None:
        if project_path == UNKNOWN_PROJECT:
            name = UNKNOWN_PROJECT
        else:
            # Accept both separators; log paths may come from any platform
            stripped = project_path.replace("\\", "/").rstrip("/")
            name = posixpath.basename(stripped) or UNKNOWN_PROJECT
        cache[project_path] = name
    return name


class UsageAggregator:
    """Computes UsageSummary values from parsed session events.

    Owns its model family cache; nothing is shared between instances.
    """

    def __init__(
        self,
        pricing: PricingTable = PRICING_TABLE,
        resolver: Optional[ModelFamilyResolver] = None,
        sample_window: timedelta = DEFAULT_SAMPLE_WINDOW,
    ):
        self.pricing = pricing
        self.resolver = resolver or ModelFamilyResolver()
        self.sample_window = sample_window

    def summarize(
        self,
        events: Sequence[UsageEvent],
        plan: Union[PlanType, PlanLimits, str],
        now: Optional[datetime] = None,
        include_projects: bool = True,
        include_prediction: bool = True,
    ) -> UsageSummary:
        """Aggregate events into window and weekly totals.

        Args:
            events: Parsed usage events, in any order
            plan: Plan tier (or explicit limits) providing the ceilings
            now: Reference instant, defaults to the current UTC time
            include_projects: Compute the per-project breakdown
            include_prediction: Compute burn rate and limit prediction

        Returns:
            A fresh UsageSummary
        """
        limits = resolve_plan_limits(plan)
        now = ensure_utc(now) if now is not None else utc_now()

        window_start = get_window_start(events, now)
        week_start, week_end = get_week_boundaries(now)

        window_tokens = 0
        weekly_tokens = 0
        window_count = 0
        weekly_count = 0
        model_breakdown: Dict[ModelFamily, ModelUsage] = {
            family: ModelUsage() for family in ModelFamily
        }

        for event in events:
            ts = event.timestamp
            tokens = event.total_tokens

            # The two buckets are independent; an event may land in both
            if window_start <= ts <= now:
                window_tokens += tokens
                window_count += 1

            if week_start <= ts <= now:
                weekly_tokens += tokens
                weekly_count += 1
                usage = model_breakdown[self.resolver.resolve(event.model)]
                usage.input_tokens += event.input_tokens
                usage.output_tokens += event.output_tokens
                usage.requests += 1

        total_cost = 0.0
        for family, usage in model_breakdown.items():
            usage.cost = calculate_cost(
                usage.input_tokens, usage.output_tokens, self.pricing.get_pricing(family)
            )
            total_cost += usage.cost

        window_percentage = usage_percentage(window_tokens, limits.window_tokens)
        weekly_percentage = usage_percentage(weekly_tokens, limits.weekly_tokens)

        project_breakdown = None
        if include_projects:
            project_breakdown = self.project_breakdown(events, week_start, now)

        usage_rate = None
        prediction = None
        if include_prediction:
            usage_rate = estimate_rate(events, now, self.sample_window)
            prediction = predict(usage_rate, window_percentage, weekly_percentage, limits, now)

        return UsageSummary(
            plan=limits,
            window_tokens=window_tokens,
            weekly_tokens=weekly_tokens,
            window_percentage=window_percentage,
            weekly_percentage=weekly_percentage,
            window_start=window_start,
            window_end=window_start + WINDOW_DURATION,
            week_start=week_start,
            week_end=week_end,
            window_event_count=window_count,
            weekly_event_count=weekly_count,
            estimated_hours_used=weekly_tokens / TOKENS_PER_HOUR_ESTIMATE,
            model_breakdown=model_breakdown,
            total_cost=total_cost,
            project_breakdown=project_breakdown,
            usage_rate=usage_rate,
            prediction=prediction,
        )

    def project_breakdown(
        self,
        events: Iterable[UsageEvent],
        week_start: datetime,
        now: datetime,
        limit: int = MAX_PROJECTS,
    ) -> ProjectBreakdown:
        """Group events in ``[week_start, now]`` by working directory.

        Events without a working directory land in the "Unknown" bucket.
        Projects are sorted by token volume, descending; ties keep the
        order in which projects were first seen.
        """
        week_start = ensure_utc(week_start)
        now = ensure_utc(now)
        projects: Dict[str, ProjectUsage] = {}
        names: Dict[str, str] = {}

        for event in events:
            if event.timestamp < week_start or event.timestamp > now:
                continue

            project_path = event.cwd or UNKNOWN_PROJECT
            family = self.resolver.resolve(event.model)
            cost = calculate_cost(
                event.input_tokens, event.output_tokens, self.pricing.get_pricing(family)
            )

            project = projects.get(project_path)
            if project is None:
                project = ProjectUsage(
                    project_path=project_path,
                    project_name=_project_name(project_path, names),
                )
                projects[project_path] = project
            project.total_tokens += event.total_tokens
            project.input_tokens += event.input_tokens
            project.output_tokens += event.output_tokens
            project.requests += 1
            project.cost += cost

        ranked = list(projects.values())
        total_tokens = sum(p.total_tokens for p in ranked)
        total_cost = sum(p.cost for p in ranked)

        for project in ranked:
            project.percentage = (
                project.total_tokens / total_tokens * 100 if total_tokens > 0 else 0.0
            )

        # Stable sort keeps first-seen order among equal totals
        ranked.sort(key=lambda p: p.total_tokens, reverse=True)

        return ProjectBreakdown(
            projects=ranked[:limit],
            total_tokens=total_tokens,
            total_cost=total_cost,
        )


def summarize(
    events: Sequence[UsageEvent],
    plan: Union[PlanType, PlanLimits, str],
    now: Optional[datetime] = None,
) -> UsageSummary:
    """Aggregate with a fresh UsageAggregator; see :meth:`UsageAggregator.summarize`."""
    return UsageAggregator().summarize(events, plan, now)


def calculate_project_breakdown(
    events: Iterable[UsageEvent],
    week_start: datetime,
    now: datetime,
) -> ProjectBreakdown:
    """Per-project breakdown with a fresh UsageAggregator."""
    return UsageAggregator().project_breakdown(events, week_start, now)
