"""
Composite views built on the individual computers.

Dashboard summary with period-over-period trends, daily trend series and
agent comparison with recommendations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from agent_telemetry.core.periods import (
    MetricsPeriod,
    PeriodLike,
    days_in_window,
    previous_period_range,
)
from agent_telemetry.core.pricing import PricingTable, round_cost
from agent_telemetry.core.stats import (
    format_duration,
    format_tokens,
    percent_change,
    round_half_up,
    safe_ratio,
    trend,
)
from agent_telemetry.storage.models import EventType, RunEvent, TelemetryEvent, TokenEvent
from agent_telemetry.storage.reader import list_partition_files, scan
from agent_telemetry.storage.tasks import TaskSource

from .run_metrics import (
    OUTCOME_TYPES,
    accumulate_run,
    average_ms,
    build_duration_metrics,
    build_run_metrics,
)
from .task_metrics import compute_task_metrics
from .token_metrics import accumulate_tokens, build_token_metrics, event_cost
from .types import (
    AgentComparisonData,
    AgentComparisonResult,
    AgentRecommendation,
    AgentUsageAccumulator,
    DailyAccumulator,
    DailyTrendPoint,
    DashboardMetrics,
    RunAccumulator,
    TokenAccumulator,
    TrendComparison,
    TrendsData,
)
from .window import Bound, scan_window

DEFAULT_MIN_RUNS = 3
# Most reliable agent is only recommended at or above this success rate (percent)
RELIABILITY_THRESHOLD = 80.0

USAGE_TYPES = OUTCOME_TYPES + (EventType.RUN_TOKENS,)
TASK_ACTIVITY_TYPES = (
    EventType.TASK_CREATED,
    EventType.TASK_STATUS_CHANGED,
    EventType.TASK_ARCHIVED,
)


@dataclass
class _UsageAccumulator:
    runs: RunAccumulator = field(default_factory=RunAccumulator)
    tokens: TokenAccumulator = field(default_factory=TokenAccumulator)
    before: Optional[str] = None  # exclusive upper bound, if any


def _accumulate_usage(event: TelemetryEvent, acc: _UsageAccumulator) -> None:
    if acc.before is not None and event.timestamp >= acc.before:
        return
    if event.type == EventType.RUN_TOKENS:
        accumulate_tokens(event, acc.tokens)
    else:
        accumulate_run(event, acc.runs)


def compute_all_metrics(
    task_source: Optional[TaskSource],
    telemetry_dir: Union[str, Path],
    period: PeriodLike = MetricsPeriod.LAST_24H,
    project: Optional[str] = None,
    start: Bound = None,
    end: Bound = None,
    now: Optional[datetime] = None
) -> DashboardMetrics:
    """Everything the dashboard shows, from a single pass over the window.

    Trends compare against the preceding window of equal length: runs and
    success rate are better when higher, tokens and duration when lower.

    Args:
        task_source: Read access to the task board (None skips task counts)
        telemetry_dir: Directory holding the partition files
        period: Period selector
        project: Only count events and tasks for this project
        start: Lower bound for the custom period
        end: Optional upper bound
        now: Reference time (defaults to the current UTC time)

    Returns:
        DashboardMetrics
    """
    window = scan_window(telemetry_dir, period, start, end, now=now)

    current = _UsageAccumulator()
    scan(window.files, USAGE_TYPES, window.since, project, current, _accumulate_usage, until=window.until)

    tokens = build_token_metrics(window.period, current.tokens)
    tokens_by_agent = {agent.agent: agent.total_tokens for agent in tokens.by_agent}
    runs = build_run_metrics(window.period, current.runs, tokens_by_agent)
    duration = build_duration_metrics(window.period, current.runs)

    tasks = None
    if task_source is not None:
        tasks = compute_task_metrics(task_source, project, since=window.since)

    prev_since, prev_until = previous_period_range(window.period, now=now, start=start, end=end)
    previous = _UsageAccumulator(before=prev_until)
    scan(
        list_partition_files(telemetry_dir, prev_since, prev_until), USAGE_TYPES,
        prev_since, project, previous, _accumulate_usage, until=prev_until
    )

    prev_success_rate = safe_ratio(previous.runs.successes, previous.runs.runs)
    prev_durations = previous.runs.durations
    prev_avg_duration = safe_ratio(sum(prev_durations), len(prev_durations))

    trends = TrendComparison(
        runs_trend=trend(runs.runs, previous.runs.runs),
        runs_change=percent_change(runs.runs, previous.runs.runs),
        success_rate_trend=trend(runs.success_rate, prev_success_rate),
        success_rate_change=percent_change(runs.success_rate * 100, prev_success_rate * 100),
        tokens_trend=trend(tokens.total_tokens, previous.tokens.total_tokens, higher_is_better=False),
        tokens_change=percent_change(tokens.total_tokens, previous.tokens.total_tokens),
        duration_trend=trend(duration.avg_ms, prev_avg_duration, higher_is_better=False),
        duration_change=percent_change(duration.avg_ms, prev_avg_duration),
    )

    return DashboardMetrics(tasks=tasks, runs=runs, tokens=tokens, duration=duration, trends=trends)


def compute_trends(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    project: Optional[str] = None,
    pricing: Optional[PricingTable] = None,
    start: Bound = None,
    end: Bound = None,
    now: Optional[datetime] = None
) -> TrendsData:
    """Per-day activity for the window, oldest day first.

    Every UTC day in the window gets a point, including days without events.
    The ``all`` period only lists days that have events.
    """
    window = scan_window(telemetry_dir, period, start, end, now=now)

    daily: Dict[str, DailyAccumulator] = {}
    if window.period != MetricsPeriod.ALL:
        for day in days_in_window(window.since, window.until, now=now):
            daily[day] = DailyAccumulator()

    def collect(event: TelemetryEvent, acc: Dict[str, DailyAccumulator]) -> None:
        day = acc.setdefault(event.date, DailyAccumulator())
        if event.type == EventType.RUN_TOKENS:
            day.total_tokens += event.tokens
            day.input_tokens += event.input_tokens
            day.output_tokens += event.output_tokens
            day.cost += event_cost(event, pricing)
        elif event.type == EventType.RUN_ERROR:
            day.errors += 1
        elif event.type == EventType.RUN_COMPLETED:
            if event.succeeded:
                day.successes += 1
            else:
                day.failures += 1
            if event.duration_ms and event.duration_ms > 0:
                day.durations.append(event.duration_ms)
        elif event.type == EventType.TASK_CREATED:
            day.tasks_created += 1
        elif event.type == EventType.TASK_STATUS_CHANGED:
            day.status_changes += 1
        elif event.type == EventType.TASK_ARCHIVED:
            day.tasks_archived += 1

    scan(
        window.files, USAGE_TYPES + TASK_ACTIVITY_TYPES, window.since, project,
        daily, collect, until=window.until
    )

    points = []
    for date in sorted(daily):
        data = daily[date]
        points.append(DailyTrendPoint(
            date=date,
            runs=data.runs,
            successes=data.successes,
            failures=data.failures,
            errors=data.errors,
            success_rate=safe_ratio(data.successes, data.runs),
            total_tokens=data.total_tokens,
            input_tokens=data.input_tokens,
            output_tokens=data.output_tokens,
            cost_estimate=round_cost(data.cost),
            avg_duration_ms=average_ms(data.durations),
            tasks_created=data.tasks_created,
            status_changes=data.status_changes,
            tasks_archived=data.tasks_archived,
        ))

    return TrendsData(period=window.period, daily=points)


def _recommendations(agents: List[AgentComparisonData], min_runs: int) -> List[AgentRecommendation]:
    recommendations = []
    if not agents:
        return recommendations

    most_reliable = sorted(agents, key=lambda a: a.success_rate, reverse=True)[0]
    if most_reliable.success_rate >= RELIABILITY_THRESHOLD:
        recommendations.append(AgentRecommendation(
            category="reliability",
            agent=most_reliable.agent,
            value=f"{most_reliable.success_rate}% success rate",
            reason=f"Highest success rate among agents with {min_runs}+ runs",
        ))

    timed = [a for a in agents if a.avg_duration_ms > 0]
    if timed:
        fastest = sorted(timed, key=lambda a: a.avg_duration_ms)[0]
        recommendations.append(AgentRecommendation(
            category="speed",
            agent=fastest.agent,
            value=format_duration(fastest.avg_duration_ms),
            reason="Shortest average run duration",
        ))

    priced = [a for a in agents if a.avg_cost_per_run > 0]
    if priced:
        cheapest = sorted(priced, key=lambda a: a.avg_cost_per_run)[0]
        recommendations.append(AgentRecommendation(
            category="cost",
            agent=cheapest.agent,
            value=f"${cheapest.avg_cost_per_run:.4f}/run",
            reason="Lowest average cost per run",
        ))

    succeeded = [a for a in agents if a.successes > 0]
    if succeeded:
        per_success = {a.agent: int(round_half_up(a.total_tokens / a.successes)) for a in succeeded}
        efficient = sorted(succeeded, key=lambda a: per_success[a.agent])[0]
        recommendations.append(AgentRecommendation(
            category="efficiency",
            agent=efficient.agent,
            value=f"{format_tokens(per_success[efficient.agent])}/success",
            reason="Fewest tokens per successful run",
        ))

    return recommendations


def compute_agent_comparison(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    project: Optional[str] = None,
    min_runs: int = DEFAULT_MIN_RUNS,
    pricing: Optional[PricingTable] = None,
    start: Bound = None,
    end: Bound = None
) -> AgentComparisonResult:
    """Compare agents with at least ``min_runs`` runs and pick standouts.

    Cost uses the cost each agent reported on its token events, falling back
    to the pricing table.

    Args:
        telemetry_dir: Directory holding the partition files
        period: Period selector
        project: Only count events for this project
        min_runs: Agents with fewer runs are left out of the comparison
        pricing: Pricing table for events without a reported cost
        start: Lower bound for the custom period
        end: Optional upper bound

    Returns:
        AgentComparisonResult with agents sorted by runs descending
    """
    window = scan_window(telemetry_dir, period, start, end)
    by_agent: Dict[str, AgentUsageAccumulator] = {}

    def collect(event: Union[RunEvent, TokenEvent], acc: Dict[str, AgentUsageAccumulator]) -> None:
        data = acc.setdefault(event.agent_name, AgentUsageAccumulator())
        if event.type == EventType.RUN_TOKENS:
            data.total_tokens += event.tokens
            data.input_tokens += event.input_tokens
            data.output_tokens += event.output_tokens
            data.cost += event.cost if event.cost is not None else event_cost(event, pricing)
        elif event.type == EventType.RUN_ERROR:
            data.errors += 1
        else:
            if event.succeeded:
                data.successes += 1
            else:
                data.failures += 1
            if event.duration_ms and event.duration_ms > 0:
                data.durations.append(event.duration_ms)

    scan(window.files, USAGE_TYPES, window.since, project, by_agent, collect, until=window.until)

    agents = []
    for agent, data in by_agent.items():
        if data.runs < min_runs:
            continue
        agents.append(AgentComparisonData(
            agent=agent,
            runs=data.runs,
            successes=data.successes,
            failures=data.failures + data.errors,
            success_rate=round_half_up(safe_ratio(data.successes, data.runs) * 100, 1),
            avg_duration_ms=average_ms(data.durations),
            avg_tokens_per_run=int(round_half_up(safe_ratio(data.total_tokens, data.runs))),
            total_tokens=data.total_tokens,
            avg_cost_per_run=round_cost(safe_ratio(data.cost, data.runs)),
            total_cost=round_cost(data.cost),
        ))
    agents.sort(key=lambda a: a.runs, reverse=True)

    return AgentComparisonResult(
        period=window.period,
        min_runs=min_runs,
        agents=agents,
        recommendations=_recommendations(agents, min_runs),
        total_agents=len(by_agent),
        qualifying_agents=len(agents),
    )
