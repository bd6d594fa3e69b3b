"""
Run-related metrics: success/error rates, durations and failed run details.
"""

from pathlib import Path
from typing import List, Optional, Union

from agent_telemetry.core.periods import MetricsPeriod, PeriodLike
from agent_telemetry.core.stats import percentile, round_half_up, safe_ratio
from agent_telemetry.storage.models import EventType, RunEvent
from agent_telemetry.storage.reader import scan

from .types import (
    AgentBreakdown,
    AgentDuration,
    DurationMetrics,
    FailedRunDetails,
    RunAccumulator,
    RunMetrics,
)
from .window import Bound, scan_window

OUTCOME_TYPES = (EventType.RUN_COMPLETED, EventType.RUN_ERROR)
DEFAULT_FAILED_RUN_LIMIT = 50


def average_ms(durations: List[float]) -> int:
    """Mean duration rounded half-up to whole milliseconds, 0 when empty."""
    if not durations:
        return 0
    return int(round_half_up(sum(durations) / len(durations)))


def accumulate_run(event: RunEvent, acc: RunAccumulator) -> None:
    """Tally one run.completed / run.error event."""
    agent_acc = acc.for_agent(event.agent_name)

    if event.type == EventType.RUN_ERROR:
        acc.errors += 1
        agent_acc.errors += 1
        return

    if event.succeeded:
        acc.successes += 1
        agent_acc.successes += 1
    else:
        acc.failures += 1
        agent_acc.failures += 1

    if event.duration_ms and event.duration_ms > 0:
        acc.durations.append(event.duration_ms)
        agent_acc.durations.append(event.duration_ms)


def build_run_metrics(period: MetricsPeriod, acc: RunAccumulator, tokens_by_agent=None) -> RunMetrics:
    """Derive RunMetrics from a filled accumulator.

    Args:
        period: Requested period
        acc: Accumulator filled by accumulate_run
        tokens_by_agent: Optional mapping of agent to total tokens

    Returns:
        RunMetrics with per-agent breakdown sorted by runs descending
    """
    by_agent = []
    for agent, data in acc.by_agent.items():
        by_agent.append(AgentBreakdown(
            agent=agent,
            runs=data.runs,
            successes=data.successes,
            failures=data.failures,
            errors=data.errors,
            success_rate=safe_ratio(data.successes, data.runs),
            avg_duration_ms=average_ms(data.durations),
            total_tokens=(tokens_by_agent or {}).get(agent, 0),
        ))
    by_agent.sort(key=lambda item: item.runs, reverse=True)

    return RunMetrics(
        period=period,
        runs=acc.runs,
        successes=acc.successes,
        failures=acc.failures,
        errors=acc.errors,
        error_rate=safe_ratio(acc.failures + acc.errors, acc.runs),
        success_rate=safe_ratio(acc.successes, acc.runs),
        by_agent=by_agent,
    )


def build_duration_metrics(period: MetricsPeriod, acc: RunAccumulator) -> DurationMetrics:
    """Derive DurationMetrics from a filled accumulator."""
    durations = sorted(acc.durations)

    by_agent = []
    for agent, data in acc.by_agent.items():
        if not data.durations:
            continue
        agent_durations = sorted(data.durations)
        by_agent.append(AgentDuration(
            agent=agent,
            runs=len(agent_durations),
            avg_ms=average_ms(agent_durations),
            p50_ms=percentile(agent_durations, 50),
            p95_ms=percentile(agent_durations, 95),
        ))
    by_agent.sort(key=lambda item: item.runs, reverse=True)

    return DurationMetrics(
        period=period,
        runs=len(durations),
        avg_ms=average_ms(durations),
        p50_ms=percentile(durations, 50),
        p95_ms=percentile(durations, 95),
        by_agent=by_agent,
    )


def compute_run_metrics(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    project: Optional[str] = None,
    start: Bound = None,
    end: Bound = None
) -> RunMetrics:
    """Run counts, success rate and error rate with per-agent breakdown.

    Args:
        telemetry_dir: Directory holding the partition files
        period: Period selector
        project: Only count runs for this project
        start: Lower bound for the custom period
        end: Optional upper bound

    Returns:
        RunMetrics; rates are 0 when there were no runs
    """
    window = scan_window(telemetry_dir, period, start, end)
    acc = RunAccumulator()
    scan(window.files, OUTCOME_TYPES, window.since, project, acc, accumulate_run, until=window.until)
    return build_run_metrics(window.period, acc)


def compute_duration_metrics(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    project: Optional[str] = None,
    start: Bound = None,
    end: Bound = None
) -> DurationMetrics:
    """Average, p50 and p95 run duration with per-agent breakdown.

    Only run.completed events with a positive duration are considered.
    """
    window = scan_window(telemetry_dir, period, start, end)
    acc = RunAccumulator()
    scan(
        window.files, (EventType.RUN_COMPLETED,), window.since, project,
        acc, accumulate_run, until=window.until
    )
    return build_duration_metrics(window.period, acc)


def compute_failed_runs(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    project: Optional[str] = None,
    limit: int = DEFAULT_FAILED_RUN_LIMIT,
    start: Bound = None,
    end: Bound = None
) -> List[FailedRunDetails]:
    """Failed and errored runs, most recent first.

    Args:
        telemetry_dir: Directory holding the partition files
        period: Period selector
        project: Only include runs for this project
        limit: Maximum number of runs returned
        start: Lower bound for the custom period
        end: Optional upper bound

    Returns:
        Up to ``limit`` failed runs sorted by timestamp descending
    """
    window = scan_window(telemetry_dir, period, start, end)
    failed: List[FailedRunDetails] = []

    def collect(event: RunEvent, acc: List[FailedRunDetails]) -> None:
        if not event.failed:
            return
        acc.append(FailedRunDetails(
            timestamp=event.timestamp,
            agent=event.agent_name,
            task_id=event.task_id,
            project=event.project,
            error_message=event.error,
            duration_ms=event.duration_ms,
        ))

    scan(window.files, OUTCOME_TYPES, window.since, project, failed, collect, until=window.until)

    failed.reverse()
    failed.sort(key=lambda run: run.timestamp, reverse=True)
    return failed[:limit]
