"""
Task-related metrics: task counts by status and sprint velocity.

These read the task board through a TaskSource rather than the event log.
"""

import logging
import re
from datetime import datetime
from typing import Dict, List, Optional, Union

from agent_telemetry.core.periods import EPOCH, parse_timestamp
from agent_telemetry.core.stats import mean, round_half_up, safe_ratio
from agent_telemetry.storage.tasks import (
    BLOCKED_CATEGORIES,
    TASK_STATUSES,
    TaskRecord,
    TaskSource,
)

from .types import (
    CurrentSprintProgress,
    SprintVelocityPoint,
    TaskMetrics,
    VelocityMetrics,
    VelocityTrend,
)

logger = logging.getLogger(__name__)

UNSPECIFIED_BLOCKED_REASON = "unspecified"
DEFAULT_SPRINT_LIMIT = 10
ROLLING_WINDOW = 3
# Sprint-over-sprint change (in percent) needed to call velocity accelerating/slowing
VELOCITY_TREND_THRESHOLD_PERCENT = 10.0

_NON_DIGITS = re.compile(r"\D")


def _for_project(tasks: List[TaskRecord], project: Optional[str]) -> List[TaskRecord]:
    if not project:
        return tasks
    return [task for task in tasks if task.project == project]


def _task_time(value: Optional[str]) -> datetime:
    if not value:
        return EPOCH
    try:
        return parse_timestamp(value)
    except ValueError:
        logger.debug("Ignoring unparsable task timestamp %r", value)
        return EPOCH


def _touched_since(task: TaskRecord, since: datetime) -> bool:
    return _task_time(task.updated) >= since or _task_time(task.created) >= since


def compute_task_metrics(
    task_source: TaskSource,
    project: Optional[str] = None,
    since: Optional[Union[str, datetime]] = None
) -> TaskMetrics:
    """Count tasks by status and blocked tasks by reason.

    Args:
        task_source: Read access to the task board
        project: Only count tasks for this project
        since: Only count tasks updated or created at or after this instant

    Returns:
        TaskMetrics; ``completed`` is done plus archived tasks
    """
    active = _for_project(task_source.list_tasks(), project)
    archived = _for_project(task_source.list_archived_tasks(), project)

    if since is not None:
        since_dt = since if isinstance(since, datetime) else parse_timestamp(since)
        active = [task for task in active if _touched_since(task, since_dt)]
        archived = [task for task in archived if _touched_since(task, since_dt)]

    by_status = {status: 0 for status in TASK_STATUSES}
    by_blocked_reason = {category: 0 for category in BLOCKED_CATEGORIES}
    by_blocked_reason[UNSPECIFIED_BLOCKED_REASON] = 0

    for task in active:
        by_status[task.status] = by_status.get(task.status, 0) + 1
        if task.status == "blocked":
            reason = task.blocked_category or UNSPECIFIED_BLOCKED_REASON
            by_blocked_reason[reason] = by_blocked_reason.get(reason, 0) + 1

    return TaskMetrics(
        by_status=by_status,
        by_blocked_reason=by_blocked_reason,
        total=len(active) + len(archived),
        completed=by_status["done"] + len(archived),
        archived=len(archived),
    )


def sprint_sort_key(sprint: str) -> int:
    """Numeric part of a sprint id (``US-200`` -> 200), 0 when there is none."""
    digits = _NON_DIGITS.sub("", sprint)
    return int(digits) if digits else 0


def _velocity_trend(completed: List[int]) -> VelocityTrend:
    """Compare the mean of the last three sprints with the three before."""
    if len(completed) < 4:
        return VelocityTrend.STEADY
    recent = completed[-3:]
    previous = completed[-6:-3]
    if len(previous) < 2:
        return VelocityTrend.STEADY

    previous_avg = mean(previous)
    if previous_avg <= 0:
        return VelocityTrend.STEADY
    change = (mean(recent) - previous_avg) / previous_avg * 100

    if change > VELOCITY_TREND_THRESHOLD_PERCENT:
        return VelocityTrend.ACCELERATING
    if change < -VELOCITY_TREND_THRESHOLD_PERCENT:
        return VelocityTrend.SLOWING
    return VelocityTrend.STEADY


def compute_velocity_metrics(
    task_source: TaskSource,
    project: Optional[str] = None,
    limit: int = DEFAULT_SPRINT_LIMIT,
    sprint_labels: Optional[Dict[str, str]] = None
) -> VelocityMetrics:
    """Tasks completed per sprint with rolling average, trend and current sprint.

    Args:
        task_source: Read access to the task board
        project: Only count tasks for this project
        limit: Number of most recent sprints to report
        sprint_labels: Optional display labels keyed by sprint id

    Returns:
        VelocityMetrics with sprints ordered oldest to newest
    """
    labels = sprint_labels or {}
    archived_tasks = task_source.list_archived_tasks()
    archived_ids = {task.id for task in archived_tasks}
    tasks = _for_project(task_source.list_tasks() + archived_tasks, project)

    by_sprint: Dict[str, Dict] = {}
    for task in tasks:
        if not task.sprint:
            continue
        data = by_sprint.setdefault(task.sprint, {"completed": 0, "total": 0, "by_type": {}})
        data["total"] += 1
        if task.status == "done" or task.id in archived_ids:
            data["completed"] += 1
            task_type = task.type or "other"
            data["by_type"][task_type] = data["by_type"].get(task_type, 0) + 1

    ordered = sorted(by_sprint.items(), key=lambda item: sprint_sort_key(item[0]))
    recent = ordered[-limit:] if limit > 0 else []

    sprints: List[SprintVelocityPoint] = []
    completed_counts: List[int] = []
    for sprint_id, data in recent:
        completed_counts.append(data["completed"])
        sprints.append(SprintVelocityPoint(
            sprint=labels.get(sprint_id, sprint_id),
            completed=data["completed"],
            total=data["total"],
            rolling_average=round_half_up(mean(completed_counts[-ROLLING_WINDOW:]), 1),
            by_type=data["by_type"],
        ))

    average_velocity = round_half_up(mean(completed_counts), 1)

    current_sprint = None
    for sprint_id, data in reversed(ordered):
        if data["completed"] < data["total"]:
            vs_average = 0.0
            if average_velocity > 0:
                vs_average = (data["completed"] - average_velocity) / average_velocity * 100
            current_sprint = CurrentSprintProgress(
                sprint=labels.get(sprint_id, sprint_id),
                completed=data["completed"],
                total=data["total"],
                percent_complete=round_half_up(safe_ratio(data["completed"], data["total"]) * 100, 1),
                vs_average=round_half_up(vs_average, 1),
            )
            break

    return VelocityMetrics(
        sprints=sprints,
        average_velocity=average_velocity,
        trend=_velocity_trend(completed_counts),
        current_sprint=current_sprint,
    )
