"""
Task records read by the task-level metrics.

The task board itself lives elsewhere; metrics only need a read-only view of
active and archived tasks, provided through the TaskSource protocol.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

TASK_STATUSES = ("todo", "planning", "in-progress", "blocked", "done")
BLOCKED_CATEGORIES = ("waiting-on-feedback", "technical-snag", "prerequisite", "other")


@dataclass(frozen=True)
class CostAccuracy:
    """Outcome of a task's cost prediction."""
    accuracy: float
    cost_delta: float  # Actual minus estimated; positive means over budget


@dataclass(frozen=True)
class TaskRecord:
    """Read-only view of a task."""
    id: str
    title: str = ""
    type: Optional[str] = None
    status: str = "todo"
    project: Optional[str] = None
    sprint: Optional[str] = None
    agent: Optional[str] = None
    created: Optional[str] = None
    updated: Optional[str] = None
    blocked_category: Optional[str] = None
    cost_estimate: Optional[float] = None
    cost_accuracy: Optional[CostAccuracy] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskRecord":
        """Build a task from the board's JSON representation.

        Raises:
            ValueError: If the task has no id
        """
        task_id = data.get("id")
        if not task_id:
            raise ValueError("task is missing an id")

        blocked = data.get("blockedReason") or {}
        accuracy = data.get("costAccuracy")
        estimate = data.get("costEstimate")
        if isinstance(estimate, dict):
            estimate = estimate.get("estimatedCost")

        return cls(
            id=task_id,
            title=data.get("title", ""),
            type=data.get("type"),
            status=data.get("status", "todo"),
            project=data.get("project"),
            sprint=data.get("sprint"),
            agent=data.get("agent"),
            created=data.get("created"),
            updated=data.get("updated"),
            blocked_category=blocked.get("category") if isinstance(blocked, dict) else None,
            cost_estimate=estimate,
            cost_accuracy=CostAccuracy(
                accuracy=float(accuracy["accuracy"]),
                cost_delta=float(accuracy.get("costDelta", 0)),
            ) if isinstance(accuracy, dict) and "accuracy" in accuracy else None,
        )


class TaskSource(Protocol):
    """Read access to the task board."""

    def list_tasks(self) -> List[TaskRecord]:
        ...

    def list_archived_tasks(self) -> List[TaskRecord]:
        ...


@dataclass
class StaticTaskSource:
    """TaskSource backed by in-memory lists."""
    active: List[TaskRecord] = field(default_factory=list)
    archived: List[TaskRecord] = field(default_factory=list)

    def list_tasks(self) -> List[TaskRecord]:
        return list(self.active)

    def list_archived_tasks(self) -> List[TaskRecord]:
        return list(self.archived)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "StaticTaskSource":
        """Load tasks from a JSON export with ``active`` and ``archived`` lists.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not a valid export
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("task export must be a JSON object")
        return cls(
            active=[TaskRecord.from_dict(item) for item in data.get("active", [])],
            archived=[TaskRecord.from_dict(item) for item in data.get("archived", [])],
        )
