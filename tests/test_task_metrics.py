"""
Unit tests for task, velocity and cost accuracy metrics.
"""

import json

import pytest

from agent_telemetry.metrics import (
    compute_accuracy_metrics,
    compute_task_metrics,
    compute_velocity_metrics,
)
from agent_telemetry.metrics.task_metrics import sprint_sort_key
from agent_telemetry.metrics.types import VelocityTrend
from agent_telemetry.storage.tasks import CostAccuracy, StaticTaskSource, TaskRecord


def sprint_tasks(sprint, completed, total, prefix=None):
    """Tasks for one sprint, the first ``completed`` of them done."""
    prefix = prefix or sprint
    return [
        TaskRecord(
            id=f"{prefix}-{i}",
            sprint=sprint,
            status="done" if i < completed else "in-progress",
            type="feature" if i % 2 == 0 else None,
        )
        for i in range(total)
    ]


class TestTaskMetrics:
    """Test task counts by status and blocked reason."""

    def test_counts(self):
        """Test status and blocked reason counts with prefilled buckets."""
        source = StaticTaskSource(
            active=[
                TaskRecord(id="T1", status="todo"),
                TaskRecord(id="T2", status="done"),
                TaskRecord(id="T3", status="blocked", blocked_category="technical-snag"),
                TaskRecord(id="T4", status="blocked"),
            ],
            archived=[TaskRecord(id="T5", status="done")],
        )

        metrics = compute_task_metrics(source)

        assert metrics.by_status == {
            "todo": 1, "planning": 0, "in-progress": 0, "blocked": 2, "done": 1,
        }
        assert metrics.by_blocked_reason["technical-snag"] == 1
        assert metrics.by_blocked_reason["unspecified"] == 1
        assert metrics.by_blocked_reason["prerequisite"] == 0
        assert metrics.total == 5
        assert metrics.completed == 2
        assert metrics.archived == 1

    def test_project_and_since_filters(self):
        """Test tasks are filtered by project and by last touch."""
        source = StaticTaskSource(active=[
            TaskRecord(id="T1", project="p1", created="2024-01-01T00:00:00.000Z",
                       updated="2024-05-02T00:00:00.000Z"),
            TaskRecord(id="T2", project="p1", created="2024-01-01T00:00:00.000Z"),
            TaskRecord(id="T3", project="p2", created="2024-05-03T00:00:00.000Z"),
            TaskRecord(id="T4", project="p1", updated="not a date"),
        ])

        assert compute_task_metrics(source, project="p1").total == 3
        assert compute_task_metrics(source, since="2024-05-01").total == 2
        assert compute_task_metrics(source, project="p1", since="2024-05-01").total == 1

    def test_from_json_file(self, tmp_path):
        """Test loading a task board export."""
        path = tmp_path / "tasks.json"
        path.write_text(json.dumps({
            "active": [{
                "id": "T1", "status": "blocked", "blockedReason": {"category": "prerequisite"},
                "costEstimate": {"estimatedCost": 1.5},
                "costAccuracy": {"accuracy": 0.8, "costDelta": 0.3},
            }],
            "archived": [{"id": "T2", "status": "done"}],
        }))

        source = StaticTaskSource.from_json_file(path)
        task = source.list_tasks()[0]

        assert task.blocked_category == "prerequisite"
        assert task.cost_estimate == 1.5
        assert task.cost_accuracy == CostAccuracy(accuracy=0.8, cost_delta=0.3)
        assert compute_task_metrics(source).completed == 1

    def test_task_without_id_is_rejected(self):
        """Test a task export entry must have an id."""
        with pytest.raises(ValueError, match="missing an id"):
            TaskRecord.from_dict({"title": "orphan"})


class TestVelocityMetrics:
    """Test sprint velocity."""

    def test_sprint_sort_key(self):
        """Test sprints sort by their numeric part."""
        assert sorted(["US-10", "US-9", "US-100"], key=sprint_sort_key) == ["US-9", "US-10", "US-100"]
        assert sprint_sort_key("backlog") == 0

    def test_rolling_average_and_current_sprint(self):
        """Test per-sprint counts, rolling average and the current sprint."""
        source = StaticTaskSource(
            active=sprint_tasks("S-1", 2, 2) + sprint_tasks("S-2", 4, 4) + sprint_tasks("S-3", 1, 4),
            archived=[TaskRecord(id="A-1", sprint="S-3", status="in-progress")],
        )

        metrics = compute_velocity_metrics(source)

        assert [s.sprint for s in metrics.sprints] == ["S-1", "S-2", "S-3"]
        assert [s.completed for s in metrics.sprints] == [2, 4, 2]
        assert metrics.sprints[2].total == 5
        assert [s.rolling_average for s in metrics.sprints] == [2.0, 3.0, 2.7]
        assert metrics.sprints[0].by_type == {"feature": 1, "other": 1}
        assert metrics.average_velocity == 2.7
        assert metrics.trend == VelocityTrend.STEADY

        current = metrics.current_sprint
        assert current.sprint == "S-3"
        assert current.completed == 2
        assert current.percent_complete == 40.0
        # (2 - 2.7) / 2.7
        assert current.vs_average == -25.9

    def test_trend_accelerating_and_slowing(self):
        """Test the last three sprints are compared with the three before."""
        rising = StaticTaskSource(active=[
            task for n, done in enumerate([2, 2, 2, 5, 5, 5], start=1)
            for task in sprint_tasks(f"S-{n}", done, done)
        ])
        falling = StaticTaskSource(active=[
            task for n, done in enumerate([5, 5, 5, 2, 2, 2], start=1)
            for task in sprint_tasks(f"S-{n}", done, done)
        ])

        assert compute_velocity_metrics(rising).trend == VelocityTrend.ACCELERATING
        assert compute_velocity_metrics(falling).trend == VelocityTrend.SLOWING
        assert compute_velocity_metrics(rising).current_sprint is None

    def test_limit_and_labels(self):
        """Test only the most recent sprints are reported, with display labels."""
        source = StaticTaskSource(active=[
            task for n in range(1, 6) for task in sprint_tasks(f"S-{n}", 1, 1)
        ])

        metrics = compute_velocity_metrics(source, limit=2, sprint_labels={"S-5": "Sprint five"})

        assert [s.sprint for s in metrics.sprints] == ["S-4", "Sprint five"]

    def test_no_sprints(self):
        """Test tasks without sprints give an empty steady result."""
        metrics = compute_velocity_metrics(StaticTaskSource(active=[TaskRecord(id="T1")]))

        assert metrics.sprints == []
        assert metrics.average_velocity == 0
        assert metrics.trend == VelocityTrend.STEADY
        assert metrics.current_sprint is None


class TestAccuracyMetrics:
    """Test cost prediction accuracy."""

    def test_summary(self):
        """Test counts, averages and groupings."""
        source = StaticTaskSource(active=[
            TaskRecord(id="T1", type="feature", agent="a", cost_estimate=1.0,
                       cost_accuracy=CostAccuracy(accuracy=0.95, cost_delta=0.05)),
            TaskRecord(id="T2", type="feature", agent="b", cost_estimate=2.0,
                       cost_accuracy=CostAccuracy(accuracy=0.5, cost_delta=-1.0)),
            TaskRecord(id="T3", cost_estimate=1.0,
                       cost_accuracy=CostAccuracy(accuracy=0.8, cost_delta=0.0)),
            TaskRecord(id="T4", cost_estimate=1.0),
            TaskRecord(id="T5", cost_accuracy=CostAccuracy(accuracy=1.0, cost_delta=0.0)),
        ])

        metrics = compute_accuracy_metrics(source)

        assert metrics.total_predictions == 3
        assert metrics.average_accuracy == 0.75
        assert metrics.perfect_count == 1
        assert metrics.over_budget_count == 1
        assert metrics.under_budget_count == 1
        assert metrics.by_task_type["feature"].count == 2
        assert metrics.by_task_type["feature"].avg_accuracy == 0.725
        assert metrics.by_task_type["unknown"].count == 1
        assert set(metrics.by_agent) == {"a", "b", "unknown"}

    def test_no_predictions(self):
        """Test zeros when nothing has been predicted."""
        metrics = compute_accuracy_metrics(StaticTaskSource())

        assert metrics.total_predictions == 0
        assert metrics.average_accuracy == 0.0
        assert metrics.by_agent == {}
