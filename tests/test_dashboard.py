"""
Unit tests for the dashboard, daily trends and agent comparison.
"""

from datetime import datetime, timezone

from agent_telemetry.core.stats import TrendDirection
from agent_telemetry.metrics import (
    compute_agent_comparison,
    compute_all_metrics,
    compute_trends,
)
from agent_telemetry.storage.tasks import StaticTaskSource, TaskRecord

SONNET = "anthropic/claude-sonnet-4-5"


class TestAllMetrics:
    """Test the dashboard summary and its period-over-period trends."""

    def test_summary_and_trends(self, write_events, telemetry_dir, ago):
        """Test current counts and trends against the previous window."""
        write_events([
            # previous 24h
            {"type": "run.completed", "timestamp": ago(hours=30), "agent": "a",
             "success": True, "durationMs": 2000},
            {"type": "run.tokens", "timestamp": ago(hours=30), "agent": "a", "totalTokens": 200},
            # current 24h
            {"type": "run.completed", "timestamp": ago(hours=2), "agent": "a",
             "success": True, "durationMs": 1000},
            {"type": "run.completed", "timestamp": ago(hours=1), "agent": "a",
             "success": True, "durationMs": 1000},
            {"type": "run.tokens", "timestamp": ago(hours=1), "agent": "a", "totalTokens": 100},
        ])
        source = StaticTaskSource(active=[
            TaskRecord(id="T1", status="done", updated=ago(hours=1)),
            TaskRecord(id="T2", status="todo", updated=ago(days=5)),
        ])

        metrics = compute_all_metrics(source, telemetry_dir, "24h")

        assert metrics.runs.runs == 2
        assert metrics.runs.by_agent[0].total_tokens == 100
        assert metrics.tokens.total_tokens == 100
        assert metrics.duration.avg_ms == 1000
        assert metrics.tasks.total == 1
        assert metrics.tasks.by_status["done"] == 1

        trends = metrics.trends
        assert trends.runs_trend == TrendDirection.UP
        assert trends.runs_change == 100
        assert trends.success_rate_trend == TrendDirection.FLAT
        assert trends.success_rate_change == 0
        # Fewer tokens and shorter runs are improvements
        assert trends.tokens_trend == TrendDirection.UP
        assert trends.tokens_change == -50
        assert trends.duration_trend == TrendDirection.UP
        assert trends.duration_change == -50

    def test_without_task_source(self, telemetry_dir):
        """Test task counts are skipped without a task source."""
        metrics = compute_all_metrics(None, telemetry_dir, "7d")

        assert metrics.tasks is None
        assert metrics.runs.runs == 0
        assert metrics.trends.runs_trend == TrendDirection.FLAT

    def test_growth_from_nothing(self, write_events, telemetry_dir, ago):
        """Test tokens appearing after an empty previous window are a regression."""
        write_events([{"type": "run.tokens", "timestamp": ago(hours=1), "totalTokens": 10}])

        trends = compute_all_metrics(None, telemetry_dir, "24h").trends

        assert trends.tokens_change == 100
        assert trends.tokens_trend == TrendDirection.DOWN

    def test_to_dict(self, telemetry_dir):
        """Test the dashboard serializes with camelCase keys and enum values."""
        data = compute_all_metrics(None, telemetry_dir, "24h").to_dict()

        assert data["runs"]["period"] == "24h"
        assert data["trends"]["runsTrend"] == "flat"
        assert "successRate" in data["runs"]


class TestTrends:
    """Test the daily trend series."""

    NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)

    def test_daily_points(self, write_events, telemetry_dir):
        """Test one point per day, including empty days, oldest first."""
        write_events([
            {"type": "run.completed", "timestamp": "2024-05-12T11:00:00.000Z", "success": True},
            {"type": "run.completed", "timestamp": "2024-05-13T10:00:00.000Z", "success": True,
             "durationMs": 1000},
            {"type": "run.tokens", "timestamp": "2024-05-13T10:00:00.000Z", "model": SONNET,
             "inputTokens": 1_000_000, "outputTokens": 0, "cost": 50.0},
            {"type": "task.created", "timestamp": "2024-05-14T09:00:00.000Z", "taskId": "T1"},
            {"type": "task.status_changed", "timestamp": "2024-05-14T09:30:00.000Z", "taskId": "T1"},
            {"type": "run.error", "timestamp": "2024-05-15T08:00:00.000Z"},
        ])

        trends = compute_trends(telemetry_dir, "3d", now=self.NOW)

        assert [p.date for p in trends.daily] == [
            "2024-05-12", "2024-05-13", "2024-05-14", "2024-05-15",
        ]
        empty, busy, tasks, errors = trends.daily
        assert empty.runs == 0
        assert busy.runs == 1
        assert busy.success_rate == 1.0
        assert busy.total_tokens == 1_000_000
        assert busy.cost_estimate == 3.0
        assert busy.avg_duration_ms == 1000
        assert tasks.tasks_created == 1
        assert tasks.status_changes == 1
        assert errors.errors == 1
        assert errors.success_rate == 0.0

    def test_all_period_lists_only_active_days(self, write_events, telemetry_dir):
        """Test the unbounded period doesn't pad days back to the epoch."""
        write_events([
            {"type": "run.completed", "timestamp": "2024-01-01T00:00:00.000Z", "success": True},
            {"type": "run.completed", "timestamp": "2024-03-01T00:00:00.000Z", "success": False},
        ])

        trends = compute_trends(telemetry_dir, "all", now=self.NOW)

        assert [p.date for p in trends.daily] == ["2024-01-01", "2024-03-01"]
        assert trends.daily[1].failures == 1


class TestAgentComparison:
    """Test agent comparison and recommendations."""

    def _write_agents(self, write_events, ago):
        records = []
        for i in range(4):
            records.append({"type": "run.completed", "timestamp": ago(hours=i + 1), "agent": "a",
                            "success": True, "durationMs": 4000})
        records.append({"type": "run.tokens", "timestamp": ago(hours=1), "agent": "a",
                        "totalTokens": 400, "cost": 0.03})
        for i in range(2):
            records.append({"type": "run.completed", "timestamp": ago(hours=i + 1), "agent": "b",
                            "success": True, "durationMs": 2000})
        records.append({"type": "run.error", "timestamp": ago(hours=3), "agent": "b"})
        records.append({"type": "run.tokens", "timestamp": ago(hours=1), "agent": "b",
                        "model": SONNET, "inputTokens": 300, "outputTokens": 300})
        records.append({"type": "run.completed", "timestamp": ago(hours=1), "agent": "c",
                        "success": True})
        write_events(records)

    def test_comparison(self, write_events, telemetry_dir, ago):
        """Test qualifying agents, their figures and ordering."""
        self._write_agents(write_events, ago)

        result = compute_agent_comparison(telemetry_dir, "24h")

        assert result.total_agents == 3
        assert result.qualifying_agents == 2
        assert [a.agent for a in result.agents] == ["a", "b"]

        a, b = result.agents
        assert a.success_rate == 100.0
        assert a.total_cost == 0.03
        assert a.avg_cost_per_run == 0.0075
        assert a.avg_tokens_per_run == 100
        assert b.failures == 1
        assert b.success_rate == 66.7
        # 300 * $3/1M + 300 * $15/1M
        assert b.total_cost == 0.0054
        assert b.avg_duration_ms == 2000

    def test_recommendations(self, write_events, telemetry_dir, ago):
        """Test one standout per category."""
        self._write_agents(write_events, ago)

        result = compute_agent_comparison(telemetry_dir, "24h")
        picks = {r.category: (r.agent, r.value) for r in result.recommendations}

        assert picks == {
            "reliability": ("a", "100.0% success rate"),
            "speed": ("b", "2s"),
            "cost": ("b", "$0.0018/run"),
            "efficiency": ("a", "100/success"),
        }

    def test_min_runs(self, write_events, telemetry_dir, ago):
        """Test lowering min_runs lets small agents qualify."""
        self._write_agents(write_events, ago)

        result = compute_agent_comparison(telemetry_dir, "24h", min_runs=1)

        assert result.qualifying_agents == 3

    def test_unreliable_agents_get_no_reliability_pick(self, write_events, telemetry_dir, ago):
        """Test reliability is only recommended at 80% or above."""
        write_events([
            {"type": "run.completed", "timestamp": ago(hours=1), "agent": "a", "success": i == 0}
            for i in range(3)
        ])

        result = compute_agent_comparison(telemetry_dir, "24h")

        assert "reliability" not in {r.category for r in result.recommendations}
