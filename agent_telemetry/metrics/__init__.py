"""
Metrics computed on demand from the telemetry log and the task board.
"""

from .accuracy_metrics import compute_accuracy_metrics
from .cost_metrics import (
    compute_cost_metrics,
    compute_model_cost_breakdown,
    compute_task_cost_metrics,
)
from .dashboard import compute_agent_comparison, compute_all_metrics, compute_trends
from .run_metrics import compute_duration_metrics, compute_failed_runs, compute_run_metrics
from .service import TelemetryService
from .task_metrics import compute_task_metrics, compute_velocity_metrics
from .token_metrics import compute_budget_metrics, compute_token_metrics

__all__ = [
    "TelemetryService",
    "compute_accuracy_metrics",
    "compute_agent_comparison",
    "compute_all_metrics",
    "compute_budget_metrics",
    "compute_cost_metrics",
    "compute_duration_metrics",
    "compute_failed_runs",
    "compute_model_cost_breakdown",
    "compute_run_metrics",
    "compute_task_cost_metrics",
    "compute_task_metrics",
    "compute_token_metrics",
    "compute_trends",
    "compute_velocity_metrics",
]
