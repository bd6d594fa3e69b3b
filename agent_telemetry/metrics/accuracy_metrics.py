"""
Cost prediction accuracy across tasks.
"""

from typing import Dict, List, Optional

from agent_telemetry.core.stats import round_half_up
from agent_telemetry.storage.tasks import TaskSource

from .types import AccuracyBucket, AccuracyMetrics

# Accuracy above this counts as a near-perfect prediction
PERFECT_ACCURACY = 0.9


def _buckets(groups: Dict[str, List[float]]) -> Dict[str, AccuracyBucket]:
    return {
        key: AccuracyBucket(
            count=len(values),
            avg_accuracy=round_half_up(sum(values) / len(values), 3),
        )
        for key, values in groups.items()
    }


def compute_accuracy_metrics(task_source: TaskSource, project: Optional[str] = None) -> AccuracyMetrics:
    """Summarize how well cost estimates matched actual cost.

    Only active tasks carrying both an estimate and a computed accuracy
    count as predictions.

    Args:
        task_source: Read access to the task board
        project: Only consider tasks for this project

    Returns:
        AccuracyMetrics; all zero when there are no predictions
    """
    predictions = [
        task for task in task_source.list_tasks()
        if task.cost_estimate and task.cost_accuracy is not None
        and (not project or task.project == project)
    ]

    if not predictions:
        return AccuracyMetrics(
            total_predictions=0,
            average_accuracy=0.0,
            by_task_type={},
            by_agent={},
            over_budget_count=0,
            under_budget_count=0,
            perfect_count=0,
        )

    over_budget = under_budget = perfect = 0
    by_type: Dict[str, List[float]] = {}
    by_agent: Dict[str, List[float]] = {}

    for task in predictions:
        accuracy = task.cost_accuracy.accuracy
        if accuracy > PERFECT_ACCURACY:
            perfect += 1
        if task.cost_accuracy.cost_delta > 0:
            over_budget += 1
        elif task.cost_accuracy.cost_delta < 0:
            under_budget += 1

        by_type.setdefault(task.type or "unknown", []).append(accuracy)
        by_agent.setdefault(task.agent or "unknown", []).append(accuracy)

    total = sum(task.cost_accuracy.accuracy for task in predictions)
    return AccuracyMetrics(
        total_predictions=len(predictions),
        average_accuracy=round_half_up(total / len(predictions), 3),
        by_task_type=_buckets(by_type),
        by_agent=_buckets(by_agent),
        over_budget_count=over_budget,
        under_budget_count=under_budget,
        perfect_count=perfect,
    )
