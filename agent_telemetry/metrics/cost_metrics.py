"""
Cost-related metrics.

Every run.tokens event is priced with the pricing table (not the cost the
agent reported), so totals stay comparable across agents that do and don't
report their own cost.
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from agent_telemetry.core.periods import PeriodLike
from agent_telemetry.core.pricing import PricingTable, round_cost
from agent_telemetry.core.stats import safe_ratio
from agent_telemetry.storage.models import TokenEvent
from agent_telemetry.storage.reader import scan

from .token_metrics import TOKEN_TYPES, event_cost
from .types import (
    CostAccumulator,
    CostMetrics,
    ModelCostBreakdown,
    TaskCostEntry,
    TaskCostMetrics,
)
from .window import Bound, scan_window

UNKNOWN_MODEL = "unknown"


def add_cost(event: TokenEvent, acc: CostAccumulator, pricing: Optional[PricingTable] = None) -> None:
    """Add one run.tokens event's usage and priced cost to an accumulator."""
    acc.total_tokens += event.tokens
    acc.input_tokens += event.input_tokens
    acc.output_tokens += event.output_tokens
    acc.cache_tokens += event.cache
    acc.runs += 1
    acc.cost += event_cost(event, pricing)


def _grouped_costs(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    key: Callable[[TokenEvent], Optional[str]],
    project: Optional[str],
    pricing: Optional[PricingTable],
    start: Bound,
    end: Bound
):
    """Scan the window once, accumulating cost per ``key(event)``.

    Events whose key is None are ignored.
    """
    window = scan_window(telemetry_dir, period, start, end)
    groups: Dict[str, CostAccumulator] = {}

    def collect(event: TokenEvent, acc: Dict[str, CostAccumulator]) -> None:
        group = key(event)
        if group is None:
            return
        if group not in acc:
            acc[group] = CostAccumulator()
        add_cost(event, acc[group], pricing)

    scan(window.files, TOKEN_TYPES, window.since, project, groups, collect, until=window.until)
    return window, groups


def compute_cost_metrics(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    project: Optional[str] = None,
    pricing: Optional[PricingTable] = None,
    start: Bound = None,
    end: Bound = None
) -> CostMetrics:
    """Total cost and token usage for a period.

    Args:
        telemetry_dir: Directory holding the partition files
        period: Period selector
        project: Only count usage for this project
        pricing: Pricing table (defaults to the built-in table)
        start: Lower bound for the custom period
        end: Optional upper bound

    Returns:
        CostMetrics with costs rounded to 4 decimals
    """
    window = scan_window(telemetry_dir, period, start, end)
    acc = CostAccumulator()
    scan(
        window.files, TOKEN_TYPES, window.since, project, acc,
        lambda event, acc: add_cost(event, acc, pricing), until=window.until
    )

    return CostMetrics(
        period=window.period,
        total_cost=round_cost(acc.cost),
        total_tokens=acc.total_tokens,
        input_tokens=acc.input_tokens,
        output_tokens=acc.output_tokens,
        cache_tokens=acc.cache_tokens,
        runs=acc.runs,
        average_cost_per_run=round_cost(safe_ratio(acc.cost, acc.runs)),
    )


def compute_model_cost_breakdown(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    project: Optional[str] = None,
    pricing: Optional[PricingTable] = None,
    start: Bound = None,
    end: Bound = None
) -> List[ModelCostBreakdown]:
    """Cost and usage per model, most expensive first."""
    _, groups = _grouped_costs(
        telemetry_dir, period, lambda event: event.model or UNKNOWN_MODEL,
        project, pricing, start, end
    )

    breakdown = [
        ModelCostBreakdown(
            model=model,
            total_cost=round_cost(data.cost),
            total_tokens=data.total_tokens,
            input_tokens=data.input_tokens,
            output_tokens=data.output_tokens,
            cache_tokens=data.cache_tokens,
            runs=data.runs,
            average_cost_per_run=round_cost(safe_ratio(data.cost, data.runs)),
        )
        for model, data in groups.items()
    ]
    breakdown.sort(key=lambda item: item.total_cost, reverse=True)
    return breakdown


def compute_task_cost_metrics(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    project: Optional[str] = None,
    pricing: Optional[PricingTable] = None,
    start: Bound = None,
    end: Bound = None
) -> TaskCostMetrics:
    """Cost per task, most expensive first.

    Token events that aren't attached to a task are left out.
    """
    window, groups = _grouped_costs(
        telemetry_dir, period, lambda event: event.task_id,
        project, pricing, start, end
    )

    tasks = [
        TaskCostEntry(
            task_id=task_id,
            input_tokens=data.input_tokens,
            output_tokens=data.output_tokens,
            total_tokens=data.total_tokens,
            estimated_cost=round_cost(data.cost),
            runs=data.runs,
            avg_cost_per_run=round_cost(safe_ratio(data.cost, data.runs)),
        )
        for task_id, data in groups.items()
    ]
    tasks.sort(key=lambda item: item.estimated_cost, reverse=True)

    total_cost = sum(data.cost for data in groups.values())
    return TaskCostMetrics(
        period=window.period,
        tasks=tasks,
        total_cost=round_cost(total_cost),
        avg_cost_per_task=round_cost(safe_ratio(total_cost, len(tasks))),
    )
