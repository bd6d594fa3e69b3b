"""
Token-related metrics: token usage and monthly budget burn rate.
"""

import calendar
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from agent_telemetry.config.loader import BudgetConfig
from agent_telemetry.core.periods import (
    MetricsPeriod,
    PeriodLike,
    format_timestamp,
    utc_now,
)
from agent_telemetry.core.pricing import PricingTable, calculate_cost
from agent_telemetry.core.stats import percentile, round_half_up, safe_ratio
from agent_telemetry.core.token_counter import TokenUsage
from agent_telemetry.storage.models import EventType, TokenEvent
from agent_telemetry.storage.reader import list_partition_files, scan

from .types import (
    AgentTokens,
    BudgetMetrics,
    BudgetStatus,
    CostAccumulator,
    TokenAccumulator,
    TokenDistribution,
    TokenMetrics,
)
from .window import Bound, scan_window

TOKEN_TYPES = (EventType.RUN_TOKENS,)


def usage_of(event: TokenEvent) -> TokenUsage:
    """Token usage of a run.tokens event."""
    return TokenUsage(
        input_tokens=event.input_tokens,
        output_tokens=event.output_tokens,
        cache_tokens=event.cache,
    )


def event_cost(event: TokenEvent, pricing: Optional[PricingTable] = None) -> float:
    """Priced cost of a run.tokens event (4 decimals), from the pricing table."""
    return calculate_cost(event.model, usage_of(event), pricing)


def accumulate_tokens(event: TokenEvent, acc: TokenAccumulator) -> None:
    """Add one run.tokens event to the totals and its agent's totals."""
    tokens = event.tokens
    acc.total_tokens += tokens
    acc.input_tokens += event.input_tokens
    acc.output_tokens += event.output_tokens
    acc.cache_tokens += event.cache
    acc.runs += 1
    acc.tokens_per_run.append(tokens)

    agent_acc = acc.for_agent(event.agent_name)
    agent_acc.total_tokens += tokens
    agent_acc.input_tokens += event.input_tokens
    agent_acc.output_tokens += event.output_tokens
    agent_acc.cache_tokens += event.cache
    agent_acc.runs += 1


def build_token_metrics(period: MetricsPeriod, acc: TokenAccumulator) -> TokenMetrics:
    """Derive TokenMetrics from a filled accumulator."""
    per_run = sorted(acc.tokens_per_run)

    by_agent = [
        AgentTokens(
            agent=agent,
            total_tokens=data.total_tokens,
            input_tokens=data.input_tokens,
            output_tokens=data.output_tokens,
            cache_tokens=data.cache_tokens,
            runs=data.runs,
        )
        for agent, data in acc.by_agent.items()
    ]
    by_agent.sort(key=lambda item: item.total_tokens, reverse=True)

    return TokenMetrics(
        period=period,
        total_tokens=acc.total_tokens,
        input_tokens=acc.input_tokens,
        output_tokens=acc.output_tokens,
        cache_tokens=acc.cache_tokens,
        runs=acc.runs,
        per_run=TokenDistribution(
            avg=int(round_half_up(safe_ratio(acc.total_tokens, acc.runs))),
            p50=percentile(per_run, 50),
            p95=percentile(per_run, 95),
        ),
        by_agent=by_agent,
    )


def compute_token_metrics(
    telemetry_dir: Union[str, Path],
    period: PeriodLike,
    project: Optional[str] = None,
    start: Bound = None,
    end: Bound = None
) -> TokenMetrics:
    """Token totals, per-run distribution and per-agent breakdown."""
    window = scan_window(telemetry_dir, period, start, end)
    acc = TokenAccumulator()
    scan(window.files, TOKEN_TYPES, window.since, project, acc, accumulate_tokens, until=window.until)
    return build_token_metrics(window.period, acc)


def _budget_status(budget: BudgetConfig, *usages: float) -> BudgetStatus:
    highest = max(usages) if usages else 0
    if highest >= 100:
        return BudgetStatus.DANGER
    if highest >= budget.warning_threshold:
        return BudgetStatus.WARNING
    return BudgetStatus.OK


def compute_budget_metrics(
    telemetry_dir: Union[str, Path],
    budget: Optional[BudgetConfig] = None,
    project: Optional[str] = None,
    pricing: Optional[PricingTable] = None,
    now: Optional[datetime] = None
) -> BudgetMetrics:
    """Month-to-date spend, burn rate and end-of-month projection.

    Cost uses the cost reported on each event when present and the pricing
    table otherwise.

    Args:
        telemetry_dir: Directory holding the partition files
        budget: Token/cost limits and warning threshold (0 limits are ignored)
        project: Only count usage for this project
        pricing: Pricing table for events without a reported cost
        now: Reference time (defaults to the current UTC time)

    Returns:
        BudgetMetrics for the current UTC calendar month
    """
    budget = budget or BudgetConfig()
    now = now or utc_now()

    days_in_month = calendar.monthrange(now.year, now.month)[1]
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    since = format_timestamp(month_start)
    days_elapsed = now.day

    acc = CostAccumulator()

    def add_usage(event: TokenEvent, acc: CostAccumulator) -> None:
        acc.total_tokens += event.tokens
        acc.input_tokens += event.input_tokens
        acc.output_tokens += event.output_tokens
        acc.cache_tokens += event.cache
        acc.runs += 1
        acc.cost += event.cost if event.cost is not None else event_cost(event, pricing)

    files = list_partition_files(telemetry_dir, since)
    scan(files, TOKEN_TYPES, since, project, acc, add_usage, until=format_timestamp(now))

    tokens_per_day = safe_ratio(acc.total_tokens, days_elapsed)
    cost_per_day = safe_ratio(acc.cost, days_elapsed)
    projected_tokens = int(round_half_up(tokens_per_day * days_in_month))
    projected_cost = cost_per_day * days_in_month

    token_used = safe_ratio(acc.total_tokens, budget.token_budget) * 100
    cost_used = safe_ratio(acc.cost, budget.cost_budget) * 100
    projected_token_overage = safe_ratio(projected_tokens, budget.token_budget) * 100
    projected_cost_overage = safe_ratio(projected_cost, budget.cost_budget) * 100

    return BudgetMetrics(
        period_start=month_start.date().isoformat(),
        period_end=month_start.replace(day=days_in_month).date().isoformat(),
        days_in_month=days_in_month,
        days_elapsed=days_elapsed,
        days_remaining=days_in_month - days_elapsed,
        total_tokens=acc.total_tokens,
        input_tokens=acc.input_tokens,
        output_tokens=acc.output_tokens,
        estimated_cost=round_half_up(acc.cost, 2),
        tokens_per_day=int(round_half_up(tokens_per_day)),
        cost_per_day=round_half_up(cost_per_day, 2),
        projected_monthly_tokens=projected_tokens,
        projected_monthly_cost=round_half_up(projected_cost, 2),
        token_budget=budget.token_budget,
        cost_budget=budget.cost_budget,
        token_budget_used=round_half_up(token_used, 1),
        cost_budget_used=round_half_up(cost_used, 1),
        projected_token_overage=round_half_up(projected_token_overage, 1),
        projected_cost_overage=round_half_up(projected_cost_overage, 1),
        status=_budget_status(
            budget, token_used, cost_used, projected_token_overage, projected_cost_overage
        ),
    )
