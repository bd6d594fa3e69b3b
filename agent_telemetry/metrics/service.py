"""
Async facade over the event store and metrics computers.

The store and computers do blocking file I/O; every method here runs the
underlying call in a worker thread so it can be awaited from an event loop.
"""

import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from agent_telemetry.config.loader import BudgetConfig, Settings
from agent_telemetry.core.periods import PeriodLike
from agent_telemetry.core.pricing import PRICING_TABLE, PricingTable
from agent_telemetry.storage.event_store import EventStore, TypeFilter
from agent_telemetry.storage.models import EventType, TelemetryEvent
from agent_telemetry.storage.tasks import TaskSource

from .accuracy_metrics import compute_accuracy_metrics
from .cost_metrics import (
    compute_cost_metrics,
    compute_model_cost_breakdown,
    compute_task_cost_metrics,
)
from .dashboard import compute_agent_comparison, compute_all_metrics, compute_trends
from .run_metrics import (
    DEFAULT_FAILED_RUN_LIMIT,
    compute_duration_metrics,
    compute_failed_runs,
    compute_run_metrics,
)
from .task_metrics import DEFAULT_SPRINT_LIMIT, compute_task_metrics, compute_velocity_metrics
from .token_metrics import compute_budget_metrics, compute_token_metrics
from .types import (
    AccuracyMetrics,
    AgentComparisonResult,
    BudgetMetrics,
    CostMetrics,
    DashboardMetrics,
    DurationMetrics,
    FailedRunDetails,
    ModelCostBreakdown,
    RunMetrics,
    TaskCostMetrics,
    TaskMetrics,
    TokenMetrics,
    TrendsData,
    VelocityMetrics,
)
from .window import Bound


class TelemetryService:
    """Awaitable access to one telemetry directory."""

    def __init__(
        self,
        store: EventStore,
        task_source: Optional[TaskSource] = None,
        pricing: Optional[PricingTable] = None,
        budget: Optional[BudgetConfig] = None
    ):
        self.store = store
        self.task_source = task_source
        self.pricing = pricing or PRICING_TABLE
        self.budget = budget or BudgetConfig()
        self._emit_lock: Optional[asyncio.Lock] = None

    @classmethod
    def from_settings(cls, settings: Settings, task_source: Optional[TaskSource] = None) -> "TelemetryService":
        """Build a service, and its store, from loaded settings."""
        store = EventStore(settings.directory, settings.telemetry)
        return cls(store, task_source=task_source, pricing=settings.pricing, budget=settings.budget)

    @property
    def telemetry_dir(self):
        return self.store.directory

    def _require_tasks(self) -> TaskSource:
        if self.task_source is None:
            raise ValueError("task metrics need a task source")
        return self.task_source

    # ============ Store ============

    async def emit(
        self,
        event_type: Union[EventType, str],
        *,
        task_id: Optional[str] = None,
        project: Optional[str] = None,
        **fields
    ) -> TelemetryEvent:
        # Writes from one service are appended in the order they were awaited
        if self._emit_lock is None:
            self._emit_lock = asyncio.Lock()
        async with self._emit_lock:
            return await asyncio.to_thread(
                self.store.emit, event_type, task_id=task_id, project=project, **fields
            )

    async def get_events(
        self,
        type: Optional[TypeFilter] = None,
        task_id: Optional[str] = None,
        project: Optional[str] = None,
        since: Optional[Union[str, datetime]] = None,
        until: Optional[Union[str, datetime]] = None,
        limit: Optional[int] = None
    ) -> List[TelemetryEvent]:
        return await asyncio.to_thread(
            self.store.get_events, type, task_id, project, since, until, limit
        )

    async def get_task_events(self, task_id: str) -> List[TelemetryEvent]:
        return await asyncio.to_thread(self.store.get_task_events, task_id)

    async def get_events_since(self, since: Union[str, datetime]) -> List[TelemetryEvent]:
        return await asyncio.to_thread(self.store.get_events_since, since)

    async def get_bulk_task_events(self, task_ids: Iterable[str]) -> Dict[str, List[TelemetryEvent]]:
        return await asyncio.to_thread(self.store.get_bulk_task_events, list(task_ids))

    async def count_events(
        self,
        type: TypeFilter,
        since: Optional[Union[str, datetime]] = None,
        until: Optional[Union[str, datetime]] = None
    ) -> int:
        return await asyncio.to_thread(self.store.count_events, type, since, until)

    async def clear(self) -> None:
        await asyncio.to_thread(self.store.clear)

    async def prune_expired(self, now: Optional[datetime] = None):
        return await asyncio.to_thread(self.store.prune_expired, now)

    async def compress_partitions(self, now: Optional[datetime] = None):
        return await asyncio.to_thread(self.store.compress_partitions, now)

    # ============ Event log metrics ============

    async def run_metrics(
        self, period: PeriodLike, project: Optional[str] = None, start: Bound = None, end: Bound = None
    ) -> RunMetrics:
        return await asyncio.to_thread(
            compute_run_metrics, self.telemetry_dir, period, project, start, end
        )

    async def duration_metrics(
        self, period: PeriodLike, project: Optional[str] = None, start: Bound = None, end: Bound = None
    ) -> DurationMetrics:
        return await asyncio.to_thread(
            compute_duration_metrics, self.telemetry_dir, period, project, start, end
        )

    async def failed_runs(
        self,
        period: PeriodLike,
        project: Optional[str] = None,
        limit: int = DEFAULT_FAILED_RUN_LIMIT,
        start: Bound = None,
        end: Bound = None
    ) -> List[FailedRunDetails]:
        return await asyncio.to_thread(
            compute_failed_runs, self.telemetry_dir, period, project, limit, start, end
        )

    async def token_metrics(
        self, period: PeriodLike, project: Optional[str] = None, start: Bound = None, end: Bound = None
    ) -> TokenMetrics:
        return await asyncio.to_thread(
            compute_token_metrics, self.telemetry_dir, period, project, start, end
        )

    async def cost_metrics(
        self, period: PeriodLike, project: Optional[str] = None, start: Bound = None, end: Bound = None
    ) -> CostMetrics:
        return await asyncio.to_thread(
            compute_cost_metrics, self.telemetry_dir, period, project, self.pricing, start, end
        )

    async def model_cost_breakdown(
        self, period: PeriodLike, project: Optional[str] = None, start: Bound = None, end: Bound = None
    ) -> List[ModelCostBreakdown]:
        return await asyncio.to_thread(
            compute_model_cost_breakdown, self.telemetry_dir, period, project, self.pricing, start, end
        )

    async def task_cost_metrics(
        self, period: PeriodLike, project: Optional[str] = None, start: Bound = None, end: Bound = None
    ) -> TaskCostMetrics:
        return await asyncio.to_thread(
            compute_task_cost_metrics, self.telemetry_dir, period, project, self.pricing, start, end
        )

    async def budget_metrics(self, project: Optional[str] = None, now: Optional[datetime] = None) -> BudgetMetrics:
        return await asyncio.to_thread(
            compute_budget_metrics, self.telemetry_dir, self.budget, project, self.pricing, now
        )

    async def trends(
        self, period: PeriodLike, project: Optional[str] = None, start: Bound = None, end: Bound = None
    ) -> TrendsData:
        return await asyncio.to_thread(
            compute_trends, self.telemetry_dir, period, project, self.pricing, start, end
        )

    async def agent_comparison(
        self, period: PeriodLike, project: Optional[str] = None, min_runs: int = 3
    ) -> AgentComparisonResult:
        return await asyncio.to_thread(
            compute_agent_comparison, self.telemetry_dir, period, project, min_runs, self.pricing
        )

    async def all_metrics(
        self, period: PeriodLike, project: Optional[str] = None, start: Bound = None, end: Bound = None
    ) -> DashboardMetrics:
        return await asyncio.to_thread(
            compute_all_metrics, self.task_source, self.telemetry_dir, period, project, start, end
        )

    # ============ Task board metrics ============

    async def task_metrics(
        self, project: Optional[str] = None, since: Optional[Union[str, datetime]] = None
    ) -> TaskMetrics:
        return await asyncio.to_thread(compute_task_metrics, self._require_tasks(), project, since)

    async def velocity_metrics(
        self,
        project: Optional[str] = None,
        limit: int = DEFAULT_SPRINT_LIMIT,
        sprint_labels: Optional[Dict[str, str]] = None
    ) -> VelocityMetrics:
        return await asyncio.to_thread(
            compute_velocity_metrics, self._require_tasks(), project, limit, sprint_labels
        )

    async def accuracy_metrics(self, project: Optional[str] = None) -> AccuracyMetrics:
        return await asyncio.to_thread(compute_accuracy_metrics, self._require_tasks(), project)
