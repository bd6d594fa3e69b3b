"""
Result and accumulator types for the metrics computers.

Results are plain dataclasses; ``to_dict()`` renders them in the camelCase
shape served to dashboards. Accumulators live for a single computation.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from agent_telemetry.core.periods import MetricsPeriod
from agent_telemetry.core.stats import TrendDirection
from agent_telemetry.storage.models import to_camel


def _camelize(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {to_camel(f.name): _camelize(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _camelize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_camelize(item) for item in value]
    return value


class MetricsResult:
    """Mixin giving result dataclasses a serializable form."""

    def to_dict(self) -> Dict[str, Any]:
        return _camelize(self)


class VelocityTrend(str, Enum):
    ACCELERATING = "accelerating"
    STEADY = "steady"
    SLOWING = "slowing"


class BudgetStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    DANGER = "danger"


# ── Runs ────────────────────────────────────────────────────────────

@dataclass
class AgentBreakdown(MetricsResult):
    agent: str
    runs: int
    successes: int
    failures: int
    errors: int
    success_rate: float
    avg_duration_ms: int
    total_tokens: int = 0


@dataclass
class RunMetrics(MetricsResult):
    period: MetricsPeriod
    runs: int
    successes: int
    failures: int
    errors: int
    error_rate: float  # (failures + errors) / runs
    success_rate: float  # successes / runs
    by_agent: List[AgentBreakdown] = field(default_factory=list)


@dataclass
class AgentDuration(MetricsResult):
    agent: str
    runs: int
    avg_ms: int
    p50_ms: float
    p95_ms: float


@dataclass
class DurationMetrics(MetricsResult):
    period: MetricsPeriod
    runs: int
    avg_ms: int
    p50_ms: float
    p95_ms: float
    by_agent: List[AgentDuration] = field(default_factory=list)


@dataclass
class FailedRunDetails(MetricsResult):
    timestamp: str
    agent: str
    task_id: Optional[str] = None
    project: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: Optional[float] = None
    success: bool = False


# ── Tokens and cost ─────────────────────────────────────────────────

@dataclass
class TokenDistribution(MetricsResult):
    avg: int
    p50: int
    p95: int


@dataclass
class AgentTokens(MetricsResult):
    agent: str
    total_tokens: int
    input_tokens: int
    output_tokens: int
    cache_tokens: int
    runs: int


@dataclass
class TokenMetrics(MetricsResult):
    period: MetricsPeriod
    total_tokens: int
    input_tokens: int
    output_tokens: int
    cache_tokens: int
    runs: int
    per_run: TokenDistribution
    by_agent: List[AgentTokens] = field(default_factory=list)


@dataclass
class CostMetrics(MetricsResult):
    period: MetricsPeriod
    total_cost: float
    total_tokens: int
    input_tokens: int
    output_tokens: int
    cache_tokens: int
    runs: int
    average_cost_per_run: float


@dataclass
class ModelCostBreakdown(MetricsResult):
    model: str
    total_cost: float
    total_tokens: int
    input_tokens: int
    output_tokens: int
    cache_tokens: int
    runs: int
    average_cost_per_run: float


@dataclass
class TaskCostEntry(MetricsResult):
    task_id: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost: float
    runs: int
    avg_cost_per_run: float


@dataclass
class TaskCostMetrics(MetricsResult):
    period: MetricsPeriod
    tasks: List[TaskCostEntry]
    total_cost: float
    avg_cost_per_task: float


@dataclass
class BudgetMetrics(MetricsResult):
    period_start: str  # First day of the month (YYYY-MM-DD)
    period_end: str  # Last day of the month (YYYY-MM-DD)
    days_in_month: int
    days_elapsed: int
    days_remaining: int
    total_tokens: int
    input_tokens: int
    output_tokens: int
    estimated_cost: float
    tokens_per_day: int
    cost_per_day: float
    projected_monthly_tokens: int
    projected_monthly_cost: float
    token_budget: int  # 0 = no limit
    cost_budget: float  # 0 = no limit
    token_budget_used: float  # percent
    cost_budget_used: float  # percent
    projected_token_overage: float  # projected / budget, percent
    projected_cost_overage: float
    status: BudgetStatus


# ── Tasks ───────────────────────────────────────────────────────────

@dataclass
class TaskMetrics(MetricsResult):
    by_status: Dict[str, int]
    by_blocked_reason: Dict[str, int]
    total: int
    completed: int  # done + archived
    archived: int


@dataclass
class SprintVelocityPoint(MetricsResult):
    sprint: str
    completed: int
    total: int
    rolling_average: float  # mean completed over this and the previous two sprints
    by_type: Dict[str, int] = field(default_factory=dict)


@dataclass
class CurrentSprintProgress(MetricsResult):
    sprint: str
    completed: int
    total: int
    percent_complete: float
    vs_average: float  # percent above (+) or below (-) the average velocity


@dataclass
class VelocityMetrics(MetricsResult):
    sprints: List[SprintVelocityPoint]  # oldest to newest
    average_velocity: float
    trend: VelocityTrend
    current_sprint: Optional[CurrentSprintProgress] = None


@dataclass
class AccuracyBucket(MetricsResult):
    count: int
    avg_accuracy: float


@dataclass
class AccuracyMetrics(MetricsResult):
    total_predictions: int
    average_accuracy: float
    by_task_type: Dict[str, AccuracyBucket]
    by_agent: Dict[str, AccuracyBucket]
    over_budget_count: int
    under_budget_count: int
    perfect_count: int  # accuracy > 0.9


# ── Composite views ─────────────────────────────────────────────────

@dataclass
class TrendComparison(MetricsResult):
    runs_trend: TrendDirection
    runs_change: int
    success_rate_trend: TrendDirection
    success_rate_change: int
    tokens_trend: TrendDirection
    tokens_change: int
    duration_trend: TrendDirection
    duration_change: int


@dataclass
class DashboardMetrics(MetricsResult):
    tasks: Optional[TaskMetrics]
    runs: RunMetrics
    tokens: TokenMetrics
    duration: DurationMetrics
    trends: TrendComparison


@dataclass
class DailyTrendPoint(MetricsResult):
    date: str
    runs: int = 0
    successes: int = 0
    failures: int = 0
    errors: int = 0
    success_rate: float = 0.0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_estimate: float = 0.0
    avg_duration_ms: int = 0
    tasks_created: int = 0
    status_changes: int = 0
    tasks_archived: int = 0


@dataclass
class TrendsData(MetricsResult):
    period: MetricsPeriod
    daily: List[DailyTrendPoint]


@dataclass
class AgentComparisonData(MetricsResult):
    agent: str
    runs: int
    successes: int
    failures: int  # failures + errors
    success_rate: float  # percent, 1 decimal
    avg_duration_ms: int
    avg_tokens_per_run: int
    total_tokens: int
    avg_cost_per_run: float
    total_cost: float


@dataclass
class AgentRecommendation(MetricsResult):
    category: str  # reliability, speed, cost or efficiency
    agent: str
    value: str
    reason: str


@dataclass
class AgentComparisonResult(MetricsResult):
    period: MetricsPeriod
    min_runs: int
    agents: List[AgentComparisonData]
    recommendations: List[AgentRecommendation]
    total_agents: int
    qualifying_agents: int


# ── Accumulators ────────────────────────────────────────────────────

@dataclass
class AgentRunAccumulator:
    successes: int = 0
    failures: int = 0
    errors: int = 0
    durations: List[float] = field(default_factory=list)

    @property
    def runs(self) -> int:
        return self.successes + self.failures + self.errors


@dataclass
class RunAccumulator(AgentRunAccumulator):
    by_agent: Dict[str, AgentRunAccumulator] = field(default_factory=dict)

    def for_agent(self, agent: str) -> AgentRunAccumulator:
        if agent not in self.by_agent:
            self.by_agent[agent] = AgentRunAccumulator()
        return self.by_agent[agent]


@dataclass
class AgentTokenAccumulator:
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_tokens: int = 0
    runs: int = 0


@dataclass
class TokenAccumulator(AgentTokenAccumulator):
    tokens_per_run: List[int] = field(default_factory=list)
    by_agent: Dict[str, AgentTokenAccumulator] = field(default_factory=dict)

    def for_agent(self, agent: str) -> AgentTokenAccumulator:
        if agent not in self.by_agent:
            self.by_agent[agent] = AgentTokenAccumulator()
        return self.by_agent[agent]


@dataclass
class CostAccumulator:
    cost: float = 0.0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_tokens: int = 0
    runs: int = 0


@dataclass
class AgentUsageAccumulator(AgentRunAccumulator):
    """Run outcomes plus token usage and cost for one agent."""
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


@dataclass
class DailyAccumulator(AgentUsageAccumulator):
    tasks_created: int = 0
    status_changes: int = 0
    tasks_archived: int = 0
