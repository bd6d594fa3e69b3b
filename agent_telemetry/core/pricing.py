"""
Pricing calculations and rate management.

Handles cost computations for the models agents run on.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

from .token_counter import TokenUsage

ONE_MILLION = Decimal("1000000")
COST_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1m: Decimal  # Cost per 1M input tokens
    output_cost_per_1m: Decimal  # Cost per 1M output tokens
    cache_cost_per_1m: Optional[Decimal] = None  # Cost per 1M cache tokens, if billed


@dataclass(frozen=True)
class PricingTable:
    """Pricing table with a fallback for unknown models."""
    prices: Dict[str, ModelPricing]
    default: ModelPricing = field(default_factory=lambda: DEFAULT_PRICING)

    def get_pricing(self, model: Optional[str]) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model identifier (None or unknown models use the default)

        Returns:
            ModelPricing for the model
        """
        if model and model in self.prices:
            return self.prices[model]
        return self.default

    def has_pricing(self, model: str) -> bool:
        """Check whether a model has explicit pricing."""
        return model in self.prices

    def with_overrides(self, overrides: Dict[str, ModelPricing]) -> "PricingTable":
        """Return a new table with additional or replaced model prices."""
        merged = dict(self.prices)
        merged.update(overrides)
        return PricingTable(prices=merged, default=self.default)


# Mid-tier pricing applied to models missing from the table
DEFAULT_PRICING = ModelPricing(
    input_cost_per_1m=Decimal("3.00"),
    output_cost_per_1m=Decimal("15.00")
)

PRICING_TABLE = PricingTable({
    "anthropic/claude-opus-4-5": ModelPricing(
        input_cost_per_1m=Decimal("15.00"),
        output_cost_per_1m=Decimal("75.00")
    ),
    "anthropic/claude-sonnet-4-5": ModelPricing(
        input_cost_per_1m=Decimal("3.00"),
        output_cost_per_1m=Decimal("15.00")
    ),
    "anthropic/claude-haiku-4-5": ModelPricing(
        input_cost_per_1m=Decimal("0.80"),
        output_cost_per_1m=Decimal("4.00")
    ),
    "openai-codex/gpt-5.2": ModelPricing(
        input_cost_per_1m=Decimal("2.50"),
        output_cost_per_1m=Decimal("10.00")
    ),
    "openai-codex/gpt-5.1": ModelPricing(
        input_cost_per_1m=Decimal("2.00"),
        output_cost_per_1m=Decimal("8.00")
    ),
    "openai-codex/gpt-5.2-codex": ModelPricing(
        input_cost_per_1m=Decimal("2.50"),
        output_cost_per_1m=Decimal("10.00")
    ),
}, default=DEFAULT_PRICING)


def round_cost(cost: float) -> float:
    """Round a dollar amount half-up to 4 decimal places."""
    return float(Decimal(str(cost)).quantize(COST_QUANTUM, rounding=ROUND_HALF_UP))


def calculate_cost(
    model: Optional[str],
    usage: TokenUsage,
    table: Optional[PricingTable] = None
) -> float:
    """Calculate the cost of one run's token usage.

    Args:
        model: Model identifier (unknown models use the default pricing)
        usage: Token usage data
        table: Pricing table to use (defaults to PRICING_TABLE)

    Returns:
        Cost in USD rounded half-up to 4 decimal places
    """
    pricing = (table or PRICING_TABLE).get_pricing(model)

    input_cost = Decimal(usage.input_tokens) / ONE_MILLION * pricing.input_cost_per_1m
    output_cost = Decimal(usage.output_tokens) / ONE_MILLION * pricing.output_cost_per_1m
    total_cost = input_cost + output_cost

    # Cache tokens only cost money when the model bills them
    if usage.cache_tokens and pricing.cache_cost_per_1m is not None:
        total_cost += Decimal(usage.cache_tokens) / ONE_MILLION * pricing.cache_cost_per_1m

    return float(total_cost.quantize(COST_QUANTUM, rounding=ROUND_HALF_UP))
