"""
Configuration management and loading.

Handles telemetry settings, budget limits and pricing overrides.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from agent_telemetry.core.pricing import PRICING_TABLE, ModelPricing, PricingTable

DEFAULT_TELEMETRY_DIR = Path(".agent-telemetry") / "telemetry"
DEFAULT_RETENTION_DAYS = 30
DEFAULT_WARNING_THRESHOLD = 80.0


@dataclass(frozen=True)
class TelemetryConfig:
    """Runtime settings of the event store."""
    enabled: bool = True
    retention_days: int = DEFAULT_RETENTION_DAYS

    def __post_init__(self):
        """Validate telemetry settings."""
        if not isinstance(self.enabled, bool):
            raise ValueError("enabled must be a boolean")
        if isinstance(self.retention_days, bool) or not isinstance(self.retention_days, int):
            raise ValueError("retention_days must be an integer")
        if self.retention_days <= 0:
            raise ValueError("retention_days must be > 0")


@dataclass(frozen=True)
class BudgetConfig:
    """Monthly budget limits; 0 means no limit."""
    token_budget: int = 0
    cost_budget: float = 0.0
    warning_threshold: float = DEFAULT_WARNING_THRESHOLD

    def __post_init__(self):
        """Validate budget values."""
        if self.token_budget < 0:
            raise ValueError("token_budget must be >= 0")
        if self.cost_budget < 0:
            raise ValueError("cost_budget must be >= 0")
        if not 0 < self.warning_threshold <= 100:
            raise ValueError("warning_threshold must be between 0 and 100")


@dataclass(frozen=True)
class Settings:
    """Complete application configuration."""
    directory: Path = DEFAULT_TELEMETRY_DIR
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    pricing: PricingTable = PRICING_TABLE


def load_settings(path: Union[str, Path]) -> Settings:
    """Load and validate configuration from a YAML file.

    Strict validation ensures no silent misconfigurations; unknown keys are
    rejected. Every section is optional.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return Settings()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'telemetry', 'budget', 'pricing'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    directory, telemetry = _parse_telemetry(_section(raw_config, 'telemetry'))
    budget = _parse_budget(_section(raw_config, 'budget'))

    pricing = PRICING_TABLE
    pricing_data = _section(raw_config, 'pricing')
    if pricing_data:
        overrides = {
            model: _parse_model_pricing(data, f"pricing.{model}")
            for model, data in pricing_data.items()
        }
        pricing = PRICING_TABLE.with_overrides(overrides)

    return Settings(
        directory=directory,
        telemetry=telemetry,
        budget=budget,
        pricing=pricing
    )


def _section(raw_config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a top-level section, validating it is a dictionary."""
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict[str, Any], allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _parse_telemetry(data: Dict[str, Any]):
    """Parse the telemetry section into a directory and TelemetryConfig."""
    _check_keys(data, {'directory', 'enabled', 'retention_days'}, 'telemetry')

    directory = data.get('directory', DEFAULT_TELEMETRY_DIR)
    if not isinstance(directory, (str, Path)) or not str(directory).strip():
        raise ValueError("'directory' in telemetry must be a non-empty string")

    enabled = data.get('enabled', True)
    if not isinstance(enabled, bool):
        raise ValueError("'enabled' in telemetry must be true or false")

    retention_days = data.get('retention_days', DEFAULT_RETENTION_DAYS)
    if isinstance(retention_days, bool) or not isinstance(retention_days, int) or retention_days <= 0:
        raise ValueError("'retention_days' in telemetry must be a positive integer")

    return Path(directory), TelemetryConfig(enabled=enabled, retention_days=retention_days)


def _parse_budget(data: Dict[str, Any]) -> BudgetConfig:
    """Parse the budget section."""
    _check_keys(data, {'token_budget', 'cost_budget', 'warning_threshold'}, 'budget')

    values = {}
    for key, cast in (('token_budget', int), ('cost_budget', float), ('warning_threshold', float)):
        if key not in data:
            continue
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' in budget must be a number")
        values[key] = cast(value)

    return BudgetConfig(**values)


def _parse_model_pricing(data: Any, path: str) -> ModelPricing:
    """Parse and validate the pricing of one model.

    Args:
        data: Model pricing data
        path: Path for error messages

    Returns:
        Validated ModelPricing

    Raises:
        ValueError: If pricing is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a dictionary")
    _check_keys(data, {'input_per_1m', 'output_per_1m', 'cache_per_1m'}, path)

    prices: Dict[str, Optional[Decimal]] = {}
    for key in ('input_per_1m', 'output_per_1m', 'cache_per_1m'):
        if key not in data:
            if key == 'cache_per_1m':
                prices[key] = None
                continue
            raise ValueError(f"Missing required '{key}' in {path}")
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"'{key}' in {path} must be a number >= 0")
        prices[key] = Decimal(str(value))

    return ModelPricing(
        input_cost_per_1m=prices['input_per_1m'],
        output_cost_per_1m=prices['output_per_1m'],
        cache_cost_per_1m=prices['cache_per_1m']
    )
