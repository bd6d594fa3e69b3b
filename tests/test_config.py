"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for telemetry settings.
"""

import os
import tempfile
from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from agent_telemetry.config.loader import (
    DEFAULT_TELEMETRY_DIR,
    BudgetConfig,
    Settings,
    TelemetryConfig,
    load_settings,
)
from agent_telemetry.core.pricing import DEFAULT_PRICING


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "telemetry": {
                "directory": "/var/lib/telemetry",
                "enabled": False,
                "retention_days": 14
            },
            "budget": {
                "token_budget": 5000000,
                "cost_budget": 100.0,
                "warning_threshold": 75
            },
            "pricing": {
                "my-model": {"input_per_1m": 1.0, "output_per_1m": 2.0, "cache_per_1m": 0.1}
            }
        }

        settings = load_settings(self._write_config(config_data))

        assert settings.directory == Path("/var/lib/telemetry")
        assert settings.telemetry == TelemetryConfig(enabled=False, retention_days=14)
        assert settings.budget == BudgetConfig(token_budget=5000000, cost_budget=100.0, warning_threshold=75.0)

        pricing = settings.pricing.get_pricing("my-model")
        assert pricing.input_cost_per_1m == Decimal("1.0")
        assert pricing.cache_cost_per_1m == Decimal("0.1")
        assert settings.pricing.has_pricing("anthropic/claude-sonnet-4-5")

    def test_sections_are_optional(self):
        """Test that missing sections fall back to defaults."""
        settings = load_settings(self._write_config({"budget": {"cost_budget": 50}}))

        assert settings.directory == DEFAULT_TELEMETRY_DIR
        assert settings.telemetry == TelemetryConfig()
        assert settings.budget.cost_budget == 50.0
        assert settings.budget.token_budget == 0
        assert settings.pricing.get_pricing("unknown") == DEFAULT_PRICING

    def test_empty_config_uses_defaults(self):
        """Test that an empty file yields default settings."""
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        Path(config_path).write_text("", encoding="utf-8")

        assert load_settings(config_path) == Settings()

    def test_missing_file_raises_error(self):
        """Test that missing config file raises error."""
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_settings("nonexistent.yaml")

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises error."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w') as f:
            f.write("invalid: yaml: content: [")

        with pytest.raises(yaml.YAMLError):
            load_settings(config_path)

    def test_non_mapping_raises_error(self):
        """Test that a top-level list is rejected."""
        with pytest.raises(ValueError, match="must be a mapping"):
            load_settings(self._write_config(["a", "b"]))

    def test_unknown_keys_raise_error(self):
        """Test that unknown keys are rejected at every level."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_settings(self._write_config({"features": {}}))
        with pytest.raises(ValueError, match="Unknown keys in telemetry"):
            load_settings(self._write_config({"telemetry": {"dir": "x"}}))
        with pytest.raises(ValueError, match="Unknown keys in budget"):
            load_settings(self._write_config({"budget": {"daily": 1}}))

    def test_section_must_be_mapping(self):
        """Test that a scalar section is rejected."""
        with pytest.raises(ValueError, match="'budget' must be a dictionary"):
            load_settings(self._write_config({"budget": 100}))

    def test_invalid_retention_raises_error(self):
        """Test that retention must be a positive integer."""
        for value in (0, -3, "7", True):
            config_path = self._write_config({"telemetry": {"retention_days": value}})
            with pytest.raises(ValueError, match="retention_days"):
                load_settings(config_path)

    def test_invalid_enabled_raises_error(self):
        """Test that enabled must be a boolean."""
        with pytest.raises(ValueError, match="'enabled'"):
            load_settings(self._write_config({"telemetry": {"enabled": "yes please"}}))

    def test_negative_budget_raises_error(self):
        """Test that negative budgets are rejected."""
        with pytest.raises(ValueError, match="cost_budget must be >= 0"):
            load_settings(self._write_config({"budget": {"cost_budget": -1}}))
        with pytest.raises(ValueError, match="token_budget must be >= 0"):
            load_settings(self._write_config({"budget": {"token_budget": -1}}))

    def test_warning_threshold_range(self):
        """Test that the warning threshold must be in (0, 100]."""
        with pytest.raises(ValueError, match="warning_threshold"):
            load_settings(self._write_config({"budget": {"warning_threshold": 0}}))
        with pytest.raises(ValueError, match="warning_threshold"):
            load_settings(self._write_config({"budget": {"warning_threshold": 120}}))

    def test_non_numeric_budget_raises_error(self):
        """Test that budget values must be numbers."""
        with pytest.raises(ValueError, match="must be a number"):
            load_settings(self._write_config({"budget": {"cost_budget": "lots"}}))

    def test_invalid_pricing_raises_error(self):
        """Test that model pricing is validated."""
        with pytest.raises(ValueError, match="Missing required 'output_per_1m'"):
            load_settings(self._write_config({"pricing": {"m": {"input_per_1m": 1}}}))
        with pytest.raises(ValueError, match="must be a number >= 0"):
            load_settings(self._write_config({"pricing": {"m": {"input_per_1m": -1, "output_per_1m": 1}}}))
        with pytest.raises(ValueError, match="pricing.m must be a dictionary"):
            load_settings(self._write_config({"pricing": {"m": 3}}))
