"""
Unit tests for configuration loading and validation.

Tests strict validation, defaults and environment overrides.
"""

import os
import tempfile

import pytest
import yaml

from quote_guard.config.loader import (
    AllocationConfig,
    AppConfig,
    BudgetConfig,
    RateLimitConfig,
    load_config,
)


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_defaults_without_file(self):
        config = load_config(env={})

        assert config == AppConfig()
        assert config.budget.monthly == 5.0
        assert config.budget.daily == 0.5
        assert config.budget.per_call == 0.01
        assert config.budget.allocation.data_fetch == 0.8
        assert config.rate_limit.min_call_interval_ms == 2000
        assert config.rate_limit.max_calls_per_hour == 100
        assert config.rate_limit.max_retries_per_ticker == 3
        assert config.cache.ttl_seconds == 300
        assert config.sources.scrape is True
        assert config.sources.ai is False
        assert config.openrouter_api_key is None

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_path = self._write_config({
            "database": "quotes.db",
            "budget": {
                "monthly": 20,
                "daily": 1.5,
                "allocation": {"data_fetch": 0.7, "analysis": 0.25, "reserve": 0.05},
            },
            "cache": {"ttl_seconds": 600},
            "sources": {"query_api": True, "ai": True, "batch_delay_seconds": 1.0},
            "ai": {"primary_model": "moonshotai/kimi-k2", "fallback_model": "deepseek/deepseek-chat"},
        })

        config = load_config(config_path, env={})

        assert config.database == "quotes.db"
        assert config.budget.monthly == 20.0
        assert config.budget.daily == 1.5
        assert config.budget.per_call == 0.01
        assert config.budget.allocation.analysis == 0.25
        assert config.cache.ttl_seconds == 600
        assert config.sources.query_api is True
        assert config.sources.ai is True
        assert config.sources.batch_delay_seconds == 1.0
        assert config.ai.primary_model == "moonshotai/kimi-k2"
        assert config.ai.fallback_model == "deepseek/deepseek-chat"

    def test_environment_overrides_file(self):
        config_path = self._write_config({"budget": {"monthly": 20}})

        config = load_config(config_path, env={
            "AI_MAX_MONTHLY_BUDGET": "7.5",
            "AI_MIN_CALL_INTERVAL_MS": "500",
            "CACHE_TTL_SECONDS": "60",
            "ENABLE_AI_FALLBACK": "true",
            "ENABLE_SCRAPER": "0",
            "AI_PRIMARY_MODEL": "openai/gpt-4o-mini",
            "QUOTE_GUARD_DB": "/tmp/override.db",
            "OPENROUTER_API_KEY": "sk-or-test",
            "FMP_API_KEY": "fmp-test",
        })

        assert config.budget.monthly == 7.5
        assert config.rate_limit.min_call_interval_ms == 500
        assert config.cache.ttl_seconds == 60
        assert config.sources.ai is True
        assert config.sources.scrape is False
        assert config.ai.primary_model == "openai/gpt-4o-mini"
        assert config.database == "/tmp/override.db"
        assert config.openrouter_api_key == "sk-or-test"
        assert config.fmp_api_key == "fmp-test"

    def test_api_keys_not_in_repr(self):
        config = load_config(env={"OPENROUTER_API_KEY": "sk-or-secret"})
        assert "sk-or-secret" not in repr(config)

    def test_empty_env_values_are_ignored(self):
        config = load_config(env={"AI_MAX_DAILY_BUDGET": "", "OPENROUTER_API_KEY": ""})
        assert config.budget.daily == 0.5
        assert config.openrouter_api_key is None

    def test_invalid_boolean_env_raises_error(self):
        with pytest.raises(ValueError, match="ENABLE_REST_API must be a boolean"):
            load_config(env={"ENABLE_REST_API": "maybe"})

    def test_invalid_numeric_env_raises_error(self):
        with pytest.raises(ValueError, match="AI_MAX_CALLS_PER_HOUR has an invalid value"):
            load_config(env={"AI_MAX_CALLS_PER_HOUR": "lots"})

    def test_missing_file_raises_error(self):
        """Test that missing config file raises error."""
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config("nonexistent.yaml", env={})

    def test_empty_config_raises_error(self):
        """Test that empty config file raises error."""
        config_path = self._write_config({})

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_config(config_path, env={})

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises error."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w') as f:
            f.write("invalid: yaml: content: [")

        with pytest.raises(yaml.YAMLError):
            load_config(config_path, env={})

    def test_unknown_top_level_keys_raise_error(self):
        config_path = self._write_config({"budget": {"monthly": 5}, "guardrails": {}})

        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_config(config_path, env={})

    def test_unknown_section_keys_raise_error(self):
        config_path = self._write_config({"cache": {"ttl_seconds": 60, "max_entries": 10}})

        with pytest.raises(ValueError, match="Unknown cache keys"):
            load_config(config_path, env={})

    def test_unknown_allocation_keys_raise_error(self):
        config_path = self._write_config({"budget": {"allocation": {"marketing": 0.1}}})

        with pytest.raises(ValueError, match="Unknown budget.allocation keys"):
            load_config(config_path, env={})

    def test_invalid_section_type_raises_error(self):
        config_path = self._write_config({"sources": ["scrape"]})

        with pytest.raises(ValueError, match="'sources' must be a dictionary"):
            load_config(config_path, env={})

    def test_negative_daily_budget_raises_error(self):
        config_path = self._write_config({"budget": {"daily": -1}})

        with pytest.raises(ValueError, match="daily budget must be > 0"):
            load_config(config_path, env={})

    def test_zero_ttl_raises_error(self):
        with pytest.raises(ValueError, match="ttl_seconds must be > 0"):
            load_config(env={"CACHE_TTL_SECONDS": "0"})


class TestConfigDataclasses:
    """Test validation on the config objects themselves."""

    def test_allocation_over_sum_raises_error(self):
        with pytest.raises(ValueError, match="must not sum to more than 1.0"):
            AllocationConfig(data_fetch=0.9, analysis=0.2, reserve=0.0)

    def test_allocation_out_of_range_raises_error(self):
        with pytest.raises(ValueError, match="allocation.analysis must be within"):
            AllocationConfig(analysis=1.5)

    def test_allocation_fraction_for(self):
        allocation = AllocationConfig()
        assert allocation.fraction_for("data_fetch") == 0.8
        assert allocation.fraction_for("analysis") == 0.15
        with pytest.raises(ValueError, match="Unknown purpose"):
            allocation.fraction_for("reserve")

    def test_zero_per_call_raises_error(self):
        with pytest.raises(ValueError, match="per_call budget must be > 0"):
            BudgetConfig(per_call=0)

    def test_rate_limit_bounds(self):
        RateLimitConfig(min_call_interval_ms=0)
        with pytest.raises(ValueError, match="max_calls_per_hour must be >= 1"):
            RateLimitConfig(max_calls_per_hour=0)
