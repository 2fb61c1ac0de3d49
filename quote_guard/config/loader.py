"""
Configuration management and loading.

Loads pipeline settings from an optional YAML file and the environment.
Strict validation ensures no silent misconfiguration that could lead to
cost overruns or an upstream IP block.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


@dataclass(frozen=True)
class AllocationConfig:
    """Share of the monthly budget reserved for each call purpose."""
    data_fetch: float = 0.80
    analysis: float = 0.15
    reserve: float = 0.05

    def __post_init__(self):
        """Validate fractions are within [0, 1] and do not over-allocate."""
        for name in ("data_fetch", "analysis", "reserve"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"allocation.{name} must be within [0, 1]")
        if self.data_fetch + self.analysis + self.reserve > 1.0 + 1e-9:
            raise ValueError("allocation fractions must not sum to more than 1.0")

    def fraction_for(self, purpose: str) -> float:
        if purpose == "data_fetch":
            return self.data_fetch
        if purpose == "analysis":
            return self.analysis
        raise ValueError(f"Unknown purpose: {purpose}")


@dataclass(frozen=True)
class BudgetConfig:
    """Spending limits for generative calls, in USD."""
    monthly: float = 5.00
    daily: float = 0.50
    per_call: float = 0.01
    allocation: AllocationConfig = field(default_factory=AllocationConfig)

    def __post_init__(self):
        """Validate budget values are positive."""
        if self.daily <= 0:
            raise ValueError("daily budget must be > 0")
        if self.monthly <= 0:
            raise ValueError("monthly budget must be > 0")
        if self.per_call <= 0:
            raise ValueError("per_call budget must be > 0")


@dataclass(frozen=True)
class RateLimitConfig:
    """Abuse-prevention limits for generative calls."""
    min_call_interval_ms: int = 2000
    max_calls_per_hour: int = 100
    max_retries_per_ticker: int = 3

    def __post_init__(self):
        if self.min_call_interval_ms < 0:
            raise ValueError("min_call_interval_ms cannot be negative")
        if self.max_calls_per_hour < 1:
            raise ValueError("max_calls_per_hour must be >= 1")
        if self.max_retries_per_ticker < 1:
            raise ValueError("max_retries_per_ticker must be >= 1")


@dataclass(frozen=True)
class CacheConfig:
    """Quote cache settings."""
    ttl_seconds: int = 300

    def __post_init__(self):
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")


@dataclass(frozen=True)
class SourcesConfig:
    """Feature flags and pacing for the fallback strategies."""
    query_api: bool = False
    scrape: bool = True
    ai: bool = False
    rest_api: bool = True
    batch_delay_seconds: float = 3.0
    wait_for_rate_limit: bool = False

    def __post_init__(self):
        if self.batch_delay_seconds < 0:
            raise ValueError("batch_delay_seconds cannot be negative")


@dataclass(frozen=True)
class AIConfig:
    """Generative model settings."""
    primary_model: str = "deepseek/deepseek-chat"
    fallback_model: Optional[str] = None
    temperature: float = 0.1
    max_tokens: int = 1500
    timeout_seconds: float = 60.0

    def __post_init__(self):
        if not self.primary_model or not self.primary_model.strip():
            raise ValueError("primary_model is required and cannot be empty")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class AppConfig:
    """Complete pipeline configuration."""
    database: str = "quote_guard.db"
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    openrouter_api_key: Optional[str] = field(default=None, repr=False)
    fmp_api_key: Optional[str] = field(default=None, repr=False)


_SECTION_KEYS = {
    "budget": {"monthly", "daily", "per_call", "allocation"},
    "rate_limit": {"min_call_interval_ms", "max_calls_per_hour", "max_retries_per_ticker"},
    "cache": {"ttl_seconds"},
    "sources": {
        "query_api", "scrape", "ai", "rest_api",
        "batch_delay_seconds", "wait_for_rate_limit",
    },
    "ai": {"primary_model", "fallback_model", "temperature", "max_tokens", "timeout_seconds"},
}

# Environment variable -> (section, key, parser)
_ENV_OVERRIDES = {
    "AI_MAX_MONTHLY_BUDGET": ("budget", "monthly", float),
    "AI_MAX_DAILY_BUDGET": ("budget", "daily", float),
    "AI_MAX_COST_PER_CALL": ("budget", "per_call", float),
    "AI_MIN_CALL_INTERVAL_MS": ("rate_limit", "min_call_interval_ms", int),
    "AI_MAX_CALLS_PER_HOUR": ("rate_limit", "max_calls_per_hour", int),
    "AI_MAX_RETRIES_PER_TICKER": ("rate_limit", "max_retries_per_ticker", int),
    "CACHE_TTL_SECONDS": ("cache", "ttl_seconds", int),
    "ENABLE_QUERY_API": ("sources", "query_api", "bool"),
    "ENABLE_SCRAPER": ("sources", "scrape", "bool"),
    "ENABLE_AI_FALLBACK": ("sources", "ai", "bool"),
    "ENABLE_REST_API": ("sources", "rest_api", "bool"),
    "AI_PRIMARY_MODEL": ("ai", "primary_model", str),
    "AI_FALLBACK_MODEL": ("ai", "fallback_model", str),
}


def _parse_bool(raw: str, name: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def load_config(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load and validate pipeline configuration.

    Values come from the YAML file when given, then environment overrides.
    API keys are only ever read from the environment.

    Args:
        path: Optional path to a YAML configuration file
        env: Environment mapping (defaults to os.environ)

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    env = os.environ if env is None else env
    raw: Dict[str, Any] = {}

    if path is not None:
        raw = _read_yaml(path)

    sections: Dict[str, Dict[str, Any]] = {
        name: dict(raw.get(name) or {}) for name in _SECTION_KEYS
    }

    for var, (section, key, parser) in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        if parser == "bool":
            sections[section][key] = _parse_bool(value, var)
        else:
            try:
                sections[section][key] = parser(value)
            except ValueError:
                raise ValueError(f"{var} has an invalid value: {value!r}")

    database = env.get("QUOTE_GUARD_DB") or raw.get("database") or AppConfig.database

    return AppConfig(
        database=str(database),
        budget=_parse_budget(sections["budget"]),
        rate_limit=RateLimitConfig(**sections["rate_limit"]),
        cache=CacheConfig(**sections["cache"]),
        sources=SourcesConfig(**sections["sources"]),
        ai=AIConfig(**sections["ai"]),
        openrouter_api_key=env.get("OPENROUTER_API_KEY") or None,
        fmp_api_key=env.get("FMP_API_KEY") or None,
    )


def _read_yaml(path: str) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = set(_SECTION_KEYS) | {"database"}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    for section, allowed in _SECTION_KEYS.items():
        data = raw_config.get(section)
        if data is None:
            continue
        if not isinstance(data, dict):
            raise ValueError(f"'{section}' must be a dictionary")
        unknown = set(data.keys()) - allowed
        if unknown:
            raise ValueError(f"Unknown {section} keys: {unknown}")

    return raw_config


def _parse_budget(data: Dict[str, Any]) -> BudgetConfig:
    """Parse the budget section, including its nested allocation block."""
    data = dict(data)
    allocation_data = data.pop("allocation", None) or {}
    if not isinstance(allocation_data, dict):
        raise ValueError("'budget.allocation' must be a dictionary")
    unknown = set(allocation_data.keys()) - {"data_fetch", "analysis", "reserve"}
    if unknown:
        raise ValueError(f"Unknown budget.allocation keys: {unknown}")

    budget = BudgetConfig(**{k: float(v) for k, v in data.items()})
    allocation = AllocationConfig(**{k: float(v) for k, v in allocation_data.items()})
    return replace(budget, allocation=allocation)
