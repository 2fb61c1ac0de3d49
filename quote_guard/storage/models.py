"""
Data models for storage layer.

Defines ledger entries and cache metadata.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class Purpose(str, Enum):
    """Why a generative call was made; each purpose has its own allocation."""
    DATA_FETCH = "data_fetch"
    ANALYSIS = "analysis"


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one generative call.

    Append-only entries that form the auditable spend ledger. Every call
    the budget allowed produces exactly one record, successful or not.
    """
    timestamp: datetime
    ticker: str
    purpose: Purpose
    model: str
    tokens_input: int
    tokens_output: int
    cost_usd: float
    success: bool
    provider: str = "openrouter"
    confidence: Optional[float] = None
    accepted: Optional[bool] = None
    error_message: Optional[str] = None
    response_time_ms: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "purpose", Purpose(self.purpose))
        if self.tokens_input < 0 or self.tokens_output < 0:
            raise ValueError("Token counts cannot be negative")
        if self.cost_usd < 0:
            raise ValueError("cost_usd cannot be negative")


@dataclass(frozen=True)
class CacheEntry:
    """Metadata of a cached quote."""
    ticker: str
    source: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    fetch_duration_ms: Optional[int] = None
    error_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class UsageSummary:
    """Aggregated ledger totals over a time range."""
    total_cost: float = 0.0
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    accepted_calls: int = 0
    scored_calls: int = 0
    avg_confidence: Optional[float] = None
    cost_by_purpose: Dict[str, float] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return self.successful_calls / self.total_calls

    @property
    def acceptance_rate(self) -> float:
        if self.scored_calls == 0:
            return 0.0
        return self.accepted_calls / self.scored_calls
