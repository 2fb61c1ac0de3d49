"""
Budget enforcement for generative calls.

Implements spending limits with strict enforcement against the persisted
usage ledger.

Enforcement Order:
1. Monthly cap - Total month-to-date spend across all purposes
2. Daily cap - Safety limit on today's spend
3. Purpose allocation - Month-to-date spend for the purpose vs its share

Calls that have been reserved but not yet logged count as spend at the
per-call maximum, so concurrent callers cannot jointly overshoot a cap.
"""

import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

import structlog

from quote_guard.config.loader import BudgetConfig
from quote_guard.storage.models import Purpose, UsageRecord
from quote_guard.storage.repository import UsageRepository

logger = structlog.get_logger(__name__)

CHECK_FAILED_REASON = "Budget check failed, allowing request"


@dataclass(frozen=True)
class BudgetCheckResult:
    """Result of a budget check."""
    allowed: bool
    current_spend: float
    remaining_budget: float
    reason: Optional[str] = None
    current_month_spend: Optional[float] = None
    current_day_spend: Optional[float] = None


@dataclass(frozen=True)
class BudgetSnapshot:
    """Month-to-date view of the ledger."""
    total_cost: float = 0.0
    total_calls: int = 0
    data_fetch_cost: float = 0.0
    analysis_cost: float = 0.0
    day_cost: float = 0.0
    successful_calls: int = 0
    failed_calls: int = 0
    avg_confidence: float = 0.0
    success_rate: float = 0.0
    acceptance_rate: float = 0.0
    pending_calls: Dict[str, int] = field(default_factory=dict)


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _day_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _money(value: float) -> str:
    return f"${value:.2f}"


class BudgetManager:
    """Gatekeeper for generative spend backed by the usage ledger.

    Args:
        repository: Usage ledger to read spend from and append to
        config: Budget limits and purpose allocation
        clock: Returns the current local time (injectable for tests)
    """

    def __init__(
        self,
        repository: UsageRepository,
        config: Optional[BudgetConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repository = repository
        self.config = config or BudgetConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: Dict[Purpose, int] = {p: 0 for p in Purpose}

    def _pending_cost(self, purpose: Optional[Purpose] = None) -> float:
        if purpose is None:
            count = sum(self._pending.values())
        else:
            count = self._pending[purpose]
        return count * self.config.per_call

    def _check(self, purpose: Purpose) -> BudgetCheckResult:
        now = self._clock()
        month_start = _month_start(now)
        config = self.config

        try:
            month_spend = self.repository.total_cost_since(month_start)
            day_spend = self.repository.total_cost_since(_day_start(now))
            purpose_spend = self.repository.total_cost_since(month_start, purpose)
        except (sqlite3.Error, OSError) as e:
            logger.error("budget_check_failed", purpose=purpose.value, error=str(e))
            return BudgetCheckResult(
                allowed=True,
                current_spend=0.0,
                remaining_budget=config.monthly,
                reason=CHECK_FAILED_REASON,
            )

        in_flight = self._pending_cost()
        month_total = month_spend + in_flight
        day_total = day_spend + in_flight
        remaining = max(0.0, config.monthly - month_total)

        if month_total >= config.monthly:
            return BudgetCheckResult(
                allowed=False,
                reason=self._exceeded("Monthly budget", month_total, config.monthly, in_flight),
                current_spend=month_spend,
                remaining_budget=0.0,
                current_month_spend=month_spend,
                current_day_spend=day_spend,
            )

        if day_total >= config.daily:
            return BudgetCheckResult(
                allowed=False,
                reason=self._exceeded("Daily budget", day_total, config.daily, in_flight),
                current_spend=month_spend,
                remaining_budget=remaining,
                current_month_spend=month_spend,
                current_day_spend=day_spend,
            )

        purpose_limit = config.monthly * config.allocation.fraction_for(purpose.value)
        purpose_in_flight = self._pending_cost(purpose)
        purpose_total = purpose_spend + purpose_in_flight
        if purpose_total >= purpose_limit:
            return BudgetCheckResult(
                allowed=False,
                reason=self._exceeded(
                    f"{purpose.value} budget allocation",
                    purpose_total,
                    purpose_limit,
                    purpose_in_flight,
                ),
                current_spend=month_spend,
                remaining_budget=remaining,
                current_month_spend=month_spend,
                current_day_spend=day_spend,
            )

        return BudgetCheckResult(
            allowed=True,
            current_spend=month_spend,
            remaining_budget=remaining,
            current_month_spend=month_spend,
            current_day_spend=day_spend,
        )

    @staticmethod
    def _exceeded(label: str, spend: float, limit: float, in_flight: float) -> str:
        reason = f"{label} exceeded: {_money(spend)} / {_money(limit)}"
        if in_flight > 0:
            reason += f" (including {_money(in_flight)} in flight)"
        return reason

    def can_make_request(self, purpose: Purpose) -> BudgetCheckResult:
        """Check whether a call for the purpose fits every limit right now."""
        purpose = Purpose(purpose)
        with self._lock:
            return self._check(purpose)

    def reserve(self, purpose: Purpose) -> BudgetCheckResult:
        """Check and, if allowed, hold one call's worth of budget.

        Every successful reserve must be paired with release() once the
        call's usage has been logged.
        """
        purpose = Purpose(purpose)
        with self._lock:
            result = self._check(purpose)
            if result.allowed:
                self._pending[purpose] += 1
            return result

    def release(self, purpose: Purpose) -> None:
        purpose = Purpose(purpose)
        with self._lock:
            if self._pending[purpose] > 0:
                self._pending[purpose] -= 1

    def is_call_too_expensive(self, estimated_cost: float) -> bool:
        return estimated_cost > self.config.per_call

    def log_usage(self, record: UsageRecord) -> None:
        """Append a usage record. Failures are logged, never raised."""
        try:
            self.repository.append(record)
        except (sqlite3.Error, OSError) as e:
            logger.error(
                "usage_log_failed",
                ticker=record.ticker,
                purpose=record.purpose.value,
                error=str(e),
            )
            return
        logger.info(
            "usage_logged",
            ticker=record.ticker,
            purpose=record.purpose.value,
            model=record.model,
            cost_usd=round(record.cost_usd, 6),
            success=record.success,
        )

    def get_month_stats(self) -> BudgetSnapshot:
        """Month-to-date statistics; zeros when the ledger is unreadable."""
        now = self._clock()
        with self._lock:
            pending = {p.value: n for p, n in self._pending.items() if n}
        try:
            summary = self.repository.summary_since(_month_start(now))
            day_cost = self.repository.total_cost_since(_day_start(now))
        except (sqlite3.Error, OSError) as e:
            logger.error("budget_stats_failed", error=str(e))
            return BudgetSnapshot(pending_calls=pending)

        return BudgetSnapshot(
            total_cost=summary.total_cost,
            total_calls=summary.total_calls,
            data_fetch_cost=summary.cost_by_purpose.get(Purpose.DATA_FETCH.value, 0.0),
            analysis_cost=summary.cost_by_purpose.get(Purpose.ANALYSIS.value, 0.0),
            day_cost=day_cost,
            successful_calls=summary.successful_calls,
            failed_calls=summary.failed_calls,
            avg_confidence=summary.avg_confidence or 0.0,
            success_rate=summary.success_rate,
            acceptance_rate=summary.acceptance_rate,
            pending_calls=pending,
        )
