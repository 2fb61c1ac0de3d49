"""
Budget- and rate-gated generative strategy.

Wraps the AI provider so it can sit in the fallback chain like any other
source. Order of operations:
1. Reserve budget for a data_fetch call (refusal -> GateRefused)
2. Acquire a rate-limit slot keyed by ticker (refusal -> GateRefused)
3. Call the model, validate the answer, log exactly one usage record
4. Return the record only if validation accepted it
"""

from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Optional

import structlog

from quote_guard.core.budget import BudgetManager
from quote_guard.core.rate_limiter import RateLimiter
from quote_guard.core.records import GeneratedQuoteRecord, SourceTag, normalize_ticker
from quote_guard.core.retry import CancellationToken
from quote_guard.errors import GateRefused, ValidationRejected
from quote_guard.sources.ai_provider import AIFetchError, AIProvider
from quote_guard.sources.base import QuoteSource
from quote_guard.storage.models import Purpose, UsageRecord
from quote_guard.validation.ai_validator import validate_ai_data

logger = structlog.get_logger(__name__)


class GatedAISource(QuoteSource):
    """Generative strategy guarded by the budget manager and rate limiter."""

    tag = SourceTag.AI

    def __init__(
        self,
        provider: AIProvider,
        budget: BudgetManager,
        rate_limiter: RateLimiter,
        wait_for_rate_limit: bool = False,
        clock: Callable[[], datetime] = datetime.now,
        today: Optional[Callable[[], date]] = None,
    ):
        self.provider = provider
        self.budget = budget
        self.rate_limiter = rate_limiter
        self.wait_for_rate_limit = wait_for_rate_limit
        self._clock = clock
        self._today = today or (lambda: clock().date())

    def fetch(
        self,
        ticker: str,
        cancel: Optional[CancellationToken] = None,
    ) -> GeneratedQuoteRecord:
        ticker = normalize_ticker(ticker)
        cancel = cancel or CancellationToken()

        cancel.raise_if_cancelled("budget check")
        check = self.budget.reserve(Purpose.DATA_FETCH)
        if not check.allowed:
            raise GateRefused(self.name, check.reason or "Budget refused")

        try:
            self._acquire_rate_slot(ticker, cancel)
            cancel.raise_if_cancelled("model call")
            return self._call_and_validate(ticker)
        finally:
            self.budget.release(Purpose.DATA_FETCH)

    def _acquire_rate_slot(self, ticker: str, cancel: CancellationToken) -> None:
        result = self.rate_limiter.acquire(ticker)
        if not result.allowed and self.wait_for_rate_limit and result.wait_ms is not None:
            logger.info("rate_limit_wait", ticker=ticker, wait_ms=result.wait_ms)
            cancel.sleep(result.wait_ms / 1000.0)
            result = self.rate_limiter.acquire(ticker)
        if not result.allowed:
            raise GateRefused(self.name, result.reason or "Rate limited")

    def _call_and_validate(self, ticker: str) -> GeneratedQuoteRecord:
        try:
            fetched = self.provider.fetch_stock_data(ticker)
        except AIFetchError as e:
            self._log_usage(
                ticker,
                model=e.model,
                tokens_input=e.tokens_input,
                tokens_output=e.tokens_output,
                cost=e.cost,
                success=False,
                response_time_ms=e.response_time_ms,
                error_message=e.message,
            )
            raise
        except Exception as e:
            self._log_usage(
                ticker,
                model=self.provider.model,
                tokens_input=0,
                tokens_output=0,
                cost=0.0,
                success=False,
                response_time_ms=0,
                error_message=str(e),
            )
            raise

        validation = validate_ai_data(fetched.record, ticker, today=self._today())
        self._log_usage(
            ticker,
            model=fetched.model,
            tokens_input=fetched.tokens_input,
            tokens_output=fetched.tokens_output,
            cost=fetched.cost,
            success=True,
            response_time_ms=fetched.response_time_ms,
            confidence=validation.final_confidence,
            accepted=validation.should_accept,
        )

        if self.budget.is_call_too_expensive(fetched.cost):
            logger.warning("ai_call_over_per_call_limit", ticker=ticker, cost_usd=fetched.cost)

        if not validation.should_accept:
            logger.warning(
                "ai_data_rejected",
                ticker=ticker,
                confidence=round(validation.final_confidence, 3),
                errors=validation.errors,
                warnings=validation.warnings,
            )
            raise ValidationRejected(
                self.name,
                f"confidence {validation.final_confidence:.2f} below acceptance threshold",
                confidence=validation.final_confidence,
            )

        logger.info(
            "ai_data_accepted",
            ticker=ticker,
            confidence=round(validation.final_confidence, 3),
        )
        # Accepted records carry the validated score, not the self-assessment.
        return replace(fetched.record, confidence=validation.final_confidence)

    def _log_usage(
        self,
        ticker: str,
        model: str,
        tokens_input: int,
        tokens_output: int,
        cost: float,
        success: bool,
        response_time_ms: int,
        confidence: Optional[float] = None,
        accepted: Optional[bool] = None,
        error_message: Optional[str] = None,
    ) -> None:
        self.budget.log_usage(UsageRecord(
            timestamp=self._clock(),
            ticker=ticker,
            purpose=Purpose.DATA_FETCH,
            model=model,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            cost_usd=cost,
            success=success,
            confidence=confidence,
            accepted=accepted,
            error_message=error_message,
            response_time_ms=response_time_ms,
        ))
