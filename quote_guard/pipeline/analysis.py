"""
Qualitative analysis service.

Runs a gated generative analysis of an already scored stock under the
`analysis` budget allocation.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List

import structlog

from quote_guard.core.budget import BudgetManager
from quote_guard.core.rate_limiter import RateLimiter
from quote_guard.core.records import normalize_ticker
from quote_guard.errors import AnalysisRefused
from quote_guard.sources.ai_provider import AIFetchError, AIProvider, AnalysisRequest
from quote_guard.storage.models import Purpose, UsageRecord

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    ticker: str
    summary: str
    strengths: List[str]
    weaknesses: List[str]
    red_flags: List[str]
    industry_context: str
    investment_thesis: str
    model: str
    cost: float


class AnalysisService:
    """Budget- and rate-gated analysis generation."""

    def __init__(
        self,
        provider: AIProvider,
        budget: BudgetManager,
        rate_limiter: RateLimiter,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.provider = provider
        self.budget = budget
        self.rate_limiter = rate_limiter
        self._clock = clock

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """Generate an analysis.

        Raises:
            AnalysisRefused: If the budget or rate limiter declines the call
            AIFetchError: If the model call fails or its answer is invalid
        """
        ticker = normalize_ticker(request.ticker)

        check = self.budget.reserve(Purpose.ANALYSIS)
        if not check.allowed:
            logger.warning("analysis_refused", ticker=ticker, reason=check.reason)
            raise AnalysisRefused(check.reason or "Budget refused")

        try:
            rate = self.rate_limiter.acquire(f"analysis_{ticker}")
            if not rate.allowed:
                logger.warning("analysis_refused", ticker=ticker, reason=rate.reason)
                raise AnalysisRefused(rate.reason or "Rate limited", wait_ms=rate.wait_ms)

            try:
                outcome = self.provider.generate_analysis(request)
            except AIFetchError as e:
                self._log(ticker, e.model, e.tokens_input, e.tokens_output, e.cost,
                          success=False, response_time_ms=e.response_time_ms,
                          error_message=e.message)
                raise

            self._log(ticker, outcome.model, outcome.tokens_input, outcome.tokens_output,
                      outcome.cost, success=True, response_time_ms=outcome.response_time_ms)
        finally:
            self.budget.release(Purpose.ANALYSIS)

        analysis = outcome.analysis
        return AnalysisResult(
            ticker=ticker,
            summary=analysis.summary,
            strengths=list(analysis.strengths),
            weaknesses=list(analysis.weaknesses),
            red_flags=list(analysis.red_flags),
            industry_context=analysis.industry_context,
            investment_thesis=analysis.investment_thesis,
            model=outcome.model,
            cost=outcome.cost,
        )

    def _log(self, ticker, model, tokens_input, tokens_output, cost,
             success, response_time_ms, error_message=None):
        self.budget.log_usage(UsageRecord(
            timestamp=self._clock(),
            ticker=ticker,
            purpose=Purpose.ANALYSIS,
            model=model,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            cost_usd=cost,
            success=success,
            error_message=error_message,
            response_time_ms=response_time_ms,
        ))
