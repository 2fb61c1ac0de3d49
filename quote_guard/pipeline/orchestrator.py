"""
Fallback orchestration.

Resolves a ticker to exactly one validated quote: cache first, then each
enabled strategy in order until one succeeds. Individual source failures,
gate refusals and validation rejections are recorded and skipped; only a
total failure (AcquisitionFailed) or a cancellation (FetchCancelled)
reaches the caller.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import structlog

from quote_guard.core.records import GeneratedQuoteRecord, QuoteRecord, SourceTag, normalize_ticker
from quote_guard.core.retry import CancellationToken
from quote_guard.errors import AcquisitionFailed, FetchCancelled, ValidationRejected
from quote_guard.sources.base import QuoteSource
from quote_guard.storage.cache import QuoteCache

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StrategyAttempt:
    """Diagnostic record of one strategy tried for a ticker."""
    source: SourceTag
    success: bool
    duration_ms: int
    error: Optional[str] = None
    confidence: Optional[float] = None
    accepted: Optional[bool] = None


@dataclass(frozen=True)
class BatchError:
    ticker: str
    error: str


@dataclass(frozen=True)
class BatchResult:
    """Partial results of a batch fetch; failures never abort the batch."""
    results: List[QuoteRecord] = field(default_factory=list)
    errors: List[BatchError] = field(default_factory=list)


@dataclass(frozen=True)
class OrchestratorSettings:
    cache_ttl_seconds: int = 300
    batch_delay_seconds: float = 3.0

    def __post_init__(self):
        if self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be > 0")
        if self.batch_delay_seconds < 0:
            raise ValueError("batch_delay_seconds cannot be negative")


AttemptSink = Callable[[str, StrategyAttempt], None]


class QuoteOrchestrator:
    """Cache-first, ordered multi-source quote acquisition.

    Args:
        cache: Quote cache consulted before any network work
        strategies: Enabled sources, in fallback order
        settings: Cache TTL and batch pacing
        attempt_sink: Optional callback receiving (ticker, attempt)
        clock: Monotonic clock in seconds for durations
    """

    def __init__(
        self,
        cache: QuoteCache,
        strategies: Sequence[QuoteSource],
        settings: Optional[OrchestratorSettings] = None,
        attempt_sink: Optional[AttemptSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.strategies = list(strategies)
        self.settings = settings or OrchestratorSettings()
        self.attempt_sink = attempt_sink
        self._clock = clock

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)

    def _record(self, ticker: str, attempt: StrategyAttempt) -> None:
        logger.info(
            "strategy_attempt",
            ticker=ticker,
            source=attempt.source.value,
            success=attempt.success,
            duration_ms=attempt.duration_ms,
            error=attempt.error,
            confidence=attempt.confidence,
            accepted=attempt.accepted,
        )
        if self.attempt_sink is None:
            return
        try:
            self.attempt_sink(ticker, attempt)
        except Exception as e:
            logger.warning("attempt_sink_failed", ticker=ticker, error=str(e))

    def fetch(
        self,
        ticker: str,
        force_refresh: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> QuoteRecord:
        """Fetch one validated quote.

        Raises:
            ValueError: If the ticker is empty
            AcquisitionFailed: If every enabled strategy failed
            FetchCancelled: If the token fired; nothing is cached
        """
        ticker = normalize_ticker(ticker)
        cancel = cancel or CancellationToken()
        cancel.raise_if_cancelled("cache lookup")

        if not force_refresh:
            cached = self.cache.get(ticker)
            if cached is not None:
                logger.info("cache_hit", ticker=ticker, source=cached.source.value)
                return cached

        return self._walk(ticker, cancel)

    def _walk(self, ticker: str, cancel: CancellationToken) -> QuoteRecord:
        walk_start = self._clock()
        attempts: List[StrategyAttempt] = []

        for strategy in self.strategies:
            cancel.raise_if_cancelled(f"{strategy.name} strategy")
            start = self._clock()
            try:
                record = strategy.fetch(ticker, cancel=cancel)
            except FetchCancelled:
                logger.info("fetch_cancelled", ticker=ticker, source=strategy.name)
                raise
            except ValidationRejected as e:
                attempt = StrategyAttempt(
                    source=strategy.tag,
                    success=False,
                    duration_ms=self._elapsed_ms(start),
                    error=e.message,
                    confidence=e.confidence,
                    accepted=False,
                )
            except Exception as e:
                attempt = StrategyAttempt(
                    source=strategy.tag,
                    success=False,
                    duration_ms=self._elapsed_ms(start),
                    error=getattr(e, "message", None) or str(e) or type(e).__name__,
                )
            else:
                generated = isinstance(record, GeneratedQuoteRecord)
                attempt = StrategyAttempt(
                    source=strategy.tag,
                    success=True,
                    duration_ms=self._elapsed_ms(start),
                    confidence=record.confidence if generated else None,
                    accepted=True if generated else None,
                )
                attempts.append(attempt)
                self._record(ticker, attempt)

                cancel.raise_if_cancelled("cache write")
                failures = sum(1 for a in attempts if not a.success)
                self.cache.set(
                    record,
                    ttl_seconds=self.settings.cache_ttl_seconds,
                    fetch_duration_ms=self._elapsed_ms(walk_start),
                    error_count=failures,
                )
                return record

            attempts.append(attempt)
            self._record(ticker, attempt)

        logger.error("acquisition_failed", ticker=ticker, attempts=len(attempts))
        raise AcquisitionFailed(ticker, attempts)

    def fetch_many(
        self,
        tickers: Sequence[str],
        force_refresh: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """Fetch tickers one at a time, pacing network walks.

        Each failing ticker contributes an error entry; a cancellation stops
        the batch and marks the current and remaining tickers as cancelled.
        """
        cancel = cancel or CancellationToken()
        results: List[QuoteRecord] = []
        errors: List[BatchError] = []
        pending_delay = False

        for index, raw_ticker in enumerate(tickers):
            try:
                ticker = normalize_ticker(raw_ticker)
            except ValueError as e:
                errors.append(BatchError(ticker=str(raw_ticker or ""), error=str(e)))
                continue

            try:
                if not force_refresh:
                    cached = self.cache.get(ticker)
                    if cached is not None:
                        logger.info("cache_hit", ticker=ticker, source=cached.source.value)
                        results.append(cached)
                        continue

                if pending_delay and self.settings.batch_delay_seconds > 0:
                    cancel.sleep(self.settings.batch_delay_seconds)
                cancel.raise_if_cancelled(f"fetching {ticker}")
                pending_delay = True
                results.append(self._walk(ticker, cancel))
            except FetchCancelled as e:
                errors.append(BatchError(ticker=ticker, error=str(e)))
                for remaining in tickers[index + 1:]:
                    errors.append(BatchError(ticker=str(remaining), error=str(e)))
                logger.info("batch_cancelled", completed=len(results), remaining=len(tickers) - index)
                break
            except AcquisitionFailed as e:
                errors.append(BatchError(ticker=ticker, error=str(e)))

        logger.info("batch_completed", fetched=len(results), failed=len(errors))
        return BatchResult(results=results, errors=errors)
