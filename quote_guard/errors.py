"""
Exception hierarchy for quote acquisition.

Source-level failures are recovered by the orchestrator. Only
AcquisitionFailed and FetchCancelled ever reach a caller of fetch().
"""

from typing import Optional, Sequence


class QuoteGuardError(Exception):
    """Base class for all quote_guard errors."""


class SourceError(QuoteGuardError):
    """A single source could not produce a quote."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class PermanentSourceError(SourceError):
    """Source failure that retrying cannot fix (unknown ticker, missing key, 4xx)."""


class GateRefused(SourceError):
    """A budget or rate-limit policy declined a generative call."""


class ValidationRejected(SourceError):
    """Generated data parsed but scored below the acceptance threshold."""

    def __init__(self, source: str, message: str, confidence: float):
        super().__init__(source, message)
        self.confidence = confidence


class FetchCancelled(QuoteGuardError):
    """The caller's cancellation token fired or its deadline passed."""


class AcquisitionFailed(QuoteGuardError):
    """Every enabled strategy failed for a ticker.

    Attributes:
        ticker: Normalized ticker that was requested
        attempts: One StrategyAttempt per strategy tried, in order
    """

    def __init__(self, ticker: str, attempts: Sequence):
        self.ticker = ticker
        self.attempts = list(attempts)
        if self.attempts:
            details = "; ".join(f"{a.source.value}: {a.error}" for a in self.attempts)
        else:
            details = "no data source is enabled"
        super().__init__(f"Failed to fetch {ticker} from all sources: {details}")


class AnalysisRefused(QuoteGuardError):
    """Qualitative analysis was declined by the budget or the rate limiter."""

    def __init__(self, reason: str, wait_ms: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.wait_ms = wait_ms
