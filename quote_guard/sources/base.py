"""
Common adapter contract.
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from quote_guard.core.records import QuoteRecord, SourceTag
from quote_guard.core.retry import CancellationToken
from quote_guard.errors import PermanentSourceError, SourceError

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}


class QuoteSource(ABC):
    """One strategy in the fallback chain.

    fetch() either returns a valid record or raises SourceError. Only
    FetchCancelled may escape as anything else.
    """

    tag: SourceTag

    @abstractmethod
    def fetch(self, ticker: str, cancel: Optional[CancellationToken] = None) -> QuoteRecord:
        raise NotImplementedError

    @property
    def name(self) -> str:
        return self.tag.value


def raise_for_status(response: httpx.Response, source: str, ticker: str) -> None:
    """Map HTTP failures onto source errors.

    404 means the ticker is unknown and retrying cannot help; 429 and 5xx
    stay retryable.
    """
    status = response.status_code
    if status < 400:
        return
    if status == 404:
        raise PermanentSourceError(source, f"Ticker not found: {ticker}")
    if status in (401, 402, 403):
        raise PermanentSourceError(source, f"HTTP {status}: access denied")
    if status == 429:
        raise SourceError(source, "HTTP 429: rate limited by upstream")
    raise SourceError(source, f"HTTP {status}")
