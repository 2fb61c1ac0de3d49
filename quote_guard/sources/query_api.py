"""
Structured quote API adapter.

Reads Yahoo's JSON quote endpoint. Faster and steadier than scraping
but aggressively rate-limited upstream, so it is off by default.
"""

import math
from typing import Any, Dict, Optional

import httpx
import structlog

from quote_guard.core.exchanges import expected_currency
from quote_guard.core.records import QuoteRecord, SourceTag, normalize_ticker
from quote_guard.core.retry import CancellationToken, RetryPolicy
from quote_guard.errors import SourceError

from .base import BROWSER_HEADERS, QuoteSource, raise_for_status

logger = structlog.get_logger(__name__)

QUERY_BASE_URL = "https://query1.finance.yahoo.com"
QUOTE_FIELDS = (
    "symbol",
    "longName",
    "shortName",
    "regularMarketPrice",
    "currency",
    "marketCap",
    "trailingPE",
    "forwardPE",
    "priceToBook",
    "dividendYield",
    "beta",
    "trailingAnnualDividendYield",
    "epsTrailingTwelveMonths",
    "bookValue",
    "priceToSalesTrailing12Months",
)
HIGH_PRICE_EXCEPTIONS = ("BRK.A", "BRK-A", "BRKA")
MAX_PRICE = 1_000_000
SUSPICIOUS_PRICE = 50_000
MIN_PRICE = 0.001


def validate_price(price: Any, ticker: str) -> bool:
    """Sanity-check a quoted price.

    Rejects non-finite or non-positive values, anything above 1,000,000,
    anything above 50,000 outside the known high-priced share classes and
    anything below 0.001.
    """
    try:
        value = float(price)
    except (TypeError, ValueError):
        return False
    if not math.isfinite(value) or value <= 0:
        return False
    if value > MAX_PRICE:
        logger.warning("price_rejected", ticker=ticker, price=value, reason="above_max")
        return False
    if value > SUSPICIOUS_PRICE and ticker.upper() not in HIGH_PRICE_EXCEPTIONS:
        logger.warning("price_rejected", ticker=ticker, price=value, reason="suspiciously_high")
        return False
    if value < MIN_PRICE:
        logger.warning("price_rejected", ticker=ticker, price=value, reason="suspiciously_low")
        return False
    return True


def _first_number(*values: Any) -> Optional[float]:
    for value in values:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value:
            return float(value)
    return None


class QueryAPISource(QuoteSource):
    """Adapter for the v7 quote endpoint."""

    tag = SourceTag.QUERY_API

    def __init__(
        self,
        client: httpx.Client,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 10.0,
        base_url: str = QUERY_BASE_URL,
    ):
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3, base_delay=2.0, multiplier=2.0, max_delay=10.0
        )
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    def fetch(self, ticker: str, cancel: Optional[CancellationToken] = None) -> QuoteRecord:
        ticker = normalize_ticker(ticker)
        cancel = cancel or CancellationToken()
        return self.retry_policy.run(lambda: self._fetch_once(ticker, cancel), cancel=cancel)

    def _fetch_once(self, ticker: str, cancel: CancellationToken) -> QuoteRecord:
        logger.debug("query_api_request", ticker=ticker)
        try:
            response = self.client.get(
                f"{self.base_url}/v7/finance/quote",
                params={"symbols": ticker, "fields": ",".join(QUOTE_FIELDS)},
                headers={**BROWSER_HEADERS, "Accept": "application/json"},
                timeout=cancel.timeout_for(self.timeout),
            )
        except httpx.HTTPError as e:
            raise SourceError(self.name, f"request failed: {e}")

        raise_for_status(response, self.name, ticker)

        try:
            payload = response.json()
        except ValueError:
            raise SourceError(self.name, "response is not valid JSON")

        results = ((payload or {}).get("quoteResponse") or {}).get("result") or []
        if not results:
            raise SourceError(self.name, f"No data found for ticker: {ticker}")
        return self._to_record(ticker, results[0])

    def _to_record(self, ticker: str, quote: Dict[str, Any]) -> QuoteRecord:
        price = quote.get("regularMarketPrice")
        if price is None:
            raise SourceError(self.name, f"Price not available for {ticker}")
        if not validate_price(price, ticker):
            raise SourceError(
                self.name,
                f"Price validation failed for {ticker}: {price} is not a valid stock price",
            )

        ratios = {
            "MarketCap": _first_number(quote.get("marketCap")),
            "PE": _first_number(quote.get("trailingPE"), quote.get("forwardPE")),
            "PB": _first_number(quote.get("priceToBook")),
            "PS": _first_number(quote.get("priceToSalesTrailing12Months")),
            "DividendYield": _first_number(
                quote.get("dividendYield"), quote.get("trailingAnnualDividendYield")
            ),
            "Beta": _first_number(quote.get("beta")),
        }

        record = QuoteRecord(
            ticker=ticker,
            name=quote.get("longName") or quote.get("shortName") or ticker,
            price=price,
            currency=quote.get("currency") or expected_currency(ticker),
            ratios=ratios,
            source=self.tag,
        )
        logger.info("query_api_fetched", ticker=ticker, price=record.price, currency=record.currency)
        return record
