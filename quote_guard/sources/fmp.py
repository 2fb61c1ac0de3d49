"""
Financial Modeling Prep REST adapter.

Last-resort strategy. The free tier allows 250 calls a day, so the quote
is fetched once and the trailing ratios are best-effort.
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from quote_guard.core.exchanges import expected_currency
from quote_guard.core.records import QuoteRecord, SourceTag, normalize_ticker
from quote_guard.core.retry import CancellationToken, RetryPolicy
from quote_guard.errors import PermanentSourceError, SourceError

from .base import QuoteSource, raise_for_status

logger = structlog.get_logger(__name__)

FMP_BASE_URL = "https://financialmodelingprep.com/stable"

# ratios-ttm field -> ratio name
TTM_FIELDS = {
    "priceToEarningsRatioTTM": "PE",
    "priceToBookRatioTTM": "PB",
    "priceToEarningsGrowthRatioTTM": "PEG",
    "priceToSalesRatioTTM": "PS",
    "priceToOperatingCashFlowRatioTTM": "PCF",
    "priceToFreeCashFlowRatioTTM": "PFCF",
    "enterpriseValueMultipleTTM": "EV_EBITDA",
    "grossProfitMarginTTM": "GrossMargin",
    "operatingProfitMarginTTM": "OperatingMargin",
    "netProfitMarginTTM": "NetMargin",
    "currentRatioTTM": "CurrentRatio",
    "quickRatioTTM": "QuickRatio",
    "cashRatioTTM": "CashRatio",
    "debtToEquityRatioTTM": "DebtToEquity",
    "debtToAssetsRatioTTM": "DebtToAssets",
    "interestCoverageRatioTTM": "InterestCoverage",
    "dividendYieldTTM": "DividendYield",
    "dividendPayoutRatioTTM": "PayoutRatio",
    "assetTurnoverTTM": "AssetTurnover",
    "inventoryTurnoverTTM": "InventoryTurnover",
    "receivablesTurnoverTTM": "ReceivablesTurnover",
    "payablesTurnoverTTM": "PayablesTurnover",
}


class FMPSource(QuoteSource):
    """Adapter for the FMP stable REST API."""

    tag = SourceTag.REST_API

    def __init__(
        self,
        api_key: Optional[str],
        client: httpx.Client,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 10.0,
        base_url: str = FMP_BASE_URL,
    ):
        self.api_key = api_key
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=2, base_delay=1.0)
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    def _request(self, endpoint: str, ticker: str, cancel: CancellationToken) -> List[Dict[str, Any]]:
        try:
            response = self.client.get(
                f"{self.base_url}/{endpoint}",
                params={"symbol": ticker, "apikey": self.api_key},
                timeout=cancel.timeout_for(self.timeout),
            )
        except httpx.HTTPError as e:
            raise SourceError(self.name, f"request failed: {e}")

        raise_for_status(response, self.name, ticker)

        try:
            data = response.json()
        except ValueError:
            raise SourceError(self.name, "response is not valid JSON")

        # FMP reports key and plan problems in a 200 body
        if isinstance(data, dict) and "Error Message" in data:
            raise PermanentSourceError(self.name, data["Error Message"])
        if not isinstance(data, list):
            raise SourceError(self.name, f"unexpected {endpoint} payload")
        return data

    def fetch(self, ticker: str, cancel: Optional[CancellationToken] = None) -> QuoteRecord:
        ticker = normalize_ticker(ticker)
        if not self.api_key:
            raise PermanentSourceError(self.name, "FMP_API_KEY is not configured")
        cancel = cancel or CancellationToken()

        quotes = self.retry_policy.run(lambda: self._request("quote", ticker, cancel), cancel=cancel)
        if not quotes:
            raise PermanentSourceError(self.name, f"Ticker not found: {ticker}")
        quote = quotes[0]

        price = quote.get("price")
        if price is None:
            raise SourceError(self.name, f"Price not available for {ticker}")

        ratios: Dict[str, Any] = {
            "MarketCap": quote.get("marketCap"),
        }
        try:
            rows = self._request("ratios-ttm", ticker, cancel)
        except SourceError as e:
            logger.warning("fmp_ratios_failed", ticker=ticker, error=str(e))
            rows = []
        if rows:
            for field_name, ratio in TTM_FIELDS.items():
                ratios[ratio] = rows[0].get(field_name)

        try:
            record = QuoteRecord(
                ticker=ticker,
                name=quote.get("name") or ticker,
                price=price,
                currency=quote.get("currency") or expected_currency(ticker),
                ratios=ratios,
                source=self.tag,
            )
        except ValueError as e:
            raise SourceError(self.name, str(e))

        logger.info("fmp_fetched", ticker=ticker, price=record.price, ratio_count=len(record.ratios))
        return record
