"""
Unit tests for the FMP REST adapter.
"""

import httpx
import pytest

from quote_guard.core.records import SourceTag
from quote_guard.core.retry import NO_RETRY
from quote_guard.errors import PermanentSourceError, SourceError
from quote_guard.sources.fmp import FMPSource

QUOTE = [{
    "symbol": "MSFT",
    "name": "Microsoft Corporation",
    "price": 415.2,
    "marketCap": 3_090_000_000_000,
}]

RATIOS_TTM = [{
    "symbol": "MSFT",
    "priceToEarningsRatioTTM": 35.1,
    "priceToBookRatioTTM": 11.8,
    "netProfitMarginTTM": 0.36,
    "currentRatioTTM": 1.27,
    "dividendYieldTTM": None,
}]


def _client(routes):
    requests = []

    def handler(request):
        requests.append(request)
        endpoint = request.url.path.rsplit("/", 1)[-1]
        response = routes.get(endpoint)
        if response is None:
            return httpx.Response(404)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    return httpx.Client(transport=httpx.MockTransport(handler)), requests


class TestFMPSource:
    """Test the last-resort REST strategy."""

    def test_fetch_combines_quote_and_ratios(self):
        client, requests = _client({"quote": QUOTE, "ratios-ttm": RATIOS_TTM})

        record = FMPSource("demo-key", client, retry_policy=NO_RETRY).fetch("msft")

        assert record.ticker == "MSFT"
        assert record.name == "Microsoft Corporation"
        assert record.price == 415.2
        assert record.currency == "USD"
        assert record.source is SourceTag.REST_API
        assert record.ratios["PE"] == 35.1
        assert record.ratios["NetMargin"] == 0.36
        assert record.ratios["MarketCap"] == 3.09e12
        assert "DividendYield" not in record.ratios

        assert requests[0].url.params["symbol"] == "MSFT"
        assert requests[0].url.params["apikey"] == "demo-key"

    def test_missing_key_is_permanent(self):
        client, requests = _client({"quote": QUOTE})
        with pytest.raises(PermanentSourceError, match="FMP_API_KEY is not configured"):
            FMPSource(None, client).fetch("MSFT")
        assert requests == []

    def test_ratios_failure_is_tolerated(self):
        client, _ = _client({"quote": QUOTE, "ratios-ttm": httpx.Response(500)})

        record = FMPSource("demo-key", client, retry_policy=NO_RETRY).fetch("MSFT")

        assert record.price == 415.2
        assert record.ratios == {"MarketCap": 3.09e12}

    def test_empty_quote_is_not_found(self):
        client, _ = _client({"quote": []})
        with pytest.raises(PermanentSourceError, match="Ticker not found: ZZZZ"):
            FMPSource("demo-key", client, retry_policy=NO_RETRY).fetch("ZZZZ")

    def test_error_message_body_is_permanent(self):
        client, _ = _client({"quote": {"Error Message": "Invalid API KEY."}})
        with pytest.raises(PermanentSourceError, match="Invalid API KEY"):
            FMPSource("bad-key", client, retry_policy=NO_RETRY).fetch("MSFT")

    def test_plan_restriction_is_permanent(self):
        client, _ = _client({"quote": httpx.Response(402)})
        with pytest.raises(PermanentSourceError, match="HTTP 402"):
            FMPSource("demo-key", client, retry_policy=NO_RETRY).fetch("CAP.PA")

    def test_missing_price(self):
        client, _ = _client({"quote": [{"symbol": "MSFT"}]})
        with pytest.raises(SourceError, match="Price not available"):
            FMPSource("demo-key", client, retry_policy=NO_RETRY).fetch("MSFT")
