"""
Unit tests for the HTML scrape adapter and derived ratios.
"""

import httpx
import pytest
from bs4 import BeautifulSoup

from quote_guard.core.records import SourceTag
from quote_guard.core.retry import NO_RETRY, RetryPolicy
from quote_guard.errors import PermanentSourceError, SourceError
from quote_guard.sources.ratios import calculate_derived_ratios
from quote_guard.sources.scraper import (
    INCOME_LABELS,
    ScrapeSource,
    extract_key_statistics,
    extract_statement,
    parse_market_cap,
    parse_price,
    parse_ratio_value,
)

QUOTE_PAGE = """
<html>
<head><title>Capgemini SE (CAP.PA) Stock Price, News, Quote - Yahoo Finance</title></head>
<body>
  <section>
    <h1>Capgemini SE (CAP.PA)</h1>
    <fin-streamer data-field="regularMarketPrice" data-test="qsp-price" data-value="180.45">180.45</fin-streamer>
  </section>
</body>
</html>
"""

KEY_STATISTICS_PAGE = """
<html><body>
<table>
  <tr><td>Market Cap (intraday)</td><td>31.2B</td></tr>
  <tr><td>Trailing P/E</td><td>18.50</td></tr>
  <tr><td>Forward P/E</td><td>14.10</td></tr>
  <tr><td>Return on Equity (ttm)</td><td>14.20%</td></tr>
  <tr><td>Beta (5Y Monthly)</td><td>N/A</td></tr>
</table>
</body></html>
"""

FINANCIALS_PAGE = """
<html><body>
<p>All numbers in thousands</p>
<div class="tableBody">
  <div class="row"><div class="column">Total Revenue</div><div class="column">22,096,000</div><div class="column">22,522,000</div></div>
  <div class="row"><div class="column">Gross Profit</div><div class="column">5,900,000</div></div>
  <div class="row"><div class="column">Net Income Common Stockholders</div><div class="column">1,670,000</div></div>
</div>
</body></html>
"""

CONSENT_PAGE = """
<html><body><form action="https://consent.yahoo.com/v2/collectConsent" method="post">
<button>Accept all</button></form></body></html>
"""


def _site(pages):
    """Mock transport serving path -> (status, html); unknown paths 404."""
    requests = []

    def handler(request):
        requests.append(request.url.path)
        status, html = pages.get(request.url.path, (404, ""))
        return httpx.Response(status, text=html)

    return httpx.Client(transport=httpx.MockTransport(handler)), requests


class TestParsing:
    """Test value parsing helpers."""

    def test_parse_ratio_value(self):
        assert parse_ratio_value("18.50") == 18.5
        assert parse_ratio_value("14.20%") == pytest.approx(0.142)
        assert parse_ratio_value("-3.5%") == pytest.approx(-0.035)
        assert parse_ratio_value("N/A") is None
        assert parse_ratio_value("--") is None
        assert parse_ratio_value(None) is None

    def test_parse_price(self):
        assert parse_price("180.45") == 180.45
        assert parse_price("1,234.56") == 1234.56
        assert parse_price("12,345,678") == 12_345_678
        assert parse_price("180,45") == 180.45
        assert parse_price("180,4") == 180.4
        assert parse_price("EUR 180,45") == 180.45

    def test_ambiguous_price_is_rejected(self):
        assert parse_price("1,2345") is None
        assert parse_price("1.234,56") is None
        assert parse_price("N/A") is None
        assert parse_price(None) is None

    def test_parse_market_cap(self):
        assert parse_market_cap("31.2B") == pytest.approx(31.2e9)
        assert parse_market_cap("1.5T") == pytest.approx(1.5e12)
        assert parse_market_cap("2,345.6M") == pytest.approx(2345.6e6)
        assert parse_market_cap("22,096,000") == 22_096_000
        assert parse_market_cap("N/A") is None

    def test_key_statistics_first_match_wins(self):
        ratios = extract_key_statistics(BeautifulSoup(KEY_STATISTICS_PAGE, "html.parser"))
        assert ratios["PE"] == 18.5
        assert ratios["ROE"] == pytest.approx(0.142)
        assert ratios["MarketCap"] == pytest.approx(31.2e9)
        assert "Beta" not in ratios

    def test_statement_scaled_from_thousands(self):
        data = extract_statement(BeautifulSoup(FINANCIALS_PAGE, "html.parser"), INCOME_LABELS)
        assert data["Revenue"] == 22_096_000_000
        assert data["GrossProfit"] == 5_900_000_000
        assert data["NetIncome"] == 1_670_000_000

    def test_statement_from_table_rows(self):
        html = "<table><tr><th>Total Revenue</th><td>1,000</td></tr></table>"
        data = extract_statement(BeautifulSoup(html, "html.parser"), INCOME_LABELS)
        assert data == {"Revenue": 1000.0}


class TestDerivedRatios:
    """Test ratio derivation from statement items."""

    def test_fills_missing_ratios(self):
        ratios = calculate_derived_ratios({
            "MarketCap": 100.0,
            "Revenue": 50.0,
            "GrossProfit": 20.0,
            "NetIncome": 5.0,
            "TotalEquity": 25.0,
            "TotalDebt": 10.0,
            "InterestExpense": -2.0,
            "OperatingIncome": 8.0,
        })
        assert ratios["PS"] == 2.0
        assert ratios["PB"] == 4.0
        assert ratios["GrossMargin"] == 0.4
        assert ratios["NetMargin"] == 0.1
        assert ratios["ROE"] == 0.2
        assert ratios["DebtToEquity"] == 0.4
        assert ratios["InterestCoverage"] == 4.0

    def test_scraped_ratio_never_overwritten(self):
        ratios = calculate_derived_ratios({"PB": 3.0, "MarketCap": 100.0, "TotalEquity": 25.0})
        assert ratios["PB"] == 3.0

    def test_zero_denominator_leaves_ratio_absent(self):
        ratios = calculate_derived_ratios({"MarketCap": 100.0, "Revenue": 0.0})
        assert "PS" not in ratios

    def test_peg_from_growth(self):
        ratios = calculate_derived_ratios({"PE": 20.0, "EPSGrowth": 0.1})
        assert ratios["PEG"] == pytest.approx(2.0)

    def test_sustainable_growth(self):
        ratios = calculate_derived_ratios({"ROE": 0.2, "PayoutRatio": 0.5})
        # b = 0.5, SGR = 0.1 / 0.9
        assert ratios["SGR"] == pytest.approx(0.1 / 0.9)


class TestScrapeSource:
    """Test the adapter end to end over a mocked site."""

    def test_scrapes_quote_statistics_and_statements(self):
        """Capgemini on Euronext Paris: price in EUR, PE from key statistics."""
        client, requests = _site({
            "/quote/CAP.PA": (200, QUOTE_PAGE),
            "/quote/CAP.PA/key-statistics": (200, KEY_STATISTICS_PAGE),
            "/quote/CAP.PA/financials": (200, FINANCIALS_PAGE),
        })

        record = ScrapeSource(client, retry_policy=NO_RETRY).fetch("cap.pa")

        assert record.ticker == "CAP.PA"
        assert record.name == "Capgemini SE"
        assert record.price == 180.45
        assert record.currency == "EUR"
        assert record.source is SourceTag.SCRAPE
        assert record.ratios["PE"] == 18.5
        assert record.ratios["GrossMargin"] == pytest.approx(5.9 / 22.096)
        assert record.ratios["PS"] == pytest.approx(31.2 / 22.096)
        assert "/quote/CAP.PA/balance-sheet" in requests

    def test_price_from_embedded_json(self):
        html = '<html><body><h1>Apple Inc. (AAPL)</h1><script>{"regularMarketPrice":{"raw":189.5,"fmt":"189.50"}}</script></body></html>'
        client, _ = _site({"/quote/AAPL": (200, html)})

        record = ScrapeSource(client, retry_policy=NO_RETRY).fetch("AAPL")

        assert record.price == 189.5
        assert record.currency == "USD"
        assert record.name == "Apple Inc."

    def test_decimal_comma_price(self):
        html = (
            '<html><body><h1>Capgemini SE (CAP.PA)</h1>'
            '<fin-streamer data-field="regularMarketPrice">180,45</fin-streamer></body></html>'
        )
        client, _ = _site({"/quote/CAP.PA": (200, html)})

        record = ScrapeSource(client, retry_policy=NO_RETRY).fetch("CAP.PA")

        assert record.price == 180.45

    def test_missing_price_fails(self):
        client, _ = _site({"/quote/AAPL": (200, "<html><head><title>Oops</title></head></html>")})
        with pytest.raises(SourceError, match="Price not found for AAPL"):
            ScrapeSource(client, retry_policy=NO_RETRY).fetch("AAPL")

    def test_consent_page_fails(self):
        client, _ = _site({"/quote/AAPL": (200, CONSENT_PAGE)})
        with pytest.raises(SourceError, match="blocked by consent page"):
            ScrapeSource(client, retry_policy=NO_RETRY).fetch("AAPL")

    def test_unknown_ticker_not_retried(self):
        client, requests = _site({})
        source = ScrapeSource(client, retry_policy=RetryPolicy(max_attempts=3, sleep=lambda s: None))

        with pytest.raises(PermanentSourceError, match="Ticker not found: ZZZZ"):
            source.fetch("ZZZZ")
        assert requests == ["/quote/ZZZZ"]

    def test_server_errors_retried(self):
        client, requests = _site({"/quote/AAPL": (503, "")})
        sleeps = []
        source = ScrapeSource(client, retry_policy=RetryPolicy(max_attempts=3, sleep=sleeps.append))

        with pytest.raises(SourceError, match="HTTP 503"):
            source.fetch("AAPL")
        assert len(requests) == 3
        assert sleeps == [1.0, 2.0]
