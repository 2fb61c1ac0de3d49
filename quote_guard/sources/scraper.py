"""
HTML scrape adapter.

Primary strategy. Reads the Yahoo Finance quote page for name and price,
then the key-statistics, financials, balance-sheet and cash-flow pages for
ratios and raw statement items. Only the quote page is required; the
others are best-effort.
"""

import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import structlog
from bs4 import BeautifulSoup

from quote_guard.core.exchanges import expected_currency
from quote_guard.core.records import QuoteRecord, SourceTag, normalize_ticker
from quote_guard.core.retry import CancellationToken, RetryPolicy
from quote_guard.errors import SourceError

from .base import BROWSER_HEADERS, QuoteSource, raise_for_status
from .ratios import calculate_derived_ratios

logger = structlog.get_logger(__name__)

SCRAPE_BASE_URL = "https://finance.yahoo.com"

NAME_SELECTORS = ('[data-test="quote-header"] h1', "section h1", "h1")
PRICE_SELECTORS = (
    'fin-streamer[data-field="regularMarketPrice"][data-test="qsp-price"]',
    'fin-streamer[data-field="regularMarketPrice"]',
    '[data-test="qsp-price"]',
    ".livePrice",
)
PRICE_JSON_RE = re.compile(r'"regularMarketPrice":\{"raw":([0-9.]+)')
THOUSANDS_PRICE_RE = re.compile(r"^[0-9]{1,3}(?:,[0-9]{3})+(?:\.[0-9]+)?$")
DECIMAL_COMMA_PRICE_RE = re.compile(r"^[0-9]+,[0-9]{1,2}$")
PLAIN_PRICE_RE = re.compile(r"^[0-9]+(?:\.[0-9]+)?$")
MAGNITUDE_RE = re.compile(r"(-?[0-9]+(?:\.[0-9]+)?)\s*([TBMK])\b", re.IGNORECASE)
MAGNITUDES = {
    "T": 1_000_000_000_000,
    "B": 1_000_000_000,
    "M": 1_000_000,
    "K": 1_000,
}
MISSING_VALUES = ("", "N/A", "—", "-", "--")
GENERIC_TITLES = ("Yahoo Finance", "Finance")

# Key-statistics label matchers, first match wins per ratio.
STAT_LABELS: Sequence[Tuple[str, Callable[[str], bool]]] = (
    ("PE", lambda s: "trailing p/e" in s or s == "pe ratio (ttm)"),
    ("PB", lambda s: "price/book" in s or "p/b" in s),
    ("PEG", lambda s: "peg ratio" in s),
    ("PS", lambda s: "price/sales" in s or "p/s" in s),
    ("ROE", lambda s: "return on equity" in s or s == "roe"),
    ("ROA", lambda s: "return on assets" in s or s == "roa"),
    ("NetMargin", lambda s: "profit margin" in s or "net margin" in s),
    ("OperatingMargin", lambda s: "operating margin" in s),
    ("DebtToEquity", lambda s: "total debt/equity" in s or "debt to equity" in s),
    ("CurrentRatio", lambda s: "current ratio" in s),
    ("QuickRatio", lambda s: "quick ratio" in s),
    ("DividendYield", lambda s: "forward annual dividend yield" in s or "dividend yield" in s),
    ("PayoutRatio", lambda s: "payout ratio" in s),
    ("RevenueGrowth", lambda s: "revenue growth" in s),
    ("EPSGrowth", lambda s: "earnings growth" in s),
    ("MarketCap", lambda s: "market cap" in s),
    ("Beta", lambda s: "beta" in s),
)

INCOME_LABELS = {
    "Total Revenue": "Revenue",
    "Gross Profit": "GrossProfit",
    "Operating Income": "OperatingIncome",
    "Net Income Common Stockholders": "NetIncome",
    "Interest Expense": "InterestExpense",
    "EBITDA": "EBITDA",
}
BALANCE_LABELS = {
    "Total Assets": "TotalAssets",
    "Total Liabilities Net Minority Interest": "TotalLiabilities",
    "Total Equity Gross Minority Interest": "TotalEquity",
    "Cash And Cash Equivalents": "CashAndEquivalents",
    "Total Debt": "TotalDebt",
    "Total Debt Net Minority Interest": "TotalDebt",
    "Inventory": "Inventory",
    "Accounts Receivable": "AccountsReceivable",
    "Accounts Payable": "AccountsPayable",
    "Working Capital": "WorkingCapital",
    "Total Current Assets": "TotalCurrentAssets",
    "Total Current Liabilities Net Minority Interest": "TotalCurrentLiabilities",
    "Current Liabilities": "TotalCurrentLiabilities",
}
CASH_FLOW_LABELS = {
    "Operating Cash Flow": "OperatingCashFlow",
    "Free Cash Flow": "FreeCashFlow",
    "Capital Expenditure": "CAPEX",
    "Cash Dividends Paid": "DividendsPaid",
}
STATEMENT_PAGES = (
    ("financials", INCOME_LABELS),
    ("balance-sheet", BALANCE_LABELS),
    ("cash-flow", CASH_FLOW_LABELS),
)


def parse_ratio_value(text: Optional[str]) -> Optional[float]:
    """Parse a displayed ratio; percentages become decimals."""
    if text is None or text.strip() in MISSING_VALUES:
        return None
    cleaned = re.sub(r"[^0-9.\-]", "", text)
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if "%" in text:
        return value / 100
    return value


def parse_market_cap(text: Optional[str]) -> Optional[float]:
    """Parse an amount with an optional T/B/M/K magnitude suffix."""
    if text is None or text.strip() in MISSING_VALUES:
        return None
    compact = text.replace(",", "")
    match = MAGNITUDE_RE.search(compact)
    if match:
        return float(match.group(1)) * MAGNITUDES[match.group(2).upper()]
    try:
        return float(re.sub(r"[^0-9.\-]", "", compact))
    except ValueError:
        return None


def extract_name(soup: BeautifulSoup, ticker: str) -> str:
    for selector in NAME_SELECTORS:
        for element in soup.select(selector):
            text = element.get_text(" ", strip=True)
            name = re.sub(r"\s*\([^)]+\)\s*$", "", text).strip()
            if name and name not in GENERIC_TITLES:
                return name
    if soup.title and soup.title.string:
        head = soup.title.string.split("(")[0].strip()
        if head and head not in GENERIC_TITLES:
            return head
    return ticker


def parse_price(text: Optional[str]) -> Optional[float]:
    """Parse a displayed price such as "1,234.56", "180.45" or "180,45".

    A comma is a thousands separator only when followed by groups of three
    digits; a single comma with one or two trailing digits is a decimal
    comma. Anything else is ambiguous and yields None.
    """
    if text is None:
        return None
    value = re.sub(r"[^0-9.,]", "", str(text))
    if PLAIN_PRICE_RE.match(value):
        return float(value)
    if THOUSANDS_PRICE_RE.match(value):
        return float(value.replace(",", ""))
    if DECIMAL_COMMA_PRICE_RE.match(value):
        return float(value.replace(",", "."))
    return None


def extract_price(soup: BeautifulSoup, html: str) -> Optional[float]:
    """Price from the quote header, falling back to embedded JSON."""
    for selector in PRICE_SELECTORS:
        for element in soup.select(selector):
            for candidate in (element.get("data-value"), element.get_text(strip=True)):
                price = parse_price(candidate)
                if price is not None and price > 0:
                    return price
    match = PRICE_JSON_RE.search(html)
    if match:
        return float(match.group(1))
    return None


def extract_key_statistics(soup: BeautifulSoup) -> Dict[str, float]:
    ratios: Dict[str, float] = {}
    for row in soup.find_all("tr"):
        cells = row.find_all("td")
        if len(cells) < 2:
            continue
        label = cells[0].get_text(" ", strip=True).lower()
        value_text = cells[1].get_text(" ", strip=True)
        for key, matches in STAT_LABELS:
            if not matches(label):
                continue
            if key not in ratios:
                value = (
                    parse_market_cap(value_text) if key == "MarketCap"
                    else parse_ratio_value(value_text)
                )
                if value is not None:
                    ratios[key] = value
            break
    return ratios


def _row_cells(row) -> List[str]:
    if row.name == "tr":
        cells = row.find_all(["td", "th"], recursive=False)
    else:
        cells = row.find_all("div", class_="column", recursive=False)
    return [cell.get_text(" ", strip=True) for cell in cells]


def extract_statement(soup: BeautifulSoup, labels: Dict[str, str]) -> Dict[str, float]:
    """Most recent value of each mapped line item.

    Values stated "in thousands" are scaled to units.
    """
    scale = 1000.0 if re.search(r"in thousands", soup.get_text(" "), re.IGNORECASE) else 1.0
    data: Dict[str, float] = {}
    rows = soup.select('.tableBody .row, div[data-test="fin-row"], tr')
    for row in rows:
        cells = _row_cells(row)
        if len(cells) < 2:
            continue
        key = labels.get(cells[0])
        if key is None or key in data:
            continue
        value = parse_market_cap(cells[1])
        if value is not None:
            data[key] = value * scale
    return data


class ScrapeSource(QuoteSource):
    """Adapter scraping the finance site's HTML pages."""

    tag = SourceTag.SCRAPE

    def __init__(
        self,
        client: httpx.Client,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 15.0,
        base_url: str = SCRAPE_BASE_URL,
    ):
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3, base_delay=1.0, multiplier=2.0, max_delay=10.0
        )
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    def fetch(self, ticker: str, cancel: Optional[CancellationToken] = None) -> QuoteRecord:
        ticker = normalize_ticker(ticker)
        cancel = cancel or CancellationToken()
        return self.retry_policy.run(lambda: self._scrape(ticker, cancel), cancel=cancel)

    def _get(self, path: str, ticker: str, cancel: CancellationToken) -> str:
        cancel.raise_if_cancelled(f"request to {path}")
        try:
            response = self.client.get(
                f"{self.base_url}/quote/{ticker}{path}",
                headers=BROWSER_HEADERS,
                timeout=cancel.timeout_for(self.timeout),
                follow_redirects=True,
            )
        except httpx.HTTPError as e:
            raise SourceError(self.name, f"request failed: {e}")
        raise_for_status(response, self.name, ticker)
        return response.text

    def _scrape(self, ticker: str, cancel: CancellationToken) -> QuoteRecord:
        html = self._get("", ticker, cancel)
        soup = BeautifulSoup(html, "html.parser")

        if soup.select_one('form[action*="consent"]') is not None:
            raise SourceError(self.name, "blocked by consent page")

        price = extract_price(soup, html)
        if price is None:
            title = soup.title.string.strip() if soup.title and soup.title.string else ""
            raise SourceError(self.name, f"Price not found for {ticker} (page title: {title!r})")
        name = extract_name(soup, ticker)

        ratios: Dict[str, float] = {}
        try:
            ratios.update(extract_key_statistics(
                BeautifulSoup(self._get("/key-statistics", ticker, cancel), "html.parser")
            ))
        except SourceError as e:
            logger.warning("scrape_page_failed", ticker=ticker, page="key-statistics", error=str(e))

        for page, labels in STATEMENT_PAGES:
            try:
                statement = extract_statement(
                    BeautifulSoup(self._get(f"/{page}", ticker, cancel), "html.parser"),
                    labels,
                )
            except SourceError as e:
                logger.warning("scrape_page_failed", ticker=ticker, page=page, error=str(e))
                continue
            for key, value in statement.items():
                ratios.setdefault(key, value)

        record = QuoteRecord(
            ticker=ticker,
            name=name,
            price=price,
            currency=expected_currency(ticker),
            ratios=calculate_derived_ratios(ratios),
            source=self.tag,
        )
        logger.info(
            "scrape_fetched",
            ticker=ticker,
            price=record.price,
            currency=record.currency,
            ratio_count=len(record.ratios),
        )
        return record
