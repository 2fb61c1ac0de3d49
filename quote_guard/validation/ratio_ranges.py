"""
Plausible ranges for financial ratios.

Used to catch hallucinated values, data errors and unit mix-ups
(percent vs decimal, cents vs units) in generated data.
"""

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class RatioRange:
    """Inclusive bounds for a ratio."""
    min: float
    max: float
    required: bool = False
    description: str = ""


RATIO_RANGES: Dict[str, RatioRange] = {
    # Valuation
    "PE": RatioRange(0, 500, description="Price-to-Earnings ratio. Negative earnings -> null"),
    "PB": RatioRange(0, 50, description="Price-to-Book ratio"),
    "PEG": RatioRange(0, 10, description="PEG ratio (PE / growth rate)"),
    "PS": RatioRange(0, 100, description="Price-to-Sales ratio"),
    "PCF": RatioRange(0, 100, description="Price-to-Cash-Flow ratio"),
    "PFCF": RatioRange(0, 100, description="Price-to-Free-Cash-Flow ratio"),
    "EV_EBITDA": RatioRange(0, 100, description="Enterprise Value to EBITDA"),

    # Profitability (decimals: 0.15 = 15%)
    "ROE": RatioRange(-1.0, 2.0, description="Return on Equity (decimal)"),
    "ROA": RatioRange(-0.5, 1.0, description="Return on Assets (decimal)"),
    "ROIC": RatioRange(-0.5, 1.5, description="Return on Invested Capital (decimal)"),
    "GrossMargin": RatioRange(0, 1.0, description="Gross Profit Margin (decimal)"),
    "OperatingMargin": RatioRange(-0.5, 1.0, description="Operating Margin (decimal)"),
    "NetMargin": RatioRange(-0.5, 1.0, description="Net Profit Margin (decimal)"),
    "FCFMargin": RatioRange(-0.5, 1.0, description="Free Cash Flow Margin (decimal)"),
    "CashReturn": RatioRange(-0.5, 1.0, description="Cash Return on Investment (decimal)"),

    # Liquidity
    "CurrentRatio": RatioRange(0, 10, description="Current Assets / Current Liabilities"),
    "QuickRatio": RatioRange(0, 10, description="Quick Ratio (Acid Test)"),
    "CashRatio": RatioRange(0, 10, description="Cash / Current Liabilities"),

    # Leverage
    "DebtToEquity": RatioRange(0, 15, description="Total Debt / Total Equity"),
    "DebtToAssets": RatioRange(0, 1.0, description="Total Debt / Total Assets (decimal)"),
    "DebtToRevenue": RatioRange(0, 20, description="Total Debt / Revenue"),
    "DebtToEBITDA": RatioRange(0, 20, description="Total Debt / EBITDA"),
    "NetDebtToEBITDA": RatioRange(
        -10, 20, description="Net Debt / EBITDA (can be negative if cash > debt)"
    ),
    "InterestCoverage": RatioRange(-10, 100, description="EBIT / Interest Expense"),

    # Efficiency
    "AssetTurnover": RatioRange(0, 10, description="Revenue / Total Assets"),
    "InventoryTurnover": RatioRange(0, 100, description="Cost of Goods Sold / Inventory"),
    "ReceivablesTurnover": RatioRange(0, 100, description="Revenue / Accounts Receivable"),
    "PayablesTurnover": RatioRange(0, 100, description="Purchases / Accounts Payable"),

    # Growth (decimals)
    "RevenueGrowth": RatioRange(-1.0, 5.0, description="YoY Revenue Growth (decimal)"),
    "EPSGrowth": RatioRange(-1.0, 5.0, description="YoY EPS Growth (decimal)"),
    "BookValueGrowth": RatioRange(-1.0, 5.0, description="YoY Book Value Growth (decimal)"),
    "IGR": RatioRange(-0.5, 1.0, description="Internal Growth Rate (decimal)"),
    "SGR": RatioRange(-0.5, 1.0, description="Sustainable Growth Rate (decimal)"),

    # Dividends
    "DividendYield": RatioRange(0, 0.25, description="Annual Dividend / Price (decimal, 0.05 = 5%)"),
    "PayoutRatio": RatioRange(0, 2.0, description="Dividends / Earnings (decimal, can exceed 1.0)"),

    # Market data
    "Price": RatioRange(0.01, 1_000_000, required=True, description="Current stock price (must be positive)"),
    "MarketCap": RatioRange(1_000_000, 5_000_000_000_000, description="Market Capitalization in base currency"),
    "Beta": RatioRange(-5.0, 5.0, description="Stock beta (volatility vs market)"),
}


def is_within_range(name: str, value: Optional[float]) -> bool:
    """True when the value is missing, the ratio is unknown, or it is in bounds."""
    if value is None:
        return True
    bounds = RATIO_RANGES.get(name)
    if bounds is None:
        return True
    return bounds.min <= value <= bounds.max


def get_range_validation_message(name: str, value: float) -> str:
    bounds = RATIO_RANGES.get(name)
    if bounds is None:
        return f"Unknown ratio: {name}"
    return (
        f"{name} value {value} is outside acceptable range "
        f"[{bounds.min}, {bounds.max}]. {bounds.description}"
    ).rstrip()
