"""
Derived financial ratios.

Fills ratios a page did not state directly from raw statement items.
A ratio that was scraped is never overwritten, and a missing input or a
zero denominator leaves the ratio absent.
"""

from typing import Dict, Optional

# Approximate corporate tax rate used for NOPAT.
TAX_RATE = 0.25


def _div(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if numerator is None or denominator is None or denominator == 0:
        return None
    return numerator / denominator


def _all(*values: Optional[float]) -> bool:
    return all(v is not None for v in values)


def calculate_derived_ratios(raw: Dict[str, float]) -> Dict[str, float]:
    """Return a copy of raw with every computable missing ratio added."""
    r: Dict[str, Optional[float]] = dict(raw)

    def fill(name: str, value: Optional[float]) -> None:
        if r.get(name) is None and value is not None:
            r[name] = value

    g = r.get
    enterprise_value = None
    if _all(g("MarketCap"), g("TotalDebt"), g("CashAndEquivalents")):
        enterprise_value = g("MarketCap") + g("TotalDebt") - g("CashAndEquivalents")

    # Valuation
    if _all(g("PE"), g("EPSGrowth")):
        fill("PEG", _div(g("PE"), g("EPSGrowth") * 100))
    fill("PB", _div(g("MarketCap"), g("TotalEquity")))
    fill("PS", _div(g("MarketCap"), g("Revenue")))
    fill("PCF", _div(g("MarketCap"), g("OperatingCashFlow")))
    fill("PFCF", _div(g("MarketCap"), g("FreeCashFlow")))
    fill("EV_EBITDA", _div(enterprise_value, g("EBITDA")))

    # Profitability
    fill("GrossMargin", _div(g("GrossProfit"), g("Revenue")))
    fill("OperatingMargin", _div(g("OperatingIncome"), g("Revenue")))
    fill("NetMargin", _div(g("NetIncome"), g("Revenue")))
    fill("FCFMargin", _div(g("FreeCashFlow"), g("Revenue")))
    fill("ROA", _div(g("NetIncome"), g("TotalAssets")))
    fill("ROE", _div(g("NetIncome"), g("TotalEquity")))
    if _all(g("OperatingIncome"), g("TotalEquity"), g("TotalDebt"), g("CashAndEquivalents")):
        invested = g("TotalEquity") + g("TotalDebt") - g("CashAndEquivalents")
        fill("ROIC", _div(g("OperatingIncome") * (1 - TAX_RATE), invested))
    if _all(g("FreeCashFlow"), g("InterestExpense")):
        fill("CashReturn", _div(g("FreeCashFlow") + g("InterestExpense"), enterprise_value))

    # Liquidity
    fill("CurrentRatio", _div(g("TotalCurrentAssets"), g("TotalCurrentLiabilities")))
    if _all(g("TotalCurrentAssets"), g("Inventory")):
        fill("QuickRatio", _div(g("TotalCurrentAssets") - g("Inventory"), g("TotalCurrentLiabilities")))
    if _all(g("CashAndEquivalents"), g("AccountsReceivable")):
        fill(
            "QuickRatio",
            _div(g("CashAndEquivalents") + g("AccountsReceivable"), g("TotalCurrentLiabilities")),
        )
    fill("CashRatio", _div(g("CashAndEquivalents"), g("TotalCurrentLiabilities")))

    # Leverage
    fill("DebtToEquity", _div(g("TotalDebt"), g("TotalEquity")))
    fill("DebtToAssets", _div(g("TotalDebt"), g("TotalAssets")))
    fill("DebtToRevenue", _div(g("TotalDebt"), g("Revenue")))
    fill("DebtToEBITDA", _div(g("TotalDebt"), g("EBITDA")))
    if _all(g("TotalDebt"), g("CashAndEquivalents")):
        fill("NetDebtToEBITDA", _div(g("TotalDebt") - g("CashAndEquivalents"), g("EBITDA")))
    if g("InterestExpense") is not None:
        fill("InterestCoverage", _div(g("OperatingIncome"), abs(g("InterestExpense"))))

    # Efficiency
    fill("AssetTurnover", _div(g("Revenue"), g("TotalAssets")))
    fill("ReceivablesTurnover", _div(g("Revenue"), g("AccountsReceivable")))

    # Growth capacity, with retention ratio b = 1 - payout
    if g("PayoutRatio") is not None:
        retention = 1 - g("PayoutRatio")
        if g("ROA") is not None:
            fill("IGR", _div(g("ROA") * retention, 1 - g("ROA") * retention))
        if g("ROE") is not None:
            fill("SGR", _div(g("ROE") * retention, 1 - g("ROE") * retention))

    return {k: v for k, v in r.items() if v is not None}
