"""
Exchange suffix conventions.

Maps exchange-qualified ticker suffixes to their trading currency.
"""

from typing import Dict

SUFFIX_CURRENCY: Dict[str, str] = {
    ".PA": "EUR",
    ".DE": "EUR",
    ".MI": "EUR",
    ".AS": "EUR",
    ".L": "GBP",
    ".TO": "CAD",
    ".HK": "HKD",
    ".SW": "CHF",
}

EURO_AREA_SUFFIXES = (".PA", ".DE", ".MI", ".AS")


def expected_currency(ticker: str) -> str:
    """Currency implied by the ticker suffix, USD when there is none."""
    upper = ticker.upper()
    for suffix, currency in SUFFIX_CURRENCY.items():
        if upper.endswith(suffix):
            return currency
    return "USD"


def is_euro_area(ticker: str) -> bool:
    return ticker.upper().endswith(EURO_AREA_SUFFIXES)
