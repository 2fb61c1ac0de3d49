"""
Validation of generated quote data.

Four ordered passes whose findings accumulate:
1. Range validation - every ratio against RATIO_RANGES
2. Cross-ratio consistency - relationships that must hold between ratios
3. Ticker rules - currency, price magnitude and data freshness
4. Confidence scoring - final score derived from all findings

Generated data is accepted only when the final confidence reaches
ACCEPT_THRESHOLD.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import List, Mapping, Optional

from quote_guard.core.exchanges import expected_currency, is_euro_area
from quote_guard.core.records import GeneratedQuoteRecord, normalize_ticker

from .ratio_ranges import RATIO_RANGES, get_range_validation_message, is_within_range

ACCEPT_THRESHOLD = 0.80
DEFAULT_CONFIDENCE = 0.5
ERROR_PENALTY = 0.15
WARNING_PENALTY = 0.05
CURRENT_YEAR_BONUS = 0.05
OLD_DATA_PENALTY = 0.10
STALE_WARNING_DAYS = 90
STALE_ERROR_DAYS = 180

# Core ratios a complete record is expected to carry.
EXPECTED_RATIOS = (
    "PE", "PB", "PEG", "PS",
    "ROE", "ROA", "ROIC",
    "GrossMargin", "OperatingMargin", "NetMargin",
    "CurrentRatio", "QuickRatio",
    "DebtToEquity", "DebtToEBITDA", "InterestCoverage",
    "DividendYield", "PayoutRatio",
    "RevenueGrowth", "EPSGrowth",
    "Beta",
)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one generated record."""
    is_valid: bool
    final_confidence: float
    should_accept: bool
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    ratios_with_issues: List[str] = field(default_factory=list)


@dataclass
class _Findings:
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    ratios_with_issues: List[str] = field(default_factory=list)
    # Stale or future-dated data is rejected whatever the score.
    freshness_rejected: bool = False


def validate_ai_data(
    record: GeneratedQuoteRecord,
    ticker: str,
    today: Optional[date] = None,
) -> ValidationResult:
    """Validate a generated record for the requested ticker.

    Args:
        record: Record decoded from the model's output
        ticker: Ticker that was requested (drives exchange rules)
        today: Reference date for freshness checks (defaults to today)

    Returns:
        ValidationResult; should_accept is True iff final_confidence >= 0.80
    """
    ticker = normalize_ticker(ticker)
    today = today or date.today()
    findings = _Findings()

    _check_ranges(record, findings)
    _check_consistency(record.ratios, findings)
    _check_ticker_rules(ticker, record, today, findings)

    confidence = _score(record, findings, today)

    return ValidationResult(
        is_valid=not findings.errors,
        final_confidence=confidence,
        should_accept=confidence >= ACCEPT_THRESHOLD,
        warnings=findings.warnings,
        errors=findings.errors,
        ratios_with_issues=findings.ratios_with_issues,
    )


def _check_ranges(record: GeneratedQuoteRecord, findings: _Findings) -> None:
    price = record.price
    if price is None or price <= 0:
        findings.errors.append("Price is required and must be > 0")
        findings.ratios_with_issues.append("Price")
    elif not is_within_range("Price", price):
        findings.errors.append(get_range_validation_message("Price", price))
        findings.ratios_with_issues.append("Price")

    for name, value in record.ratios.items():
        if is_within_range(name, value):
            continue
        message = get_range_validation_message(name, value)
        if RATIO_RANGES[name].required:
            findings.errors.append(message)
        else:
            findings.warnings.append(message)
        findings.ratios_with_issues.append(name)


def _pct(value: float, digits: int = 1) -> str:
    return f"{value * 100:.{digits}f}%"


def _check_consistency(ratios: Mapping[str, float], findings: _Findings) -> None:
    roe = ratios.get("ROE")
    net = ratios.get("NetMargin")
    if roe is not None and net is not None and roe > 0.25 and net < 0.05:
        findings.warnings.append(
            f"ROE ({_pct(roe)}) inconsistent with low NetMargin ({_pct(net)})"
        )

    peg, pe, eps_growth = ratios.get("PEG"), ratios.get("PE"), ratios.get("EPSGrowth")
    if peg is not None and pe is not None and eps_growth:
        expected = pe / (eps_growth * 100)
        deviation = abs(peg - expected) / (abs(expected) or 1)
        if deviation > 0.3:
            findings.warnings.append(
                f"PEG ({peg:.2f}) inconsistent with PE ({pe:.1f}) "
                f"and EPSGrowth ({_pct(eps_growth)})"
            )

    current, quick = ratios.get("CurrentRatio"), ratios.get("QuickRatio")
    if current is not None and quick is not None and quick > current:
        findings.errors.append(
            f"Quick ratio ({quick:.2f}) cannot exceed Current ratio ({current:.2f})"
        )

    gross, operating = ratios.get("GrossMargin"), ratios.get("OperatingMargin")
    if gross is not None and operating is not None and operating > gross:
        findings.warnings.append(
            f"Operating margin ({_pct(operating)}) exceeds gross margin ({_pct(gross)})"
        )
    if operating is not None and net is not None and net > operating:
        findings.warnings.append(
            f"Net margin ({_pct(net)}) exceeds operating margin ({_pct(operating)})"
        )

    payout, dividend_yield = ratios.get("PayoutRatio"), ratios.get("DividendYield")
    if payout == 0 and dividend_yield is not None and dividend_yield > 0.001:
        findings.warnings.append(
            f"Dividend yield ({_pct(dividend_yield, 2)}) present despite 0% payout ratio"
        )


def _check_ticker_rules(
    ticker: str,
    record: GeneratedQuoteRecord,
    today: date,
    findings: _Findings,
) -> None:
    expected = expected_currency(ticker)
    if record.currency != expected:
        findings.warnings.append(
            f"Currency {record.currency} unexpected for ticker {ticker} (expected {expected})"
        )

    if is_euro_area(ticker) and record.price > 1000:
        findings.warnings.append(
            f"Price {record.price} {record.currency} seems unusually high for European stock"
        )

    if record.price < 0.1:
        findings.warnings.append(
            f"Price {record.price} {record.currency} seems unusually low - possible unit error?"
        )

    if record.data_date is None:
        return

    days_old = (today - record.data_date).days
    if days_old > STALE_WARNING_DAYS:
        findings.warnings.append(
            f"Data is {days_old} days old (data date: {record.data_date.isoformat()})"
        )
    if days_old > STALE_ERROR_DAYS:
        findings.errors.append(f"Data is stale ({days_old} days old) - rejecting")
        findings.freshness_rejected = True
    if days_old < 0:
        findings.errors.append(
            f"Data date {record.data_date.isoformat()} is in the future - invalid"
        )
        findings.freshness_rejected = True


def _score(record: GeneratedQuoteRecord, findings: _Findings, today: date) -> float:
    if findings.freshness_rejected:
        return 0.0

    confidence = record.confidence if record.confidence is not None else DEFAULT_CONFIDENCE
    confidence -= len(findings.errors) * ERROR_PENALTY
    confidence -= len(findings.warnings) * WARNING_PENALTY

    provided = sum(1 for name in EXPECTED_RATIOS if record.ratios.get(name) is not None)
    completeness = provided / len(EXPECTED_RATIOS)
    if completeness < 0.5:
        confidence -= 0.5 - completeness

    if record.data_date is not None:
        if record.data_date.year == today.year:
            confidence += CURRENT_YEAR_BONUS
        elif record.data_date.year < today.year - 1:
            confidence -= OLD_DATA_PENALTY

    return max(0.0, min(1.0, confidence))
