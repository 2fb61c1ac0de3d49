"""
Quote records.

Canonical shape every source adapter converts its data into.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class SourceTag(str, Enum):
    """Identifies which adapter produced a record."""
    QUERY_API = "query_api"
    SCRAPE = "scrape"
    AI = "ai"
    REST_API = "rest_api"


def normalize_ticker(ticker: Optional[str]) -> str:
    """Strip and uppercase a ticker symbol.

    Raises:
        ValueError: If the ticker is missing or blank
    """
    if ticker is None or not str(ticker).strip():
        raise ValueError("ticker is required and cannot be empty")
    return str(ticker).strip().upper()


def clean_ratios(ratios: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """Drop absent and non-finite ratio values.

    Missing data stays missing: nothing is ever defaulted to 0.
    """
    cleaned: Dict[str, float] = {}
    for key, value in (ratios or {}).items():
        if value is None or isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number):
            cleaned[key] = number
    return cleaned


@dataclass(frozen=True)
class QuoteRecord:
    """Validated quote with a sparse map of financial ratios."""
    ticker: str
    name: str
    price: float
    currency: str
    ratios: Dict[str, float]
    source: SourceTag
    fetched_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        object.__setattr__(self, "ticker", normalize_ticker(self.ticker))
        object.__setattr__(self, "source", SourceTag(self.source))
        object.__setattr__(self, "ratios", clean_ratios(self.ratios))
        try:
            price = float(self.price)
        except (TypeError, ValueError):
            raise ValueError(f"price must be a number, got {self.price!r}")
        if not math.isfinite(price) or price <= 0:
            raise ValueError(f"price must be > 0, got {self.price!r}")
        object.__setattr__(self, "price", price)
        if not self.currency:
            raise ValueError("currency is required")
        if not self.name:
            object.__setattr__(self, "name", self.ticker)

    def with_fetched_at(self, fetched_at: datetime) -> "QuoteRecord":
        return replace(self, fetched_at=fetched_at)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible representation used by the cache."""
        return {
            "ticker": self.ticker,
            "name": self.name,
            "price": self.price,
            "currency": self.currency,
            "ratios": dict(self.ratios),
            "source": self.source.value,
            "fetched_at": self.fetched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QuoteRecord":
        return cls(
            ticker=data["ticker"],
            name=data.get("name") or data["ticker"],
            price=data["price"],
            currency=data["currency"],
            ratios=data.get("ratios") or {},
            source=SourceTag(data["source"]),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
        )


@dataclass(frozen=True)
class GeneratedQuoteRecord(QuoteRecord):
    """Quote produced by a generative model, with its self-assessment.

    Never cached or returned unless it passes validation.
    """
    confidence: float = 0.5
    data_date: Optional[date] = None
    notes: Optional[str] = None

    def __post_init__(self):
        super().__post_init__()
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
