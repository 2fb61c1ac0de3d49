"""
Generative-AI provider.

Asks a language model for a ticker's quote and ratios, or for a
qualitative analysis, and decodes the answer through a strict schema.
Anything that does not decode cleanly is a failure; nothing is guessed
or defaulted.
"""

import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

import openai
import structlog
from pydantic import BaseModel, ConfigDict, Field

from quote_guard.core.records import GeneratedQuoteRecord, SourceTag, normalize_ticker
from quote_guard.errors import SourceError
from quote_guard.sdk.openai_client import ChatResponse, GatewayChatClient

logger = structlog.get_logger(__name__)


class GeneratedQuotePayload(BaseModel):
    """Schema the model's data answer must satisfy."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ticker: Optional[str] = None
    name: Optional[str] = None
    price: float = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    data_date: Optional[date] = Field(default=None, alias="dataDate")
    confidence: float = Field(ge=0.0, le=1.0)
    ratios: Dict[str, Optional[float]] = Field(default_factory=dict)
    notes: Optional[str] = None


class AnalysisPayload(BaseModel):
    """Schema the model's analysis answer must satisfy."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary: str = Field(min_length=1)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list, alias="redFlags")
    industry_context: str = Field(default="", alias="industryContext")
    investment_thesis: str = Field(default="", alias="investmentThesis")


@dataclass(frozen=True)
class AnalysisRequest:
    """Inputs for a qualitative analysis of a scored stock."""
    ticker: str
    name: str
    ratios: Dict[str, Optional[float]]
    stock_type: str
    score: float
    verdict: str


@dataclass(frozen=True)
class AIFetchResult:
    """A decoded record together with the cost of producing it."""
    record: GeneratedQuoteRecord
    model: str
    tokens_input: int
    tokens_output: int
    cost: float
    response_time_ms: int


@dataclass(frozen=True)
class AnalysisOutcome:
    analysis: AnalysisPayload
    model: str
    tokens_input: int
    tokens_output: int
    cost: float
    response_time_ms: int


class AIFetchError(SourceError):
    """Generative call failed; carries whatever usage the call incurred."""

    def __init__(
        self,
        message: str,
        model: str,
        tokens_input: int = 0,
        tokens_output: int = 0,
        cost: float = 0.0,
        response_time_ms: int = 0,
    ):
        super().__init__(SourceTag.AI.value, message)
        self.model = model
        self.tokens_input = tokens_input
        self.tokens_output = tokens_output
        self.cost = cost
        self.response_time_ms = response_time_ms

    @classmethod
    def after_response(cls, message: str, response: ChatResponse) -> "AIFetchError":
        return cls(
            message,
            model=response.model,
            tokens_input=response.usage.prompt_tokens,
            tokens_output=response.usage.completion_tokens,
            cost=response.cost,
            response_time_ms=response.response_time_ms,
        )


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    cleaned = content.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        cleaned = cleaned[first_newline + 1:] if first_newline != -1 else cleaned[3:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


def build_data_fetch_prompt(ticker: str, now: datetime) -> str:
    """Date-aware prompt asking for the most recent ratios as JSON."""
    year = now.year
    quarter = (now.month - 1) // 3 + 1
    return f"""You are a financial data API. Extract the MOST RECENT financial ratios for stock ticker: {ticker}

CRITICAL CONTEXT:
- Current Date: {now.date().isoformat()}
- Current Period: Q{quarter} {year}
- Data Freshness: Use {year} data or late {year - 1} data ONLY
- Source Priority: Official exchange data > Analyst estimates > Historical averages
- European Stocks: Tickers ending in .PA (France/Euronext), .DE (Germany), .MI (Italy), .AS (Netherlands) use EUR currency

STRICT OUTPUT FORMAT (JSON ONLY - NO EXPLANATIONS):
{{
  "ticker": "{ticker}",
  "name": "Full Company Name",
  "price": <current stock price as number>,
  "currency": "EUR" | "USD" | "GBP" | "CAD" | "HKD" | "CHF",
  "dataDate": "YYYY-MM-DD",
  "confidence": <0.0 to 1.0>,
  "ratios": {{
    "PE": <number> | null,
    "PB": <number> | null,
    "PEG": <number> | null,
    "PS": <number> | null,
    "ROE": <decimal> | null,
    "ROA": <decimal> | null,
    "ROIC": <decimal> | null,
    "GrossMargin": <decimal 0-1> | null,
    "OperatingMargin": <decimal 0-1> | null,
    "NetMargin": <decimal 0-1> | null,
    "CurrentRatio": <number> | null,
    "QuickRatio": <number> | null,
    "DebtToEquity": <number> | null,
    "DebtToEBITDA": <number> | null,
    "InterestCoverage": <number> | null,
    "DividendYield": <decimal 0-1> | null,
    "PayoutRatio": <decimal> | null,
    "RevenueGrowth": <decimal> | null,
    "EPSGrowth": <decimal> | null,
    "Beta": <number> | null,
    "MarketCap": <number> | null
  }},
  "notes": "Brief explanation of data quality/source if needed"
}}

VALIDATION RULES (STRICT):
- PE: 0 to 500 (null if negative earnings)
- PB: 0 to 50
- ROE/ROA/ROIC: as decimals (0.15 = 15%)
- Margins: 0.0 to 1.0 (as decimals: 0.25 = 25%)
- DividendYield: 0.0 to 0.25 (as decimals: 0.05 = 5%)
- DebtToEquity: 0 to 15
- CurrentRatio: 0 to 10
- Price: Must be > 0
- Currency: Must match ticker suffix (.PA/.DE/.MI/.AS -> EUR, .L -> GBP, .TO -> CAD, .HK -> HKD, .SW -> CHF, else USD)

IF DATA UNAVAILABLE:
- Set ratio to null (NOT zero, NOT estimate)
- Reduce confidence score accordingly
- Note in "notes" field

CONFIDENCE SCORING:
- 1.0 = All data from official {year} filings
- 0.9 = Mix of official + recent estimates
- 0.8 = Some data from {year - 1} (acceptable)
- 0.7 = Significant estimates/older data (reject)
- < 0.7 = Poor data quality (reject)

RESPOND WITH ONLY THE JSON OBJECT. NO MARKDOWN. NO EXPLANATIONS."""


def build_analysis_prompt(request: AnalysisRequest) -> str:
    ratios = json.dumps(request.ratios, indent=2, sort_keys=True)
    return f"""You are a financial analyst specializing in {request.stock_type} stocks. Analyze this stock:

STOCK DATA:
Ticker: {request.ticker}
Name: {request.name}
Stock Type: {request.stock_type} (value/growth/dividend)
Current Score: {request.score:g}/100 ({request.verdict})

FINANCIAL RATIOS:
{ratios}

ANALYSIS REQUIREMENTS:
1. Summary: 2-3 sentence investment thesis
2. Strengths: 2-3 positive highlights (specific to {request.stock_type} investing)
3. Weaknesses: 2-3 concerns (with numbers)
4. Red Flags: Major risks (if any)
5. Industry Context: How does this compare to peers?
6. Investment Thesis: Why buy/avoid? (1 paragraph)

OUTPUT FORMAT (JSON ONLY):
{{
  "summary": "Brief 2-3 sentence overview",
  "strengths": ["Specific strength with data", "Another strength"],
  "weaknesses": ["Specific concern with data", "Another concern"],
  "redFlags": ["Major risk if any"],
  "industryContext": "1-2 sentences comparing to sector norms",
  "investmentThesis": "1 paragraph buy/hold/avoid recommendation with reasoning"
}}

FOCUS AREAS BY STOCK TYPE:
- Value: PE/PB ratios, dividend yield, margin of safety
- Growth: Revenue/EPS growth, margins, market opportunity
- Dividend: Yield, payout ratio, dividend growth sustainability

RESPOND WITH ONLY THE JSON OBJECT. NO MARKDOWN. NO EXPLANATIONS."""


class AIProvider:
    """Fetches quote data and analyses from generative models.

    Args:
        primary: Client for the preferred model
        fallback: Optional client tried when the primary call itself fails
        analysis_client: Client used for analyses (defaults to primary)
        clock: Current time, used to date the prompt
    """

    def __init__(
        self,
        primary: GatewayChatClient,
        fallback: Optional[GatewayChatClient] = None,
        analysis_client: Optional[GatewayChatClient] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.primary = primary
        self.fallback = fallback
        self.analysis_client = analysis_client or primary
        self._clock = clock

    @property
    def model(self) -> str:
        return self.primary.model

    def _chat(self, prompt: str, ticker: str) -> ChatResponse:
        try:
            return self.primary.chat(prompt)
        except openai.OpenAIError as e:
            if self.fallback is None:
                raise AIFetchError(f"model call failed: {e}", model=self.primary.model)
            logger.warning(
                "ai_primary_failed",
                ticker=ticker,
                model=self.primary.model,
                fallback_model=self.fallback.model,
                error=str(e),
            )
        try:
            return self.fallback.chat(prompt)
        except openai.OpenAIError as e:
            raise AIFetchError(f"fallback model call failed: {e}", model=self.fallback.model)

    def fetch_stock_data(self, ticker: str) -> AIFetchResult:
        """Ask the model for the ticker's quote.

        Raises:
            AIFetchError: When every model call fails or the answer does
                not decode; carries the usage already incurred
        """
        ticker = normalize_ticker(ticker)
        response = self._chat(build_data_fetch_prompt(ticker, self._clock()), ticker)

        try:
            payload = GeneratedQuotePayload.model_validate_json(strip_code_fences(response.content))
            record = GeneratedQuoteRecord(
                ticker=ticker,
                name=payload.name or ticker,
                price=payload.price,
                currency=payload.currency.upper(),
                ratios=payload.ratios,
                source=SourceTag.AI,
                confidence=payload.confidence,
                data_date=payload.data_date,
                notes=payload.notes,
            )
        except ValueError as e:
            logger.warning("ai_response_invalid", ticker=ticker, model=response.model, error=str(e))
            raise AIFetchError.after_response(f"Failed to parse AI response: {e}", response)

        if payload.ticker and normalize_ticker(payload.ticker) != ticker:
            logger.warning("ai_ticker_mismatch", ticker=ticker, returned=payload.ticker)

        return AIFetchResult(
            record=record,
            model=response.model,
            tokens_input=response.usage.prompt_tokens,
            tokens_output=response.usage.completion_tokens,
            cost=response.cost,
            response_time_ms=response.response_time_ms,
        )

    def generate_analysis(self, request: AnalysisRequest) -> AnalysisOutcome:
        """Qualitative analysis of a scored stock.

        Raises:
            AIFetchError: When the call fails or the answer does not decode
        """
        client = self.analysis_client
        try:
            response = client.chat(build_analysis_prompt(request))
        except openai.OpenAIError as e:
            raise AIFetchError(f"model call failed: {e}", model=client.model)

        try:
            analysis = AnalysisPayload.model_validate_json(strip_code_fences(response.content))
        except ValueError as e:
            raise AIFetchError.after_response(f"Failed to parse AI analysis response: {e}", response)

        return AnalysisOutcome(
            analysis=analysis,
            model=response.model,
            tokens_input=response.usage.prompt_tokens,
            tokens_output=response.usage.completion_tokens,
            cost=response.cost,
            response_time_ms=response.response_time_ms,
        )
