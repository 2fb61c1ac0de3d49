"""
Explicit construction of the acquisition pipeline from configuration.

Every component is built here and injected; nothing is a module-level
singleton.
"""

from dataclasses import dataclass
from typing import List, Optional

import httpx
import structlog

from quote_guard.config.loader import AppConfig
from quote_guard.core.budget import BudgetManager
from quote_guard.core.rate_limiter import RateLimiter
from quote_guard.pipeline.ai_gate import GatedAISource
from quote_guard.pipeline.analysis import AnalysisService
from quote_guard.pipeline.orchestrator import (
    AttemptSink,
    OrchestratorSettings,
    QuoteOrchestrator,
)
from quote_guard.sdk.openai_client import GatewayChatClient
from quote_guard.sources.ai_provider import AIProvider
from quote_guard.sources.base import QuoteSource
from quote_guard.sources.fmp import FMPSource
from quote_guard.sources.query_api import QueryAPISource
from quote_guard.sources.scraper import ScrapeSource
from quote_guard.storage.cache import QuoteCache
from quote_guard.storage.repository import UsageRepository

logger = structlog.get_logger(__name__)


@dataclass
class App:
    """Wired pipeline components sharing one HTTP client."""
    config: AppConfig
    orchestrator: QuoteOrchestrator
    cache: QuoteCache
    repository: UsageRepository
    budget: BudgetManager
    rate_limiter: RateLimiter
    http_client: httpx.Client
    analysis: Optional[AnalysisService] = None

    def close(self) -> None:
        self.http_client.close()

    def __enter__(self) -> "App":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def build_ai_provider(config: AppConfig) -> AIProvider:
    ai = config.ai

    def client(model: str) -> GatewayChatClient:
        return GatewayChatClient(
            api_key=config.openrouter_api_key,
            model=model,
            temperature=ai.temperature,
            max_tokens=ai.max_tokens,
            timeout=ai.timeout_seconds,
        )

    fallback = client(ai.fallback_model) if ai.fallback_model else None
    return AIProvider(primary=client(ai.primary_model), fallback=fallback)


def build_app(
    config: AppConfig,
    http_client: Optional[httpx.Client] = None,
    attempt_sink: Optional[AttemptSink] = None,
) -> App:
    """Build the full pipeline described by config.

    Strategies are added in fallback order: query API, scrape, AI, REST.
    The AI strategy requires OPENROUTER_API_KEY and the REST strategy
    requires FMP_API_KEY; a flagged source without its key is skipped.
    """
    repository = UsageRepository(config.database)
    repository.initialize()
    cache = QuoteCache(config.database)
    budget = BudgetManager(repository, config.budget)
    rate_limiter = RateLimiter(config.rate_limit)
    client = http_client or httpx.Client(timeout=15.0, follow_redirects=True)

    sources = config.sources
    strategies: List[QuoteSource] = []
    provider: Optional[AIProvider] = None

    if sources.query_api:
        strategies.append(QueryAPISource(client))
    if sources.scrape:
        strategies.append(ScrapeSource(client))
    if config.openrouter_api_key:
        provider = build_ai_provider(config)
    if sources.ai:
        if provider is not None:
            strategies.append(GatedAISource(
                provider,
                budget,
                rate_limiter,
                wait_for_rate_limit=sources.wait_for_rate_limit,
            ))
        else:
            logger.warning("ai_strategy_disabled", reason="OPENROUTER_API_KEY is not set")
    if sources.rest_api:
        if config.fmp_api_key:
            strategies.append(FMPSource(config.fmp_api_key, client))
        else:
            logger.info("rest_strategy_disabled", reason="FMP_API_KEY is not set")

    logger.debug("pipeline_built", strategies=[s.name for s in strategies])

    orchestrator = QuoteOrchestrator(
        cache,
        strategies,
        OrchestratorSettings(
            cache_ttl_seconds=config.cache.ttl_seconds,
            batch_delay_seconds=sources.batch_delay_seconds,
        ),
        attempt_sink=attempt_sink,
    )
    analysis = AnalysisService(provider, budget, rate_limiter) if provider is not None else None

    return App(
        config=config,
        orchestrator=orchestrator,
        cache=cache,
        repository=repository,
        budget=budget,
        rate_limiter=rate_limiter,
        http_client=client,
        analysis=analysis,
    )
