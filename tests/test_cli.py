"""
Tests for the CLI interface.
"""
import os
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from quote_guard.cli.main import EXIT_CODE_FAIL, EXIT_CODE_PASS, app
from quote_guard.core.records import GeneratedQuoteRecord, QuoteRecord, SourceTag
from quote_guard.errors import AcquisitionFailed, FetchCancelled
from quote_guard.pipeline.orchestrator import BatchError, BatchResult, StrategyAttempt
from quote_guard.storage.cache import QuoteCache
from quote_guard.storage.models import Purpose, UsageRecord
from quote_guard.storage.repository import UsageRepository

runner = CliRunner()

FETCHED_AT = datetime(2026, 3, 15, 10, 0)


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep the CLI from reconfiguring logging for the whole test session."""
    with patch('quote_guard.cli.main.configure_logging') as mock:
        yield mock


@pytest.fixture
def mock_build_app():
    """Replace pipeline construction with a mock app."""
    with patch('quote_guard.cli.main.load_config') as mock_config, \
            patch('quote_guard.cli.main.build_app') as mock_build:
        mock_config.return_value = MagicMock()
        quote_app = MagicMock()
        mock_build.return_value = quote_app
        yield quote_app


@pytest.fixture
def database(tmp_path, monkeypatch):
    """Point the CLI at a fresh database with no API keys configured."""
    db_path = str(tmp_path / "cli.db")
    monkeypatch.setenv("QUOTE_GUARD_DB", db_path)
    for name in ("OPENROUTER_API_KEY", "FMP_API_KEY", "ENABLE_AI_FALLBACK", "AI_MAX_MONTHLY_BUDGET"):
        monkeypatch.delenv(name, raising=False)
    return db_path


def _quote(ticker="AAPL", price=189.5, currency="USD", source=SourceTag.SCRAPE):
    return QuoteRecord(
        ticker=ticker,
        name="Apple Inc.",
        price=price,
        currency=currency,
        ratios={"PE": 29.4, "MarketCap": 2.9e12},
        source=source,
        fetched_at=FETCHED_AT,
    )


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_invalid_log_level_fails(self, quiet_logging):
        quiet_logging.side_effect = ValueError("Invalid log level: LOUD")
        result = runner.invoke(app, ["--log-level", "LOUD", "fetch", "AAPL"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid log level" in result.output


class TestFetchCommand:
    """Test the single-ticker fetch command."""

    def test_fetch_success(self, mock_build_app):
        mock_build_app.orchestrator.fetch.return_value = _quote()

        result = runner.invoke(app, ["fetch", "aapl"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Apple Inc." in result.output
        assert "Price: 189.50 USD" in result.output
        assert "Source: scrape" in result.output
        assert "Ratios" in result.output
        assert "29.4" in result.output

        args, kwargs = mock_build_app.orchestrator.fetch.call_args
        assert args == ("aapl",)
        assert kwargs["force_refresh"] is False

    def test_fetch_generated_record_shows_confidence(self, mock_build_app):
        mock_build_app.orchestrator.fetch.return_value = GeneratedQuoteRecord(
            ticker="CAP.PA",
            name="Capgemini SE",
            price=180.45,
            currency="EUR",
            ratios={},
            source=SourceTag.AI,
            fetched_at=FETCHED_AT,
            confidence=0.82,
        )

        result = runner.invoke(app, ["fetch", "CAP.PA", "--force-refresh"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Price: 180.45 EUR" in result.output
        assert "Confidence: 0.82" in result.output
        assert "No ratios available" in result.output
        assert mock_build_app.orchestrator.fetch.call_args[1]["force_refresh"] is True

    def test_fetch_failure_exits_nonzero(self, mock_build_app):
        attempts = [StrategyAttempt(source=SourceTag.SCRAPE, success=False, duration_ms=40, error="HTTP 503")]
        mock_build_app.orchestrator.fetch.side_effect = AcquisitionFailed("ZZZZ", attempts)

        result = runner.invoke(app, ["fetch", "ZZZZ"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Failed to fetch ZZZZ" in result.output

    def test_fetch_cancelled_exits_nonzero(self, mock_build_app):
        mock_build_app.orchestrator.fetch.side_effect = FetchCancelled("Fetch cancelled before scrape")

        result = runner.invoke(app, ["fetch", "AAPL", "--timeout", "0.5"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Fetch cancelled" in result.output

    def test_fetch_configuration_error(self):
        with patch('quote_guard.cli.main.load_config') as mock_config:
            mock_config.side_effect = ValueError("CACHE_TTL_SECONDS has an invalid value: 'x'")
            result = runner.invoke(app, ["fetch", "AAPL"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Configuration error" in result.output

    def test_verbose_passes_attempt_sink(self, mock_build_app):
        mock_build_app.orchestrator.fetch.return_value = _quote()

        with patch('quote_guard.cli.main.build_app', return_value=mock_build_app) as mock_build:
            result = runner.invoke(app, ["fetch", "AAPL", "--verbose"])

        assert result.exit_code == EXIT_CODE_PASS
        assert mock_build.call_args[1]["attempt_sink"] is not None


class TestFetchManyCommand:
    """Test batch fetching output and exit codes."""

    def test_partial_results_pass(self, mock_build_app):
        mock_build_app.orchestrator.fetch_many.return_value = BatchResult(
            results=[_quote()],
            errors=[BatchError(ticker="ZZZZ", error="Failed to fetch ZZZZ")],
        )

        result = runner.invoke(app, ["fetch-many", "AAPL", "ZZZZ"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Quotes" in result.output
        assert "ZZZZ" in result.output
        assert "Fetched 1 of 2 tickers" in result.output
        assert list(mock_build_app.orchestrator.fetch_many.call_args[0][0]) == ["AAPL", "ZZZZ"]

    def test_all_failed_exits_nonzero(self, mock_build_app):
        mock_build_app.orchestrator.fetch_many.return_value = BatchResult(
            errors=[BatchError(ticker="ZZZZ", error="Failed to fetch ZZZZ")],
        )

        result = runner.invoke(app, ["fetch-many", "ZZZZ"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Fetched 0 of 1 tickers" in result.output


class TestDatabaseCommands:
    """Commands run against a real temporary database."""

    def test_init_creates_database(self, database):
        result = runner.invoke(app, ["init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output
        assert os.path.exists(database)

    def test_budget_without_usage(self, database):
        result = runner.invoke(app, ["budget"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No generative usage recorded this month" in result.output
        assert "$5.0000" in result.output

    def test_budget_shows_month_to_date_spend(self, database):
        repository = UsageRepository(database)
        repository.initialize()
        for success in (True, False):
            repository.append(UsageRecord(
                timestamp=datetime.now(),
                ticker="CAP.PA",
                purpose=Purpose.DATA_FETCH,
                model="deepseek/deepseek-chat",
                tokens_input=1500,
                tokens_output=700,
                cost_usd=0.0004,
                success=success,
            ))

        result = runner.invoke(app, ["budget"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Generative Spend" in result.output
        assert "$0.0008" in result.output
        assert "50%" in result.output

    def test_cache_clear(self, database):
        UsageRepository(database).initialize()
        cache = QuoteCache(database)
        cache.set(_quote(), ttl_seconds=300)
        cache.set(_quote(ticker="MSFT"), ttl_seconds=300)

        result = runner.invoke(app, ["cache-clear", "AAPL"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Removed 1 cached quote(s)" in result.output

        result = runner.invoke(app, ["cache-clear"])
        assert "Removed 1 cached quote(s)" in result.output
        assert cache.get("MSFT") is None

    def test_invalid_config_file(self, database):
        result = runner.invoke(app, ["--config", "missing.yaml", "budget"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Config file not found" in result.output
