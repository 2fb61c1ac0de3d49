"""
Tests for pipeline construction from configuration.
"""

import os
import tempfile

import httpx

from quote_guard.bootstrap import build_app
from quote_guard.config.loader import AppConfig, SourcesConfig, load_config
from quote_guard.core.records import SourceTag


class TestBuildApp:
    """Test strategy wiring by feature flags and API keys."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "bootstrap.db")
        self.http_client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(404)))

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _build(self, **env):
        env["QUOTE_GUARD_DB"] = self.db_path
        return build_app(load_config(env=env), http_client=self.http_client)

    def test_default_chain_is_scrape_only_without_keys(self):
        with self._build() as quote_app:
            tags = [s.tag for s in quote_app.orchestrator.strategies]
            assert tags == [SourceTag.SCRAPE]
            assert quote_app.analysis is None
            assert quote_app.orchestrator.settings.cache_ttl_seconds == 300
            assert os.path.exists(self.db_path)

    def test_full_chain_in_fallback_order(self):
        quote_app = self._build(
            ENABLE_QUERY_API="true",
            ENABLE_AI_FALLBACK="true",
            OPENROUTER_API_KEY="sk-or-test",
            FMP_API_KEY="fmp-test",
            CACHE_TTL_SECONDS="120",
        )

        tags = [s.tag for s in quote_app.orchestrator.strategies]
        assert tags == [SourceTag.QUERY_API, SourceTag.SCRAPE, SourceTag.AI, SourceTag.REST_API]
        assert quote_app.analysis is not None
        assert quote_app.orchestrator.settings.cache_ttl_seconds == 120
        quote_app.close()

    def test_ai_flag_without_key_is_skipped(self):
        quote_app = self._build(ENABLE_AI_FALLBACK="true", ENABLE_SCRAPER="false", FMP_API_KEY="fmp-test")

        assert [s.tag for s in quote_app.orchestrator.strategies] == [SourceTag.REST_API]
        quote_app.close()

    def test_nothing_enabled(self):
        config = AppConfig(
            database=self.db_path,
            sources=SourcesConfig(scrape=False, rest_api=False),
        )

        with build_app(config, http_client=self.http_client) as quote_app:
            assert quote_app.orchestrator.strategies == []
