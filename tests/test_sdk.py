"""
Unit tests for SDK layer.

Tests the gateway chat client wrapper and its usage accounting.
"""

from unittest.mock import Mock, patch

import pytest

from quote_guard.sdk.openai_client import (
    DEFAULT_HEADERS,
    OPENROUTER_BASE_URL,
    SYSTEM_PROMPT,
    GatewayChatClient,
)


def _mock_response(content="{}", model="deepseek/deepseek-chat", prompt_tokens=1000, completion_tokens=500):
    response = Mock()
    response.model = model
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    choice = Mock()
    choice.message.content = content
    response.choices = [choice]
    return response


class TestGatewayChatClient:
    """Test GatewayChatClient wrapper."""

    @patch('quote_guard.sdk.openai_client.OpenAI')
    def test_init_success(self, mock_openai_class):
        """Test successful initialization."""
        mock_openai_class.return_value = Mock()

        client = GatewayChatClient(api_key="sk-test", model="deepseek/deepseek-chat", timeout=30.0)

        assert client.model == "deepseek/deepseek-chat"
        assert client.client is not None
        mock_openai_class.assert_called_once_with(
            api_key="sk-test",
            base_url=OPENROUTER_BASE_URL,
            timeout=30.0,
            max_retries=0,
            default_headers=DEFAULT_HEADERS,
        )

    def test_init_missing_model(self):
        """Test initialization fails with missing model."""
        with pytest.raises(ValueError, match="model is required"):
            GatewayChatClient(api_key="sk-test", model="")

        with pytest.raises(ValueError, match="model is required"):
            GatewayChatClient(api_key="sk-test", model=None)

    def test_init_missing_api_key(self):
        with pytest.raises(ValueError, match="api_key is required"):
            GatewayChatClient(api_key="  ", model="deepseek/deepseek-chat")

    def test_chat_success_reports_usage(self):
        """Test a successful call returns text, tokens and cost."""
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = _mock_response(content='{"ok": true}')
        client = GatewayChatClient(api_key="sk-test", model="deepseek/deepseek-chat",
                                   temperature=0.1, max_tokens=1500, client=mock_client)

        response = client.chat("Give me data")

        mock_client.chat.completions.create.assert_called_once_with(
            model="deepseek/deepseek-chat",
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": "Give me data"},
            ],
            temperature=0.1,
            max_tokens=1500,
        )
        assert response.content == '{"ok": true}'
        assert response.usage.prompt_tokens == 1000
        assert response.usage.completion_tokens == 500
        # 1000/1000*0.00014 + 500/1000*0.00028
        assert response.cost == 0.00028
        assert response.response_time_ms >= 0

    def test_cost_uses_reported_model(self):
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = _mock_response(
            model="moonshotai/kimi-k2", prompt_tokens=1000, completion_tokens=1000
        )
        client = GatewayChatClient(api_key="sk-test", model="deepseek/deepseek-chat", client=mock_client)

        response = client.chat("prompt")

        assert response.model == "moonshotai/kimi-k2"
        assert response.cost == 0.006

    def test_missing_usage_counts_zero_tokens(self):
        raw = _mock_response()
        raw.usage = None
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = raw
        client = GatewayChatClient(api_key="sk-test", model="deepseek/deepseek-chat", client=mock_client)

        response = client.chat("prompt")

        assert response.usage.total_tokens == 0
        assert response.cost == 0.0

    def test_empty_prompt_rejected(self):
        client = GatewayChatClient(api_key="sk-test", model="deepseek/deepseek-chat", client=Mock())
        with pytest.raises(ValueError, match="prompt is required"):
            client.chat("")

    def test_api_failure_propagates(self):
        """Test API failures are raised without modification."""
        mock_client = Mock()
        mock_client.chat.completions.create.side_effect = Exception("API Error")
        client = GatewayChatClient(api_key="sk-test", model="deepseek/deepseek-chat", client=mock_client)

        with pytest.raises(Exception, match="API Error"):
            client.chat("prompt")
