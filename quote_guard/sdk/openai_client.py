"""
OpenAI SDK client pointed at an OpenAI-compatible gateway.

Reports token usage, cost and latency alongside the completion text so
callers can account for every call, including rejected ones.
"""

import time
from dataclasses import dataclass
from typing import Dict, Optional

import structlog
from openai import OpenAI

from quote_guard.core.pricing import estimate_cost
from quote_guard.core.token_counter import TokenUsage

logger = structlog.get_logger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_HEADERS = {
    "HTTP-Referer": "https://github.com/quote-guard/quote-guard",
    "X-Title": "Quote Guard",
}
SYSTEM_PROMPT = (
    "You are a financial data API. Respond ONLY with valid JSON. "
    "No explanations, no markdown, no preamble."
)


@dataclass(frozen=True)
class ChatResponse:
    """Completion text plus the accounting for the call."""
    content: str
    model: str
    usage: TokenUsage
    cost: float
    response_time_ms: int


class GatewayChatClient:
    """Single-model chat client.

    Failures are loud: SDK errors propagate unchanged so the caller can
    decide whether to fall back to another model.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = OPENROUTER_BASE_URL,
        temperature: float = 0.1,
        max_tokens: int = 1500,
        timeout: float = 60.0,
        default_headers: Optional[Dict[str, str]] = None,
        client: Optional[OpenAI] = None,
    ):
        """Initialize the chat client.

        Args:
            api_key: Gateway API key (required)
            model: Model identifier routed by the gateway (required)
            base_url: Gateway base URL
            temperature: Sampling temperature, low for factual data
            max_tokens: Maximum completion tokens
            timeout: Request timeout in seconds
            default_headers: Extra headers sent with every request
            client: Pre-built OpenAI client (tests)

        Raises:
            ValueError: If api_key or model is missing/empty
        """
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = client or OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
            default_headers=default_headers or DEFAULT_HEADERS,
        )

    def chat(self, prompt: str, system_prompt: str = SYSTEM_PROMPT) -> ChatResponse:
        """Send one prompt and return the completion with its accounting.

        Raises:
            ValueError: If prompt is empty
            OpenAI API errors: Propagated without modification
        """
        if not prompt:
            raise ValueError("prompt is required and cannot be empty")

        start = time.monotonic()
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        elapsed_ms = int((time.monotonic() - start) * 1000)

        usage = response.usage
        if usage is None:
            logger.warning("chat_usage_missing", model=self.model)
            token_usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        else:
            token_usage = TokenUsage(
                prompt_tokens=usage.prompt_tokens or 0,
                completion_tokens=usage.completion_tokens or 0,
            )

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""

        # Bill against the model actually used when the gateway reports one.
        model = response.model or self.model
        cost = estimate_cost(model, token_usage)

        logger.debug(
            "chat_completed",
            model=model,
            tokens=token_usage.total_tokens,
            cost_usd=cost,
            response_time_ms=elapsed_ms,
        )
        return ChatResponse(
            content=content,
            model=model,
            usage=token_usage,
            cost=cost,
            response_time_ms=elapsed_ms,
        )
