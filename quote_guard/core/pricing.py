"""
Pricing calculations for generative model calls.

Converts reported token usage into USD cost for the models routed through
the OpenAI-compatible gateway.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Dict

from .token_counter import TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]

    def resolve_pricing(self, model: str) -> ModelPricing:
        """Pricing for a model id as reported back by the gateway.

        Gateways often answer with a dated variant of the requested id
        (``deepseek/deepseek-chat-v3-0324``), so the longest known prefix wins.
        Unknown models are billed at the most expensive known rate so spend is
        never under-counted.
        """
        if model in self.prices:
            return self.prices[model]
        matches = [name for name in self.prices if model and model.startswith(name)]
        if matches:
            return self.prices[max(matches, key=len)]
        return max(
            self.prices.values(),
            key=lambda p: p.prompt_cost_per_1k + p.completion_cost_per_1k,
        )


# Fixed pricing table (OpenRouter list prices, USD)
PRICING_TABLE = PricingTable({
    "deepseek/deepseek-chat": ModelPricing(
        prompt_cost_per_1k=Decimal("0.00014"),
        completion_cost_per_1k=Decimal("0.00028")
    ),
    "moonshotai/kimi-k2": ModelPricing(
        prompt_cost_per_1k=Decimal("0.003"),
        completion_cost_per_1k=Decimal("0.003")
    ),
    "openai/gpt-4o-mini": ModelPricing(
        prompt_cost_per_1k=Decimal("0.00015"),
        completion_cost_per_1k=Decimal("0.0006")
    )
})

COST_QUANTUM = Decimal("0.000001")


def _cost(pricing: ModelPricing, usage: TokenUsage) -> float:
    prompt_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k

    # Conservative rounding (always round UP) to the ledger's precision
    total_cost = prompt_cost + completion_cost
    return float(total_cost.quantize(COST_QUANTUM, rounding=ROUND_UP))


def calculate_cost(model: str, usage: TokenUsage) -> float:
    """Calculate total cost for model usage with conservative rounding.

    Args:
        model: Model identifier
        usage: Token usage data

    Returns:
        Total cost rounded UP to 6 decimal places

    Raises:
        ValueError: If model is not supported
    """
    return _cost(PRICING_TABLE.get_pricing(model), usage)


def estimate_cost(model: str, usage: TokenUsage) -> float:
    """Like calculate_cost, but never fails for an unknown model id."""
    if model in PRICING_TABLE.prices:
        return calculate_cost(model, usage)
    return _cost(PRICING_TABLE.resolve_pricing(model), usage)
