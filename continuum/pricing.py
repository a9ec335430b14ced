"""
Model pricing for the usage ledger.

Prices are USD per one million tokens. Models missing from the table are
charged at the configured default entry.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from .config import config


@dataclass(frozen=True)
class ModelPricing:
    input: float
    output: float


MODEL_PRICING: Dict[str, ModelPricing] = {
    # Anthropic
    "claude-3-5-sonnet-20241022": ModelPricing(input=3.00, output=15.00),
    "claude-3-5-sonnet-20240620": ModelPricing(input=3.00, output=15.00),
    "claude-3-opus-20240229": ModelPricing(input=15.00, output=75.00),
    "claude-3-sonnet-20240229": ModelPricing(input=3.00, output=15.00),
    "claude-3-haiku-20240307": ModelPricing(input=0.25, output=1.25),
    # OpenAI
    "gpt-4-turbo": ModelPricing(input=10.00, output=30.00),
    "gpt-4": ModelPricing(input=30.00, output=60.00),
    "gpt-4-32k": ModelPricing(input=60.00, output=120.00),
    "gpt-3.5-turbo": ModelPricing(input=0.50, output=1.50),
    "gpt-3.5-turbo-16k": ModelPricing(input=3.00, output=4.00),
}


@dataclass(frozen=True)
class UsageCalculation:
    model: str
    provider: str
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost


def provider_for(model: str) -> str:
    """Infer the provider from a model name."""
    if model.startswith("gpt-"):
        return "openai"
    if model.startswith("claude-"):
        return "anthropic"
    return "ollama"


def calculate_cost(model: str, input_tokens: int, output_tokens: int,
                   default_model: Optional[str] = None) -> UsageCalculation:
    """
    Calculate the cost of one model call.

    Args:
        model: Model name as sent to the provider
        input_tokens: Prompt tokens
        output_tokens: Completion tokens
        default_model: Price-table entry for unknown models (defaults to config value)

    Returns:
        UsageCalculation with per-direction costs
    """
    fallback = default_model or config.default_pricing_model
    pricing = MODEL_PRICING.get(model) or MODEL_PRICING[fallback]

    return UsageCalculation(
        model=model,
        provider=provider_for(model),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        input_cost=(input_tokens / 1_000_000) * pricing.input,
        output_cost=(output_tokens / 1_000_000) * pricing.output,
    )


def format_cost(cost: float) -> str:
    """Format a USD cost for display."""
    return f"${cost:.4f}"


def format_tokens(tokens: int) -> str:
    """Format a token count for display."""
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.2f}M"
    if tokens >= 1_000:
        return f"{tokens / 1_000:.1f}K"
    return str(tokens)
