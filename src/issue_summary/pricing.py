"""
Cost and token accounting.

Prices are USD per 1M tokens. Provider-reported model names carry date
suffixes (gpt-4o-mini-2024-07-18), so lookup is by longest matching prefix.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

PRICING: Dict[str, Tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.60),
    "gemini-2.0-flash": (0.10, 0.40),
    "claude-3-5-haiku": (0.80, 4.00),
}
DEFAULT_PRICING_MODEL = "gpt-4o-mini"


@dataclass(frozen=True)
class TokenUsage:
    """Input/output tokens billed for one stage."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            self.input_tokens + other.input_tokens,
            self.output_tokens + other.output_tokens,
        )


def price_for(model: str) -> Tuple[float, float]:
    matches = [name for name in PRICING if model.startswith(name)]
    if not matches:
        return PRICING[DEFAULT_PRICING_MODEL]
    return PRICING[max(matches, key=len)]


def estimate_cost(model: str, usage: TokenUsage) -> float:
    input_price, output_price = price_for(model)
    return (usage.input_tokens / 1_000_000) * input_price + (usage.output_tokens / 1_000_000) * output_price


def total_cost(model: str, extraction: TokenUsage, synthesis: TokenUsage) -> float:
    """Cost of both stages, rounded to 6 decimals."""
    return round(estimate_cost(model, extraction) + estimate_cost(model, synthesis), 6)
