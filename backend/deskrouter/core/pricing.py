"""
Model pricing lookup used for cost estimates.
Rates are USD per 1K tokens.
"""
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class ModelPrice:
    name: str
    input: float
    output: float


DEFAULT_MODEL_PRICING: Dict[str, ModelPrice] = {
    # OpenAI
    "gpt-4.1": ModelPrice("GPT-4.1", 0.002, 0.008),
    "gpt-4.1-mini": ModelPrice("GPT-4.1 Mini", 0.0004, 0.0016),
    "gpt-4.1-nano": ModelPrice("GPT-4.1 Nano", 0.0001, 0.0004),
    "gpt-4o": ModelPrice("GPT-4o", 0.0025, 0.01),
    "gpt-4o-mini": ModelPrice("GPT-4o Mini", 0.00015, 0.0006),
    "o3": ModelPrice("O3", 0.002, 0.008),
    "o3-mini": ModelPrice("O3 Mini", 0.0011, 0.0044),
    "o4-mini": ModelPrice("O4 Mini", 0.0011, 0.0044),
    # Anthropic
    "claude-opus-4": ModelPrice("Claude Opus 4", 0.015, 0.075),
    "claude-sonnet-4-5": ModelPrice("Claude Sonnet 4.5", 0.003, 0.015),
    "claude-sonnet-4": ModelPrice("Claude Sonnet 4", 0.003, 0.015),
    "claude-haiku-3-5": ModelPrice("Claude Haiku 3.5", 0.0008, 0.004),
    "claude-3-5-haiku": ModelPrice("Claude Haiku 3.5", 0.0008, 0.004),
    # Google
    "gemini-2.5-pro": ModelPrice("Gemini 2.5 Pro", 0.00125, 0.01),
    "gemini-2.5-flash-lite": ModelPrice("Gemini 2.5 Flash Lite", 0.0001, 0.0004),
    "gemini-2.5-flash": ModelPrice("Gemini 2.5 Flash", 0.0003, 0.0025),
}


class PricingTable:
    """Per-model token rates with dated-snapshot resolution."""

    def __init__(self, prices: Optional[Dict[str, ModelPrice]] = None):
        self.prices = dict(DEFAULT_MODEL_PRICING if prices is None else prices)

    def get(self, model_id: Optional[str]) -> Optional[ModelPrice]:
        """
        Look up a model, falling back to the longest known prefix so dated
        snapshots like 'claude-sonnet-4-20250514' resolve to 'claude-sonnet-4'.
        """
        if not model_id:
            return None
        if model_id in self.prices:
            return self.prices[model_id]

        best = None
        for known in self.prices:
            if model_id.startswith(known + "-") and (best is None or len(known) > len(best)):
                best = known
        return self.prices[best] if best else None

    def display_name(self, model_id: Optional[str]) -> str:
        price = self.get(model_id)
        if price:
            return price.name
        return model_id or "unknown"

    def estimate_cost(self, model_id: Optional[str], input_tokens: int, output_tokens: int) -> float:
        price = self.get(model_id)
        if not price:
            return 0.0
        cost = (input_tokens / 1000) * price.input + (output_tokens / 1000) * price.output
        return max(cost, 0.0)


pricing_table = PricingTable()
