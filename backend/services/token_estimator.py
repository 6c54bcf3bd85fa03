# Token and cost estimation
# services/token_estimator.py
"""
Approximate token counts and dollar costs for usage accounting.

Counts are a length/4 heuristic, not provider-reported usage. They feed
estimated billing display only; quota enforcement lives in the external
rate limiter with its own accounting.
"""

import math
from typing import Dict, Iterable, NamedTuple

from models.provider import ChatMessage


# USD per 1000 tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4-turbo": {"input": 0.01, "output": 0.03},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
    "claude-sonnet-4-20250514": {"input": 0.003, "output": 0.015},
    "claude-3-5-sonnet-20241022": {"input": 0.003, "output": 0.015},
    "claude-3-opus-20240229": {"input": 0.015, "output": 0.075},
    "claude-3-haiku-20240307": {"input": 0.00025, "output": 0.00125},
    "gemini-1.5-pro": {"input": 0.00125, "output": 0.005},
    "gemini-1.5-flash": {"input": 0.000075, "output": 0.0003},
}

# Conservative rate for models not yet in the table
DEFAULT_PRICING: Dict[str, float] = {"input": 0.001, "output": 0.002}


class CostBreakdown(NamedTuple):
    input_cost: float
    output_cost: float

    @property
    def total(self) -> float:
        return self.input_cost + self.output_cost


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up"""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def estimate_input_tokens(system_prompt: str, messages: Iterable[ChatMessage]) -> int:
    """Estimate prompt tokens over the system prompt and every message body"""
    input_text = system_prompt + " ".join(m.content for m in messages)
    return estimate_tokens(input_text)


def _rate(model: str, direction: str) -> float:
    pricing = MODEL_PRICING.get(model) or {}
    rate = pricing.get(direction)
    if rate is None:
        return DEFAULT_PRICING[direction]
    return rate


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> CostBreakdown:
    """
    Convert token counts to USD. Input and output rates are resolved
    separately so a partial table entry never zeroes the other side.
    """
    return CostBreakdown(
        input_cost=(input_tokens / 1000) * _rate(model, "input"),
        output_cost=(output_tokens / 1000) * _rate(model, "output"),
    )
