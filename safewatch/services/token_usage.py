"""Classifier pricing and token accounting for the budget ledger."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

PriceTable = list[tuple[str, float, float]]

# (model prefix, USD per 1M input tokens, USD per 1M output tokens).
# Matched by prefix in order, so "gpt-4o-mini" must precede "gpt-4o".
MODEL_PRICING: PriceTable = [
    # Tier-1 candidates
    ("gpt-4o-mini", 0.15, 0.60),
    ("gemini-2.5-flash", 0.30, 2.50),
    ("claude-3-5-haiku", 0.80, 4.00),
    ("gpt-3.5-turbo", 0.50, 1.50),
    # Tier-2 candidates
    ("gpt-4o", 2.50, 10.00),
    ("gemini-2.5-pro", 1.25, 10.00),
    ("claude-3-5-sonnet", 3.00, 15.00),
    ("claude-sonnet-4", 3.00, 15.00),
    # Tier-3 fallback candidates
    ("gpt-4-turbo", 10.00, 30.00),
    ("gpt-4", 30.00, 60.00),
    ("claude-opus-4", 15.00, 75.00),
]


def get_model_pricing(model_name: str, pricing: PriceTable | None = None) -> tuple[float, float]:
    """(input, output) USD per 1M tokens for *model_name*.

    An unpriced model still has its calls counted on the meter; it just
    adds nothing to the estimated cost.
    """
    if not model_name:
        return (0.0, 0.0)
    table = MODEL_PRICING if pricing is None else pricing
    name = model_name.lower()
    match = next((entry for entry in table if name.startswith(entry[0])), None)
    if match is None:
        logger.debug("No pricing entry for model %s", model_name)
        return (0.0, 0.0)
    return (match[1], match[2])


def calculate_cost(
    model_name: str,
    input_tokens: int,
    output_tokens: int,
    pricing: PriceTable | None = None,
) -> float:
    input_rate, output_rate = get_model_pricing(model_name, pricing)
    return (input_tokens * input_rate + output_tokens * output_rate) / 1_000_000


def extract_usage_from_response(response) -> dict:
    """Token counts of one chat-model reply.

    Reads LangChain's ``usage_metadata`` and falls back to the raw
    ``response_metadata["token_usage"]`` some OpenAI-compatible gateways
    return instead. Missing counts are zero.
    """
    usage = getattr(response, "usage_metadata", None)
    if isinstance(usage, dict) and usage:
        input_t = usage.get("input_tokens") or 0
        output_t = usage.get("output_tokens") or 0
    else:
        metadata = getattr(response, "response_metadata", None)
        raw = metadata.get("token_usage") if isinstance(metadata, dict) else None
        if not isinstance(raw, dict):
            return {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0}
        input_t = raw.get("prompt_tokens") or 0
        output_t = raw.get("completion_tokens") or 0
    return {"input_tokens": input_t, "output_tokens": output_t, "total_tokens": input_t + output_t}
