"""Tests for services/token_usage.py: pricing, extraction, and cost calculation."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from services.token_usage import calculate_cost, extract_usage_from_response, get_model_pricing


class TestGetModelPricing:
    @pytest.mark.parametrize("model, expected", [
        ("gpt-4o-mini", (0.15, 0.60)),
        ("gpt-4o-mini-2024-07-18", (0.15, 0.60)),
        ("gpt-4o", (2.50, 10.00)),
        ("gpt-4-turbo", (10.00, 30.00)),
        ("claude-sonnet-4-20250514", (3.00, 15.00)),
        ("gemini-2.5-flash", (0.30, 2.50)),
        ("GPT-4o-MINI", (0.15, 0.60)),
    ])
    def test_known_models(self, model, expected):
        assert get_model_pricing(model) == expected

    def test_unknown_and_empty(self):
        assert get_model_pricing("some-local-llama-model") == (0.0, 0.0)
        assert get_model_pricing("") == (0.0, 0.0)

    def test_custom_table(self):
        assert get_model_pricing("house-model-v2", [("house-model", 1.0, 2.0)]) == (1.0, 2.0)


class TestCalculateCost:
    def test_basic_cost(self):
        assert calculate_cost("gpt-4o", 1_000_000, 1_000_000) == 12.50

    def test_small_usage(self):
        expected = (1000 * 0.15 + 500 * 0.60) / 1_000_000
        assert calculate_cost("gpt-4o-mini", 1000, 500) == pytest.approx(expected)

    def test_unknown_model_zero_cost(self):
        assert calculate_cost("unknown-model", 10000, 10000) == 0.0


class TestExtractUsageFromResponse:
    def test_with_usage_metadata(self):
        msg = MagicMock()
        msg.usage_metadata = {"input_tokens": 100, "output_tokens": 50}
        assert extract_usage_from_response(msg) == {"input_tokens": 100, "output_tokens": 50, "total_tokens": 150}

    def test_no_usage_metadata(self):
        msg = MagicMock(spec=[])
        assert extract_usage_from_response(msg) == {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0}

    def test_none_values(self):
        msg = MagicMock()
        msg.usage_metadata = {"input_tokens": None, "output_tokens": 7}
        assert extract_usage_from_response(msg)["total_tokens"] == 7

    def test_gateway_token_usage_fallback(self):
        msg = MagicMock()
        msg.usage_metadata = None
        msg.response_metadata = {"token_usage": {"prompt_tokens": 800, "completion_tokens": 120}}
        assert extract_usage_from_response(msg) == {"input_tokens": 800, "output_tokens": 120, "total_tokens": 920}

    def test_unusable_metadata(self):
        msg = MagicMock()
        msg.usage_metadata = None
        msg.response_metadata = {"finish_reason": "stop"}
        assert extract_usage_from_response(msg)["total_tokens"] == 0
