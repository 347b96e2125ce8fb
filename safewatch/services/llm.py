"""Classifier provider factory and the single provider-call helper.

Every tier goes through :func:`invoke_classifier`, which never raises for
provider trouble. It returns a :class:`ProviderResult` whose ``status`` tells
the caller whether to use the content, try again on a later run, or give up.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from config import settings

logger = logging.getLogger(__name__)

TIER_SMALL = "small"
TIER_SMART = "smart"
TIER_FALLBACK = "fallback"

STATUS_SUCCESS = "success"
STATUS_RETRYABLE = "retryable"
STATUS_FATAL = "fatal"


@dataclass
class ProviderResult:
    status: str
    model: str
    content: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS


def model_for_tier(tier: str) -> str:
    if tier == TIER_SMALL:
        return settings.SMALL_AGENT_MODEL
    if tier == TIER_SMART:
        return settings.SMART_AGENT_MODEL
    if tier == TIER_FALLBACK:
        return settings.FALLBACK_MODEL
    raise ValueError(f"Unknown classifier tier: {tier}")


def max_tokens_for_tier(tier: str) -> int:
    return {
        TIER_SMALL: settings.SMALL_AGENT_MAX_TOKENS,
        TIER_SMART: settings.SMART_AGENT_MAX_TOKENS,
        TIER_FALLBACK: settings.FALLBACK_MAX_TOKENS,
    }[tier]


def create_llm(
    model_name: str,
    *,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: int | None = None,
    json_mode: bool = True,
) -> BaseChatModel:
    """Build a chat model for the configured provider.

    ``max_retries`` is pinned to 0: a failed call is reported back to the
    pipeline and retried by the next scheduler tick, not inside the client.
    """
    provider_type = settings.LLM_PROVIDER
    api_key = settings.LLM_API_KEY

    kwargs: dict = {"model": model_name, "max_retries": 0}
    if temperature is not None:
        kwargs["temperature"] = temperature
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    if timeout is not None:
        kwargs["timeout"] = timeout

    if provider_type == "openai":
        from langchain_openai import ChatOpenAI
        if json_mode:
            kwargs["model_kwargs"] = {"response_format": {"type": "json_object"}}
        return ChatOpenAI(api_key=api_key, **kwargs)

    if provider_type == "anthropic":
        from langchain_anthropic import ChatAnthropic
        return ChatAnthropic(api_key=api_key, **kwargs)

    if provider_type == "openai_compatible":
        from langchain_openai import ChatOpenAI
        if json_mode:
            kwargs["model_kwargs"] = {"response_format": {"type": "json_object"}}
        return ChatOpenAI(api_key=api_key, base_url=settings.LLM_BASE_URL, **kwargs)

    raise ValueError(f"Unsupported provider type: {provider_type}")


def classify_provider_error(exc: BaseException) -> str:
    """Map a provider exception to ``retryable`` or ``fatal``.

    Rate limits (429), server errors (5xx), timeouts and dropped connections
    are retryable. Anything else (bad key, bad request, unknown model) is fatal.
    """
    status_code = getattr(exc, "status_code", None)
    if status_code is None:
        status_code = getattr(getattr(exc, "response", None), "status_code", None)
    if isinstance(status_code, int) and (status_code == 429 or status_code >= 500):
        return STATUS_RETRYABLE
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return STATUS_RETRYABLE
    name = type(exc).__name__
    if "Timeout" in name or "Connection" in name or "RateLimit" in name:
        return STATUS_RETRYABLE
    return STATUS_FATAL


def _content_text(content) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content or "")


def invoke_classifier(
    tier: str,
    system_prompt: str,
    user_prompt: str,
    *,
    model_name: str | None = None,
) -> ProviderResult:
    """Run one blocking classifier call for *tier* and report how it went."""
    from services.token_usage import extract_usage_from_response

    model = model_name or model_for_tier(tier)
    started = time.monotonic()
    try:
        llm = create_llm(
            model,
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=max_tokens_for_tier(tier),
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
        response = llm.invoke([
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt),
        ])
    except Exception as exc:
        status = classify_provider_error(exc)
        latency_ms = int((time.monotonic() - started) * 1000)
        logger.warning(
            "%s classifier call to %s failed (%s): %s",
            tier, model, status, exc,
        )
        return ProviderResult(
            status=status,
            model=model,
            latency_ms=latency_ms,
            error=f"{type(exc).__name__}: {exc}"[:500],
        )

    usage = extract_usage_from_response(response)
    return ProviderResult(
        status=STATUS_SUCCESS,
        model=model,
        content=_content_text(response.content),
        input_tokens=usage["input_tokens"],
        output_tokens=usage["output_tokens"],
        latency_ms=int((time.monotonic() - started) * 1000),
    )


def extract_json(text: str) -> str:
    """Strip markdown fences and any prose around the outermost JSON object."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        return cleaned[start:end + 1]
    return cleaned.strip()
