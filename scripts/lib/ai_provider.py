"""
HubSpot Deal Analytics — AI Provider
====================================

Text completion for report narration, backed by Groq or Claude.
AI_PROVIDER picks the backend (default groq); the matching API key must be set.
Calls are recorded in the ai_call_logs table when Supabase is configured.
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass

from scripts.lib.errors import ConfigError
from scripts.lib.logger import setup_logger

logger = setup_logger("ai_provider")

MODELS = {
    "groq": "llama-3.3-70b-versatile",
    "claude": "claude-sonnet-4-5-20250929",
}
API_KEYS = {
    "groq": "GROQ_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
}

DEFAULT_MAX_TOKENS = 1500
DEFAULT_TEMPERATURE = 0.3


@dataclass
class AIResponse:
    content: str
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int


def default_provider() -> str:
    provider = os.getenv("AI_PROVIDER", "groq").lower()
    return provider if provider in MODELS else "groq"


def is_configured(provider: str | None = None) -> bool:
    return bool(os.getenv(API_KEYS[(provider or default_provider()).lower()]))


def _api_key(provider: str) -> str:
    key_name = API_KEYS[provider]
    api_key = os.getenv(key_name)
    if not api_key:
        raise ConfigError(f"{key_name} not set", field=key_name)
    return api_key


async def ai_complete(
    task: str,
    system_prompt: str,
    user_prompt: str,
    *,
    provider: str | None = None,
    model: str | None = None,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    temperature: float = DEFAULT_TEMPERATURE,
) -> AIResponse:
    """
    Run one completion and record it.

    Args:
        task: Label for the call log, e.g. narrate_forecast.
        provider: "groq" or "claude"; defaults to AI_PROVIDER.
        model: Overrides the provider's default model.

    Raises:
        ConfigError: the provider's API key is not set.
    """
    chosen = (provider or default_provider()).lower()
    model = model or MODELS[chosen]
    call = _complete_claude if chosen == "claude" else _complete_groq

    start = time.perf_counter()
    content, input_tokens, output_tokens = await call(
        system_prompt, user_prompt, model, max_tokens, temperature,
    )
    response = AIResponse(
        content=content,
        provider=chosen,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        latency_ms=int((time.perf_counter() - start) * 1000),
    )

    _record_call(task, chosen, model, response.input_tokens + response.output_tokens, response.latency_ms)
    logger.info(
        "AI [%s/%s] task=%s tokens=%d+%d latency=%dms",
        chosen, model, task, input_tokens, output_tokens, response.latency_ms,
    )
    return response


async def _complete_groq(system_prompt, user_prompt, model, max_tokens, temperature):
    from groq import AsyncGroq

    client = AsyncGroq(api_key=_api_key("groq"))
    response = await client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        max_tokens=max_tokens,
        temperature=temperature,
    )
    usage = response.usage
    return (
        response.choices[0].message.content or "",
        usage.prompt_tokens if usage else 0,
        usage.completion_tokens if usage else 0,
    )


async def _complete_claude(system_prompt, user_prompt, model, max_tokens, temperature):
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=_api_key("claude"))
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        system=system_prompt,
        messages=[{"role": "user", "content": user_prompt}],
    )
    text = "".join(block.text for block in response.content if hasattr(block, "text"))
    return text, response.usage.input_tokens, response.usage.output_tokens


def _record_call(task: str, provider: str, model: str, tokens: int, latency_ms: int,
                 error: str | None = None) -> None:
    """Insert one row into ai_call_logs; failures are only logged."""
    from scripts.lib import supabase_client

    if not supabase_client.is_configured():
        return
    try:
        supabase_client.get_client().table("ai_call_logs").insert({
            "task": task,
            "provider": provider,
            "model": model,
            "total_tokens": tokens,
            "latency_ms": latency_ms,
            "success": error is None,
            "error_message": error,
        }).execute()
    except Exception as e:
        logger.warning("Failed to log AI call: %s", e)


def log_ai_error(task: str, provider: str, model: str, error: Exception) -> None:
    """Record a failed completion."""
    _record_call(task, provider, model or MODELS.get(provider, ""), 0, 0, error=str(error))
