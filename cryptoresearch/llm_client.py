"""OpenRouter chat-completions client used by the staged pipeline."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from cryptoresearch.config import settings
from cryptoresearch.services.logger import log_llm_call

REASONING_MODEL_MARKERS = ("deep-research", "/o1", "/o3", "/o4", "gpt-5")


@dataclass
class Completion:
    content: str
    tokens_used: int
    input_tokens: int = 0
    output_tokens: int = 0


def is_reasoning_model(model: str) -> bool:
    lowered = (model or "").lower()
    if lowered.startswith(("o1", "o3", "o4")):
        return True
    return any(marker in lowered for marker in REASONING_MODEL_MARKERS)


class LLMClient:
    def __init__(self, openai_client: Any, default_temperature: float = 0.7):
        self._client = openai_client
        self.default_temperature = default_temperature

    def _request_kwargs(
        self,
        *,
        model: str,
        system_prompt: str | None,
        user_prompt: str,
        max_tokens: int,
        temperature: float | None,
        reasoning_effort: str | None,
    ) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        # Reasoning models reject sampling parameters.
        if is_reasoning_model(model):
            if reasoning_effort:
                kwargs["reasoning_effort"] = reasoning_effort
        else:
            kwargs["temperature"] = (
                self.default_temperature if temperature is None else temperature
            )
        return kwargs

    async def complete(
        self,
        *,
        model: str,
        system_prompt: str | None,
        user_prompt: str,
        max_tokens: int,
        temperature: float | None = None,
        reasoning_effort: str | None = None,
        caller: str = "pipeline",
    ) -> Completion:
        started = time.monotonic()
        kwargs = self._request_kwargs(
            model=model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            reasoning_effort=reasoning_effort,
        )
        try:
            response = await self._client.chat.completions.create(**kwargs)
            choices = getattr(response, "choices", None) or []
            if not choices or getattr(choices[0], "message", None) is None:
                raise ValueError(f"Malformed completion response from {model}: no choices")
        except Exception as e:
            log_llm_call(
                model=model,
                caller=caller,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=str(e),
            )
            raise

        content = getattr(choices[0].message, "content", None) or ""
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        total_tokens = getattr(usage, "total_tokens", 0) or (input_tokens + output_tokens)

        log_llm_call(
            model=model,
            caller=caller,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return Completion(
            content=content,
            tokens_used=total_tokens,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


def get_client() -> LLMClient:
    """Build an OpenRouter client via the OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
        timeout=settings.llm_timeout_seconds,
    )
    return LLMClient(openai_client, default_temperature=settings.report_temperature)


_client: LLMClient | None = None


def client() -> LLMClient:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
