from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from cryptoresearch.llm_client import LLMClient, is_reasoning_model


def _openai(response=None, error: Exception | None = None) -> MagicMock:
    fake = MagicMock()
    fake.chat.completions.create = AsyncMock(return_value=response, side_effect=error)
    return fake


def _response(content: str = "hello", prompt_tokens: int = 3, completion_tokens: int = 5):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


@pytest.mark.parametrize(
    "model, expected",
    [
        ("openai/o3-deep-research", True),
        ("openai/o1-mini", True),
        ("o4-mini", True),
        ("openai/gpt-5", True),
        ("openai/gpt-4o", False),
        ("anthropic/claude-3.5-sonnet", False),
    ],
)
def test_is_reasoning_model(model, expected):
    assert is_reasoning_model(model) is expected


@pytest.mark.asyncio
async def test_complete_returns_content_and_usage():
    fake = _openai(_response())
    client = LLMClient(fake, default_temperature=0.3)

    completion = await client.complete(
        model="openai/gpt-4o", system_prompt="sys", user_prompt="hi", max_tokens=100
    )

    assert completion.content == "hello"
    assert completion.tokens_used == 8
    kwargs = fake.chat.completions.create.await_args.kwargs
    assert kwargs["temperature"] == 0.3
    assert kwargs["max_tokens"] == 100
    assert kwargs["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "hi"},
    ]
    assert "reasoning_effort" not in kwargs


@pytest.mark.asyncio
async def test_reasoning_models_omit_temperature():
    fake = _openai(_response())
    client = LLMClient(fake)

    await client.complete(
        model="openai/o3-deep-research",
        system_prompt=None,
        user_prompt="hi",
        max_tokens=100,
        temperature=0.9,
        reasoning_effort="high",
    )

    kwargs = fake.chat.completions.create.await_args.kwargs
    assert "temperature" not in kwargs
    assert kwargs["reasoning_effort"] == "high"
    assert kwargs["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_empty_choices_raise_value_error():
    client = LLMClient(_openai(SimpleNamespace(choices=[], usage=None)))

    with pytest.raises(ValueError):
        await client.complete(model="m", system_prompt=None, user_prompt="hi", max_tokens=10)


@pytest.mark.asyncio
async def test_missing_usage_counts_zero_tokens():
    client = LLMClient(_openai(SimpleNamespace(choices=_response().choices, usage=None)))

    completion = await client.complete(model="m", system_prompt=None, user_prompt="hi", max_tokens=10)

    assert completion.tokens_used == 0
    assert completion.content == "hello"


@pytest.mark.asyncio
async def test_transport_errors_propagate():
    client = LLMClient(_openai(error=RuntimeError("connection reset")))

    with pytest.raises(RuntimeError):
        await client.complete(model="m", system_prompt=None, user_prompt="hi", max_tokens=10)
