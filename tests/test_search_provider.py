from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cryptoresearch.errors import SearchProviderError
from cryptoresearch.models.search import SearchSource
from cryptoresearch.tools import brave_search, search_provider, tavily_search

TAVILY_RESULT = [SearchSource(title="t", url="https://t.io", content="from tavily")]
BRAVE_RESULT = [SearchSource(title="b", url="https://b.io", content="from brave")]


def _settings(provider: str, fallback: bool = True) -> SimpleNamespace:
    return SimpleNamespace(
        search_provider=provider,
        search_fallback_to_tavily=fallback,
        search_depth="advanced",
    )


@pytest.mark.asyncio
async def test_search_provider_uses_tavily_when_configured():
    with patch.object(search_provider, "settings", _settings("tavily")), patch.object(
        tavily_search, "search", AsyncMock(return_value=TAVILY_RESULT)
    ) as tavily:
        result = await search_provider.search("query", max_results=3)

    assert result.provider == "tavily"
    assert result.results == TAVILY_RESULT
    tavily.assert_awaited_once_with(query="query", search_depth="advanced", max_results=3)


@pytest.mark.asyncio
async def test_search_provider_falls_back_when_brave_fails():
    with patch.object(search_provider, "settings", _settings("brave")), patch.object(
        brave_search, "search", AsyncMock(side_effect=SearchProviderError("Brave", 500, "oops"))
    ), patch.object(tavily_search, "search", AsyncMock(return_value=TAVILY_RESULT)):
        result = await search_provider.search("query")

    assert result.provider == "tavily"
    assert result.fallback_from == "brave"
    assert "500" in result.fallback_reason


@pytest.mark.asyncio
async def test_search_provider_falls_back_when_brave_returns_nothing():
    with patch.object(search_provider, "settings", _settings("brave")), patch.object(
        brave_search, "search", AsyncMock(return_value=[])
    ), patch.object(tavily_search, "search", AsyncMock(return_value=TAVILY_RESULT)):
        result = await search_provider.search("query")

    assert result.results == TAVILY_RESULT
    assert result.fallback_reason == "brave returned zero results"


@pytest.mark.asyncio
async def test_search_provider_keeps_brave_results_without_fallback():
    with patch.object(search_provider, "settings", _settings("brave", fallback=False)), patch.object(
        brave_search, "search", AsyncMock(return_value=BRAVE_RESULT)
    ):
        result = await search_provider.search("query")

    assert result.provider == "brave"
    assert result.results == BRAVE_RESULT


@pytest.mark.asyncio
async def test_search_provider_raises_brave_error_when_fallback_disabled():
    with patch.object(search_provider, "settings", _settings("brave", fallback=False)), patch.object(
        brave_search, "search", AsyncMock(side_effect=SearchProviderError("Brave", 401, "denied"))
    ):
        with pytest.raises(SearchProviderError):
            await search_provider.search("query")


@pytest.mark.asyncio
async def test_search_provider_raises_when_provider_unsupported():
    with patch.object(search_provider, "settings", _settings("unknown-provider")):
        with pytest.raises(ValueError):
            await search_provider.search("query")


@pytest.mark.asyncio
async def test_search_sources_returns_plain_results():
    with patch.object(search_provider, "settings", _settings("tavily")), patch.object(
        tavily_search, "search", AsyncMock(return_value=TAVILY_RESULT)
    ):
        assert await search_provider.search_sources("query", 5) == TAVILY_RESULT


@pytest.mark.asyncio
async def test_brave_search_maps_results_and_cleans_content():
    response = MagicMock(status_code=200)
    response.json.return_value = {
        "web": {
            "results": [
                {"title": "Doc", "url": "https://d.io", "description": "<b>Bold</b>  text"},
                {"title": "Snip", "url": "https://s.io", "description": "", "extra_snippets": ["a", "b"]},
            ]
        }
    }
    client = MagicMock()
    client.get = AsyncMock(return_value=response)

    with patch.object(brave_search, "settings", SimpleNamespace(brave_api_key="key")):
        results = await brave_search.search("query", max_results=2, client=client)

    assert [r.content for r in results] == ["Bold text", "a b"]
    assert client.get.await_args.kwargs["params"] == {"q": "query", "count": 2}


@pytest.mark.asyncio
async def test_brave_search_raises_on_http_error():
    response = MagicMock(status_code=429, text="slow down")
    client = MagicMock()
    client.get = AsyncMock(return_value=response)

    with patch.object(brave_search, "settings", SimpleNamespace(brave_api_key="key")):
        with pytest.raises(SearchProviderError) as exc_info:
            await brave_search.search("query", client=client)

    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_tavily_search_cleans_content():
    fake_client = MagicMock()
    fake_client.search = AsyncMock(
        return_value={"results": [{"title": "T", "url": "https://t.io", "content": "<p>Hi</p>\n there"}]}
    )

    with patch.object(tavily_search, "AsyncTavilyClient", return_value=fake_client):
        results = await tavily_search.search("query", max_results=1, include_domains=["t.io"])

    assert results == [SearchSource(title="T", url="https://t.io", content="Hi there")]
    assert fake_client.search.await_args.kwargs["include_domains"] == ["t.io"]
