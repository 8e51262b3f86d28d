from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from cryptoresearch.config import settings
from cryptoresearch.models.search import SearchSource
from cryptoresearch.tools import brave_search, tavily_search

SearchCallable = Callable[[str, int], Awaitable[list[SearchSource]]]


@dataclass
class ProviderResponse:
    results: list[SearchSource]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


async def search(
    query: str,
    *,
    search_depth: str | None = None,
    max_results: int = 10,
) -> ProviderResponse:
    provider = settings.search_provider.lower().strip()
    use_fallback = settings.search_fallback_to_tavily
    depth = search_depth or settings.search_depth

    if provider == "tavily":
        results = await tavily_search.search(
            query=query,
            search_depth=depth,
            max_results=max_results,
        )
        return ProviderResponse(results=results, provider="tavily")

    if provider == "brave":
        try:
            results = await brave_search.search(query=query, max_results=max_results)
            if results or not use_fallback:
                return ProviderResponse(results=results, provider="brave")
            reason = "brave returned zero results"
        except Exception as e:
            if not use_fallback:
                raise
            reason = str(e)

        logger.info(f"Falling back to Tavily for '{query}': {reason}")
        fallback_results = await tavily_search.search(
            query=query,
            search_depth=depth,
            max_results=max_results,
        )
        return ProviderResponse(
            results=fallback_results,
            provider="tavily",
            fallback_from="brave",
            fallback_reason=reason,
        )

    raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")


async def search_sources(query: str, max_results: int) -> list[SearchSource]:
    """Provider entry point handed to SearchService: query in, cleaned sources out."""
    response = await search(query, max_results=max_results)
    return response.results
