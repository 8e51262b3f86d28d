from __future__ import annotations

from typing import Any

import httpx

from cryptoresearch.config import settings
from cryptoresearch.errors import SearchProviderError
from cryptoresearch.models.search import SearchSource
from cryptoresearch.tools.web_utils import clean_web_content

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


async def search(
    query: str,
    *,
    max_results: int = 10,
    client: httpx.AsyncClient | None = None,
) -> list[SearchSource]:
    """Execute a Brave web search and normalize results."""
    if not settings.brave_api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    params: dict[str, Any] = {"q": query, "count": max_results}
    headers = {
        "Accept": "application/json",
        "X-Subscription-Token": settings.brave_api_key,
    }

    if client is None:
        async with httpx.AsyncClient(timeout=settings.search_timeout_seconds) as owned:
            response = await owned.get(BRAVE_SEARCH_URL, params=params, headers=headers)
    else:
        response = await client.get(BRAVE_SEARCH_URL, params=params, headers=headers)

    if response.status_code >= 400:
        raise SearchProviderError("Brave", response.status_code, response.text[:200])
    payload = response.json()

    mapped: list[SearchSource] = []
    for item in payload.get("web", {}).get("results", []):
        snippets = item.get("extra_snippets", []) or []
        description = item.get("description", "") or ""
        content = description.strip() or " ".join(snippets).strip()
        mapped.append(
            SearchSource(
                title=item.get("title", "") or "",
                url=item.get("url", "") or "",
                content=clean_web_content(content),
            )
        )
    return mapped
