from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from cryptoresearch.config import settings
from cryptoresearch.models.search import SearchSource
from cryptoresearch.tools.web_utils import clean_web_content


def _to_source(item: dict[str, Any]) -> SearchSource | None:
    url = (item.get("url") or "").strip()
    if not url:
        return None
    return SearchSource(
        title=(item.get("title") or "").strip(),
        url=url,
        content=clean_web_content(item.get("content") or ""),
    )


async def search(
    query: str,
    *,
    search_depth: str = "advanced",
    max_results: int = 10,
    include_domains: list[str] | None = None,
    exclude_domains: list[str] | None = None,
) -> list[SearchSource]:
    """Run one Tavily query; results without a URL are dropped."""
    request: dict[str, Any] = dict(
        query=query,
        search_depth=search_depth,
        max_results=max_results,
        include_answer=True,
        include_images=False,
        include_raw_content=False,
    )
    for field, domains in (("include_domains", include_domains), ("exclude_domains", exclude_domains)):
        if domains:
            request[field] = domains

    payload = await AsyncTavilyClient(api_key=settings.tavily_api_key).search(**request)
    sources = (_to_source(item) for item in payload.get("results", []))
    return [source for source in sources if source is not None]
