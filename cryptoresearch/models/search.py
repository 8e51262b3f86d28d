from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class SearchSource:
    title: str
    url: str
    content: str

    @property
    def fingerprint(self) -> str:
        return f"{self.url}|{self.title.lower()}"

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "url": self.url, "content": self.content}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SearchSource":
        return cls(
            title=str(payload.get("title", "") or ""),
            url=str(payload.get("url", "") or ""),
            content=str(payload.get("content", "") or ""),
        )


@dataclass(slots=True)
class SearchOptions:
    max_results: int | None = None
    force_refresh: bool = False
    user_id: str = "anonymous"
    bypass_rate_limit: bool = False


@dataclass(slots=True)
class SearchMetadata:
    cached: bool
    cost: float
    duration_ms: int
    attempts: int = 0
    rate_limit_remaining: int | None = None
    quality_score: float = 0.0


@dataclass(slots=True)
class SearchResponse:
    results: list[SearchSource]
    metadata: SearchMetadata


@dataclass(slots=True)
class BatchSearchRequest:
    query: str
    options: SearchOptions | None = None


@dataclass(slots=True)
class BatchSearchItem:
    query: str
    response: SearchResponse | None = None
    error: str | None = None

    @property
    def results(self) -> list[SearchSource]:
        return self.response.results if self.response else []


@dataclass(slots=True)
class BatchSearchResponse:
    results: list[BatchSearchItem]
    total_cost: float
    total_duration_ms: int


@dataclass(slots=True)
class EnhancedSearchResult:
    results: list[SearchSource]
    total_queries: int
    successful_queries: int
    cache_hit_rate: float
    duration_ms: int
    request_id: str
    errors: list[str] = field(default_factory=list)
    stage_errors: dict[str, list[str]] = field(default_factory=dict)
    cached: bool = False


@dataclass(slots=True)
class SearchMetric:
    query: str
    timestamp: float
    duration_ms: int
    result_count: int
    success: bool
    cost: float
    cached: bool
    source: str = "search"
    retries: int = 0
    error: str | None = None
    relevance_score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "timestamp": self.timestamp,
            "duration_ms": self.duration_ms,
            "result_count": self.result_count,
            "success": self.success,
            "cost": self.cost,
            "cached": self.cached,
            "source": self.source,
            "retries": self.retries,
            "error": self.error,
            "relevance_score": self.relevance_score,
        }
