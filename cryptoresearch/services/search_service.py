"""Budgeted, rate-limited, cached and resilient web search.

`SearchService.search_one` resolves a single query through the shared
cost ledger, rate limiter, cache and circuit breaker. `search_batch` fans
queries out concurrently; `search_enhanced` walks a large query list in four
sequential stages and degrades failed queries to error strings.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import asdict
from typing import Any, Awaitable, Callable

from loguru import logger

from cryptoresearch.errors import BatchTooLarge, BudgetExceeded, RateLimited
from cryptoresearch.models.search import (
    BatchSearchItem,
    BatchSearchRequest,
    BatchSearchResponse,
    EnhancedSearchResult,
    SearchMetadata,
    SearchMetric,
    SearchOptions,
    SearchResponse,
    SearchSource,
)
from cryptoresearch.services.analytics import SearchAnalytics
from cryptoresearch.services.cache import CacheService
from cryptoresearch.services.cost_tracker import CostTracker
from cryptoresearch.services.logger import log_search
from cryptoresearch.services.rate_limiter import RateLimiter
from cryptoresearch.services.retry import CircuitBreaker, RetryPolicy, with_retry, with_timeout
from cryptoresearch.tools.search_provider import SearchCallable
from cryptoresearch.tools.web_utils import clean_web_content

ENHANCED_STAGES = ("broad_discovery", "gap_filling", "validation", "recency")


def remove_duplicates(results: list[SearchSource]) -> list[SearchSource]:
    seen: set[str] = set()
    unique: list[SearchSource] = []
    for result in results:
        if result.fingerprint in seen:
            continue
        seen.add(result.fingerprint)
        unique.append(result)
    return unique


def filter_by_length(
    results: list[SearchSource], min_length: int, max_length: int
) -> list[SearchSource]:
    return [r for r in results if min_length <= len(r.content) <= max_length]


def quality_score(
    results: list[SearchSource], min_length: int = 100, max_length: int = 10000
) -> float:
    """Blend of content length, title presence and https ratio, in [0, 1]."""
    total = 0.0
    valid = 0
    for result in results:
        if not result.content or len(result.content) < min_length:
            continue
        valid += 1
        length_score = min(len(result.content) / max_length, 1.0)
        title_score = 0.8 if result.title and len(result.title) > 10 else 0.4
        url_score = 0.8 if result.url.startswith("https://") else 0.6
        total += length_score * 0.5 + title_score * 0.3 + url_score * 0.2
    return total / valid if valid else 0.0


def partition_stages(queries: list[str], stage_count: int = 4) -> list[list[str]]:
    """Split queries into contiguous, near-equal chunks (earlier chunks take the remainder)."""
    base, extra = divmod(len(queries), stage_count)
    chunks: list[list[str]] = []
    start = 0
    for index in range(stage_count):
        size = base + (1 if index < extra else 0)
        chunks.append(queries[start : start + size])
        start += size
    return chunks


class SearchService:
    def __init__(
        self,
        provider: SearchCallable,
        cost_tracker: CostTracker,
        rate_limiter: RateLimiter,
        cache: CacheService,
        analytics: SearchAnalytics,
        circuit_breaker: CircuitBreaker,
        retry_policy: RetryPolicy | None = None,
        *,
        max_results_per_query: int = 15,
        max_queries_per_request: int = 100,
        min_content_length: int = 100,
        max_content_length: int = 10000,
        search_timeout_seconds: float = 30.0,
        health_check_timeout_seconds: float = 5.0,
        stage_count: int = 4,
        inter_query_delay_ms: int = 100,
        enhanced_results_per_query: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.cost_tracker = cost_tracker
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.analytics = analytics
        self.circuit_breaker = circuit_breaker
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_results_per_query = max_results_per_query
        self.max_queries_per_request = max_queries_per_request
        self.min_content_length = min_content_length
        self.max_content_length = max_content_length
        self.search_timeout_seconds = search_timeout_seconds
        self.health_check_timeout_seconds = health_check_timeout_seconds
        self.stage_count = max(int(stage_count), 1)
        self.inter_query_delay_ms = inter_query_delay_ms
        self.enhanced_results_per_query = enhanced_results_per_query
        self._sleep = sleep

    def _post_process(self, results: list[SearchSource]) -> list[SearchSource]:
        cleaned = [
            SearchSource(title=r.title, url=r.url, content=clean_web_content(r.content))
            for r in results
        ]
        return filter_by_length(
            remove_duplicates(cleaned), self.min_content_length, self.max_content_length
        )

    async def _fetch(self, query: str, max_results: int) -> tuple[list[SearchSource], int]:
        async def attempt() -> list[SearchSource]:
            return await self.provider(query, max_results)

        def on_retry(attempt_no: int, error: BaseException) -> None:
            logger.warning(f"Search retry {attempt_no} for query '{query}': {error}")

        async def guarded():
            return await with_timeout(
                with_retry(attempt, policy=self.retry_policy, on_retry=on_retry, sleep=self._sleep),
                self.search_timeout_seconds,
            )

        outcome = await self.circuit_breaker.execute(guarded)
        return outcome.result, outcome.attempts

    async def search_one(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        options = options or SearchOptions()
        started = time.monotonic()
        user_id = options.user_id or "anonymous"
        max_results = min(
            options.max_results or self.max_results_per_query, self.max_results_per_query
        )

        # A reservation is held until the search is billed or abandoned.
        reserved = False
        try:
            if not self.cost_tracker.reserve(1):
                raise BudgetExceeded(
                    self.cost_tracker.daily_cost(), self.cost_tracker.daily_spend_limit
                )
            reserved = True

            if not options.bypass_rate_limit:
                check = self.rate_limiter.check_and_consume(user_id, 1)
                if not check.allowed:
                    raise RateLimited(check.retry_after or 60, check.remaining)

            results: list[SearchSource] | None = None
            if not options.force_refresh:
                results = self.cache.get_search_results(query, max_results)
            cached = results is not None
            attempts = 0

            if results is None:
                raw, attempts = await self._fetch(query, max_results)
                results = self._post_process(raw)
                self.cache.set_search_results(query, results, max_results)

            if cached:
                self.cost_tracker.release(1)
                cost = 0.0
            else:
                cost = self.cost_tracker.record_cost(1, "search", reserved=True)
            reserved = False
            duration_ms = int((time.monotonic() - started) * 1000)
            score = quality_score(results, self.min_content_length, self.max_content_length)

            self.analytics.record(
                SearchMetric(
                    query=query,
                    timestamp=time.time(),
                    duration_ms=duration_ms,
                    result_count=len(results),
                    success=True,
                    cost=cost,
                    cached=cached,
                    source="cache" if cached else "provider",
                    retries=max(attempts - 1, 0),
                    relevance_score=score,
                )
            )
            log_search(
                query,
                cached=cached,
                duration_ms=duration_ms,
                result_count=len(results),
                cost=cost,
            )

            return SearchResponse(
                results=list(results),
                metadata=SearchMetadata(
                    cached=cached,
                    cost=cost,
                    duration_ms=duration_ms,
                    attempts=attempts,
                    rate_limit_remaining=self.rate_limiter.remaining(user_id),
                    quality_score=score,
                ),
            )
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            self.analytics.record(
                SearchMetric(
                    query=query,
                    timestamp=time.time(),
                    duration_ms=duration_ms,
                    result_count=0,
                    success=False,
                    cost=0.0,
                    cached=False,
                    source="provider",
                    error=str(e),
                )
            )
            log_search(query, cached=False, duration_ms=duration_ms, error=str(e))
            raise
        finally:
            if reserved:
                self.cost_tracker.release(1)

    async def search_batch(self, requests: list[BatchSearchRequest]) -> BatchSearchResponse:
        if len(requests) > self.max_queries_per_request:
            raise BatchTooLarge(len(requests), self.max_queries_per_request)

        started = time.monotonic()

        async def run(request: BatchSearchRequest) -> BatchSearchItem:
            try:
                response = await self.search_one(request.query, request.options)
                return BatchSearchItem(query=request.query, response=response)
            except Exception as e:
                return BatchSearchItem(query=request.query, error=str(e))

        items = await asyncio.gather(*(run(r) for r in requests))
        return BatchSearchResponse(
            results=list(items),
            total_cost=sum(i.response.metadata.cost for i in items if i.response),
            total_duration_ms=int((time.monotonic() - started) * 1000),
        )

    async def search_enhanced(
        self, queries: list[str], options: SearchOptions | None = None
    ) -> EnhancedSearchResult:
        options = options or SearchOptions()
        started = time.monotonic()
        request_id = f"enhanced_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        selected = queries[: self.max_queries_per_request]
        stage_options = SearchOptions(
            max_results=options.max_results or self.enhanced_results_per_query,
            force_refresh=options.force_refresh,
            user_id=options.user_id,
            bypass_rate_limit=options.bypass_rate_limit,
        )

        stage_names = list(ENHANCED_STAGES[: self.stage_count])
        while len(stage_names) < self.stage_count:
            stage_names.append(f"stage_{len(stage_names) + 1}")

        collected: list[SearchSource] = []
        errors: list[str] = []
        stage_errors: dict[str, list[str]] = {}
        cache_hits = 0

        log = logger.bind(request_id=request_id)
        for stage, stage_queries in zip(stage_names, partition_stages(selected, self.stage_count)):
            if not stage_queries:
                continue
            log.info(f"Executing {stage} stage with {len(stage_queries)} queries")
            for query in stage_queries:
                try:
                    response = await self.search_one(query, stage_options)
                    collected.extend(response.results)
                    if response.metadata.cached:
                        cache_hits += 1
                except Exception as e:
                    message = f"{query}: {e}"
                    errors.append(message)
                    stage_errors.setdefault(stage, []).append(message)
                    log.warning(f"Search failed in {stage}: {message}")
                await self._sleep(self.inter_query_delay_ms / 1000)

        total = len(selected)
        hit_rate = cache_hits / total if total else 0.0
        return EnhancedSearchResult(
            results=filter_by_length(
                remove_duplicates(collected), self.min_content_length, self.max_content_length
            ),
            total_queries=total,
            successful_queries=total - len(errors),
            cache_hit_rate=hit_rate,
            duration_ms=int((time.monotonic() - started) * 1000),
            request_id=request_id,
            errors=errors,
            stage_errors=stage_errors,
            cached=hit_rate > 0.5,
        )

    async def health_check(self) -> dict[str, Any]:
        checks: dict[str, bool] = {}
        try:
            await with_timeout(self.provider("test health check", 1), self.health_check_timeout_seconds)
            checks["api_connectivity"] = True
        except Exception as e:
            logger.warning(f"Search health check failed: {e}")
            checks["api_connectivity"] = False

        checks["cost_limits"] = self.cost_tracker.can_afford(1)
        # Scratch cache with the shared one's settings; the shared entries and stats stay untouched.
        scratch = CacheService(
            default_ttl_seconds=self.cache.default_ttl_seconds,
            max_entries=1,
            key_prefix=self.cache.key_prefix,
        )
        scratch.set("health_check", "test")
        checks["cache"] = scratch.get("health_check") == "test"
        checks["rate_limiting"] = True

        healthy = sum(1 for ok in checks.values() if ok)
        if healthy == len(checks):
            status = "healthy"
        elif healthy >= len(checks) * 0.5:
            status = "degraded"
        else:
            status = "unhealthy"

        return {
            "status": status,
            "checks": checks,
            "circuit_breaker_state": self.circuit_breaker.state.value,
        }

    def stats(self) -> dict[str, Any]:
        return {
            "cost": asdict(self.cost_tracker.metrics()),
            "cache": asdict(self.cache.stats()),
            "analytics": asdict(self.analytics.snapshot()),
            "circuit_breaker": self.circuit_breaker.stats(),
        }

    def reset(self) -> None:
        self.cost_tracker.reset()
        self.rate_limiter.reset()
        self.cache.clear()
        self.analytics.reset()
        self.circuit_breaker.reset()
