from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from cryptoresearch.llm_client import LLMClient
from cryptoresearch.services.analytics import SearchAnalytics
from cryptoresearch.services.cache import CacheService
from cryptoresearch.services.cost_tracker import CostTracker
from cryptoresearch.services.logger import log_event
from cryptoresearch.services.pipeline import PipelineService
from cryptoresearch.services.quality import ReportQualityEvaluator
from cryptoresearch.services.rate_limiter import RateLimiter
from cryptoresearch.services.retry import CircuitBreaker, RetryPolicy
from cryptoresearch.services.search_service import SearchService
from cryptoresearch.tools.search_provider import SearchCallable


@dataclass
class ServiceContainer:
    """Process-wide shared services, built once at startup and passed by reference."""

    cost_tracker: CostTracker
    rate_limiter: RateLimiter
    cache: CacheService
    analytics: SearchAnalytics
    circuit_breaker: CircuitBreaker
    search: SearchService
    pipeline: PipelineService
    evaluator: ReportQualityEvaluator
    max_generated_queries: int = 25
    max_sources: int = 50

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        llm: LLMClient | None = None,
        provider: SearchCallable | None = None,
    ) -> "ServiceContainer":
        if llm is None:
            from cryptoresearch.llm_client import client

            llm = client()
        if provider is None:
            from cryptoresearch.tools.search_provider import search_sources

            provider = search_sources

        cost_tracker = CostTracker(
            daily_spend_limit=settings.daily_spend_limit,
            cost_per_query=settings.cost_per_query,
            warning_threshold=settings.cost_warning_threshold,
            history_days=settings.cost_history_days,
            ledger_path=settings.cost_ledger_path or None,
        )
        rate_limiter = RateLimiter(
            requests_per_minute=settings.requests_per_minute,
            requests_per_hour=settings.requests_per_hour,
            burst_allowance=settings.burst_allowance,
            retention_seconds=settings.rate_limit_retention_seconds,
        )
        cache = CacheService(
            default_ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
            key_prefix=settings.cache_key_prefix,
            sweep_interval_seconds=settings.cache_sweep_interval_seconds,
        )
        analytics = SearchAnalytics(
            enabled=settings.analytics_enabled,
            sample_rate=settings.analytics_sample_rate,
            retention_days=settings.analytics_retention_days,
            max_records=settings.analytics_max_records,
            high_cost_threshold=settings.analytics_high_cost_threshold,
            sweep_interval_seconds=settings.analytics_sweep_interval_seconds,
        )
        circuit_breaker = CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            recovery_seconds=settings.circuit_recovery_seconds,
            success_threshold=settings.circuit_success_threshold,
            name="search",
        )
        search = SearchService(
            provider,
            cost_tracker,
            rate_limiter,
            cache,
            analytics,
            circuit_breaker,
            RetryPolicy.from_settings(settings),
            max_results_per_query=settings.max_results_per_query,
            max_queries_per_request=settings.max_queries_per_request,
            min_content_length=settings.min_content_length,
            max_content_length=settings.max_content_length,
            search_timeout_seconds=settings.search_timeout_seconds,
            health_check_timeout_seconds=settings.health_check_timeout_seconds,
            stage_count=settings.enhanced_stage_count,
            inter_query_delay_ms=settings.enhanced_inter_query_delay_ms,
            enhanced_results_per_query=settings.enhanced_results_per_query,
        )
        pipeline = PipelineService(
            llm,
            light_model=settings.pipeline_light_model,
            reasoning_model=settings.pipeline_reasoning_model,
            timeout_seconds=settings.llm_timeout_seconds,
            temperature=settings.report_temperature,
        )
        evaluator = ReportQualityEvaluator(
            min_words_deep=settings.min_words_deep,
            min_words_lite=settings.min_words_lite,
            min_speculative_density=settings.min_speculative_density,
            min_section_coverage=settings.min_section_coverage,
            max_retries=settings.max_report_retries,
            retry_delay_ms=settings.report_retry_delay_ms,
            retry_context_chars=settings.retry_context_chars,
        )
        return cls(
            cost_tracker=cost_tracker,
            rate_limiter=rate_limiter,
            cache=cache,
            analytics=analytics,
            circuit_breaker=circuit_breaker,
            search=search,
            pipeline=pipeline,
            evaluator=evaluator,
            max_generated_queries=settings.max_generated_queries,
            max_sources=settings.max_sources,
        )

    def start(self) -> None:
        self.cache.start()
        self.analytics.start()
        log_event(
            "services_started",
            "Background cache sweep and analytics prune started",
            cache_sweep_seconds=self.cache.sweep_interval_seconds,
            analytics_prune_seconds=self.analytics.sweep_interval_seconds,
        )

    async def close(self) -> None:
        await self.cache.stop()
        await self.analytics.stop()
        log_event("services_stopped", "Background tasks stopped", **asdict(self.cost_tracker.metrics()))
