from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter (required)
    openrouter_api_key: str
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    pipeline_light_model: str = "openai/gpt-4o"
    pipeline_reasoning_model: str = "openai/o3-deep-research"
    report_temperature: float = 0.7

    # Tavily (required)
    tavily_api_key: str

    # Search provider
    search_provider: str = "tavily"  # tavily | brave
    brave_api_key: str = ""
    search_fallback_to_tavily: bool = True
    search_depth: str = "advanced"

    # Cost controls
    max_queries_per_request: int = 100
    max_results_per_query: int = 15
    daily_spend_limit: float = 100.0
    cost_per_query: float = 0.001
    cost_warning_threshold: float = 0.8
    cost_history_days: int = 30
    cost_ledger_path: str = ""  # empty disables local persistence

    # Rate limiting
    requests_per_minute: int = 30
    requests_per_hour: int = 500
    burst_allowance: int = 5
    rate_limit_retention_seconds: int = 7200

    # Cache
    cache_ttl_seconds: int = 3600
    cache_max_entries: int = 1000
    cache_key_prefix: str = "search_"
    cache_sweep_interval_seconds: int = 300

    # Retry / circuit breaker
    retry_max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 10000
    retry_exponential_backoff: bool = True
    retryable_status_codes: list[int] = [429, 500, 502, 503, 504]
    circuit_failure_threshold: int = 5
    circuit_recovery_seconds: float = 60.0
    circuit_success_threshold: int = 1

    # Analytics
    analytics_enabled: bool = True
    analytics_sample_rate: float = 1.0
    analytics_retention_days: int = 30
    analytics_max_records: int = 10000
    analytics_high_cost_threshold: float = 1.0
    analytics_sweep_interval_seconds: int = 300

    # Source quality
    min_content_length: int = 100
    max_content_length: int = 10000

    # Timeouts
    search_timeout_seconds: float = 30.0
    llm_timeout_seconds: float = 300.0
    health_check_timeout_seconds: float = 5.0

    # Staged (enhanced) search
    enhanced_stage_count: int = 4
    enhanced_inter_query_delay_ms: int = 100
    enhanced_results_per_query: int = 3

    # Report generation / quality
    max_generated_queries: int = 25
    max_sources: int = 50
    max_report_retries: int = 3
    report_retry_delay_ms: int = 1000
    retry_context_chars: int = 3000
    min_words_deep: int = 5000
    min_words_lite: int = 1200
    min_speculative_density: float = 0.08
    min_section_coverage: float = 0.85

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_to_file: bool = True
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
