from __future__ import annotations

import pytest

from cryptoresearch.models.search import SearchMetric
from cryptoresearch.services.analytics import SearchAnalytics

HOUR = 3600.0
NOW = 1704196800.0


def _metric(query="q", *, timestamp=NOW, success=True, cost=0.001, cached=False, **kwargs):
    kwargs.setdefault("duration_ms", 100)
    kwargs.setdefault("result_count", 5)
    return SearchMetric(
        query=query,
        timestamp=timestamp,
        success=success,
        cost=cost,
        cached=cached,
        **kwargs,
    )


def _analytics(**kwargs) -> SearchAnalytics:
    kwargs.setdefault("clock", lambda: NOW)
    return SearchAnalytics(**kwargs)


def test_sampling_always_keeps_failures_and_expensive_queries():
    analytics = _analytics(sample_rate=0.0, high_cost_threshold=0.5, rng=lambda: 0.99)

    assert not analytics.record(_metric())
    assert analytics.record(_metric(success=False, error="boom"))
    assert analytics.record(_metric(cost=0.6))
    assert len(analytics) == 2


def test_disabled_analytics_records_nothing():
    analytics = _analytics(enabled=False)
    assert not analytics.record(_metric(success=False))
    assert len(analytics) == 0


def test_max_records_keeps_newest():
    analytics = _analytics(max_records=2)
    for query in ("a", "b", "c"):
        analytics.record(_metric(query))

    assert [row["query"] for row in analytics.export()] == ["b", "c"]


def test_snapshot_aggregates():
    analytics = _analytics()
    analytics.record(_metric("btc", duration_ms=100, cached=True, cost=0.0))
    analytics.record(_metric("btc", duration_ms=300, cost=0.002))
    analytics.record(_metric("eth", duration_ms=200, success=False, error="timeout", cost=0.001))
    analytics.record(_metric("old", timestamp=NOW - 2 * HOUR))

    snapshot = analytics.snapshot(time_range_seconds=HOUR)

    assert snapshot.total_queries == 3
    assert snapshot.success_rate == pytest.approx(2 / 3)
    assert snapshot.error_rate == pytest.approx(1 / 3)
    assert snapshot.avg_duration_ms == pytest.approx(200)
    assert snapshot.cache_hit_rate == pytest.approx(1 / 3)
    assert snapshot.avg_cost == pytest.approx(0.001)
    assert snapshot.top_queries[0] == {"query": "btc", "count": 2}
    assert len(snapshot.trends) == 1


def test_empty_snapshot_is_zeroed():
    snapshot = _analytics().snapshot()
    assert snapshot.total_queries == 0
    assert snapshot.top_queries == []


def test_cost_distribution_buckets():
    analytics = _analytics()
    for cost in (0.0, 0.0005, 0.005, 0.05, 0.5, 2.0):
        analytics.record(_metric(cost=cost))

    distribution = analytics.cost_analysis()["cost_distribution"]

    assert [row["count"] for row in distribution] == [2, 1, 1, 1, 1]
    assert distribution[0]["range"] == "< $0.001"


def test_error_analysis_groups_by_message():
    analytics = _analytics()
    analytics.record(_metric(success=False, error="timeout", timestamp=NOW - 10))
    analytics.record(_metric(success=False, error="timeout"))
    analytics.record(_metric(success=False, error="rate limited"))

    errors = analytics.error_analysis()

    assert errors[0] == {"error": "timeout", "count": 2, "last_occurrence": NOW}
    assert errors[1]["error"] == "rate limited"


def test_quality_metrics_use_relevance_scores():
    analytics = _analytics()
    analytics.record(_metric("a", relevance_score=0.8))
    analytics.record(_metric("a", relevance_score=0.4))

    quality = analytics.quality_metrics()

    assert quality["relevance_score"] == pytest.approx(0.6)
    assert quality["diversity_score"] == pytest.approx(0.5)
    assert quality["duplicate_rate"] == pytest.approx(0.5)


def test_prune_drops_records_past_retention():
    analytics = _analytics(retention_days=1)
    analytics.record(_metric(timestamp=NOW - 2 * 86400))
    analytics.record(_metric())

    assert analytics.prune() == 1
    assert len(analytics) == 1


def test_report_text_mentions_sections():
    analytics = _analytics()
    analytics.record(_metric("solana"))

    text = analytics.report_text()

    assert "SEARCH ANALYTICS REPORT" in text
    assert "Total Queries: 1" in text
    assert '"solana" (1 times)' in text
