"""Rolling log of search outcomes and the aggregates derived from it."""
from __future__ import annotations

import asyncio
import random
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from cryptoresearch.models.search import SearchMetric

COST_BUCKETS: tuple[tuple[float, float, str], ...] = (
    (0.0, 0.001, "< $0.001"),
    (0.001, 0.01, "$0.001 - $0.01"),
    (0.01, 0.1, "$0.01 - $0.1"),
    (0.1, 1.0, "$0.1 - $1"),
    (1.0, float("inf"), "> $1"),
)


@dataclass(slots=True)
class AnalyticsSnapshot:
    total_queries: int = 0
    success_rate: float = 0.0
    avg_duration_ms: float = 0.0
    cache_hit_rate: float = 0.0
    avg_cost: float = 0.0
    top_queries: list[dict[str, Any]] = field(default_factory=list)
    error_rate: float = 0.0
    trends: list[dict[str, Any]] = field(default_factory=list)


class SearchAnalytics:
    def __init__(
        self,
        enabled: bool = True,
        sample_rate: float = 1.0,
        retention_days: int = 30,
        max_records: int = 10000,
        high_cost_threshold: float = 1.0,
        sweep_interval_seconds: float = 300,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ):
        self.enabled = enabled
        self.sample_rate = sample_rate
        self.retention_days = retention_days
        self.max_records = max(int(max_records), 1)
        self.high_cost_threshold = high_cost_threshold
        self.sweep_interval_seconds = float(sweep_interval_seconds)
        self._clock = clock
        self._rng = rng
        self._records: list[SearchMetric] = []
        self._prune_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._records)

    def record(self, metric: SearchMetric) -> bool:
        """Append a metric; returns whether it was kept."""
        if not self.enabled:
            return False

        always_keep = not metric.success or metric.cost > self.high_cost_threshold
        if not always_keep and self._rng() >= self.sample_rate:
            return False

        self._records.append(metric)
        if len(self._records) > self.max_records:
            del self._records[: len(self._records) - self.max_records]
        return True

    def _window(self, time_range_seconds: float | None) -> list[SearchMetric]:
        cutoff = self._clock() - time_range_seconds if time_range_seconds else 0.0
        return [m for m in self._records if m.timestamp > cutoff]

    def snapshot(self, time_range_seconds: float | None = None) -> AnalyticsSnapshot:
        records = self._window(time_range_seconds)
        if not records:
            return AnalyticsSnapshot()

        total = len(records)
        successes = sum(1 for m in records if m.success)
        top = Counter(m.query for m in records).most_common(10)

        hourly: dict[int, list[SearchMetric]] = {}
        for m in records:
            hourly.setdefault(int(m.timestamp // 3600), []).append(m)
        trends = [
            {
                "timestamp": hour * 3600,
                "avg_duration_ms": sum(m.duration_ms for m in bucket) / len(bucket),
                "success_rate": sum(1 for m in bucket if m.success) / len(bucket),
            }
            for hour, bucket in sorted(hourly.items())
        ]

        return AnalyticsSnapshot(
            total_queries=total,
            success_rate=successes / total,
            avg_duration_ms=sum(m.duration_ms for m in records) / total,
            cache_hit_rate=sum(1 for m in records if m.cached) / total,
            avg_cost=sum(m.cost for m in records) / total,
            top_queries=[{"query": q, "count": c} for q, c in top],
            error_rate=(total - successes) / total,
            trends=trends,
        )

    def quality_metrics(self, time_range_seconds: float | None = None) -> dict[str, float]:
        records = [
            m for m in self._window(time_range_seconds)
            if m.success and m.relevance_score is not None
        ]
        if not records:
            return {
                "relevance_score": 0.0,
                "content_quality": 0.0,
                "diversity_score": 0.0,
                "duplicate_rate": 0.0,
            }

        relevance = sum(m.relevance_score or 0.0 for m in records) / len(records)
        content_quality = sum(
            min(m.result_count / max(m.duration_ms / 1000, 1), 1.0) for m in records
        ) / len(records)
        diversity = len({m.query for m in records}) / len(records)
        return {
            "relevance_score": relevance,
            "content_quality": content_quality,
            "diversity_score": diversity,
            "duplicate_rate": max(0.0, 1 - diversity),
        }

    def error_analysis(self, time_range_seconds: float | None = None) -> list[dict[str, Any]]:
        grouped: dict[str, dict[str, Any]] = {}
        for m in self._window(time_range_seconds):
            if m.success or not m.error:
                continue
            row = grouped.setdefault(m.error, {"error": m.error, "count": 0, "last_occurrence": 0.0})
            row["count"] += 1
            row["last_occurrence"] = max(row["last_occurrence"], m.timestamp)
        return sorted(grouped.values(), key=lambda row: row["count"], reverse=True)

    def cost_analysis(self, time_range_seconds: float | None = None) -> dict[str, Any]:
        records = self._window(time_range_seconds)
        total_cost = sum(m.cost for m in records)
        distribution = [
            {"range": label, "count": sum(1 for m in records if low <= m.cost < high)}
            for low, high, label in COST_BUCKETS
        ]
        costly = sorted(records, key=lambda m: m.cost, reverse=True)[:10]
        return {
            "total_cost": total_cost,
            "cost_per_query": total_cost / len(records) if records else 0.0,
            "cost_distribution": distribution,
            "top_costly_queries": [{"query": m.query, "cost": m.cost} for m in costly],
        }

    def export(self, time_range_seconds: float | None = None) -> list[dict[str, Any]]:
        return [m.to_dict() for m in self._window(time_range_seconds)]

    def report_text(self, time_range_seconds: float = 24 * 3600) -> str:
        snapshot = self.snapshot(time_range_seconds)
        quality = self.quality_metrics(time_range_seconds)
        errors = self.error_analysis(time_range_seconds)
        costs = self.cost_analysis(time_range_seconds)

        lines = [
            "SEARCH ANALYTICS REPORT",
            "=======================",
            f"Time Range: Last {time_range_seconds / 3600:g} hours",
            "",
            "PERFORMANCE METRICS:",
            f"- Total Queries: {snapshot.total_queries}",
            f"- Success Rate: {snapshot.success_rate * 100:.1f}%",
            f"- Average Duration: {snapshot.avg_duration_ms:.0f}ms",
            f"- Cache Hit Rate: {snapshot.cache_hit_rate * 100:.1f}%",
            "",
            "QUALITY METRICS:",
            f"- Relevance Score: {quality['relevance_score'] * 100:.1f}%",
            f"- Content Quality: {quality['content_quality'] * 100:.1f}%",
            f"- Diversity Score: {quality['diversity_score'] * 100:.1f}%",
            "",
            "COST ANALYSIS:",
            f"- Total Cost: ${costs['total_cost']:.4f}",
            f"- Cost Per Query: ${costs['cost_per_query']:.6f}",
            "",
            "TOP QUERIES:",
            *[f'- "{q["query"]}" ({q["count"]} times)' for q in snapshot.top_queries[:5]],
            "",
            "TOP ERRORS:",
            *[f"- {e['error']} ({e['count']} times)" for e in errors[:3]],
        ]
        return "\n".join(lines)

    def prune(self) -> int:
        cutoff = self._clock() - self.retention_days * 86400
        before = len(self._records)
        self._records = [m for m in self._records if m.timestamp > cutoff]
        return before - len(self._records)

    def reset(self) -> None:
        self._records.clear()

    async def _prune_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self.prune()
            if removed:
                logger.debug(f"Analytics prune removed {removed} records")

    def start(self) -> None:
        if self._prune_task is None or self._prune_task.done():
            self._prune_task = asyncio.create_task(self._prune_loop())

    async def stop(self) -> None:
        if self._prune_task is None:
            return
        self._prune_task.cancel()
        try:
            await self._prune_task
        except asyncio.CancelledError:
            pass
        self._prune_task = None
