"""Per-day spend ledger with a daily budget and best-effort local persistence."""
from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from loguru import logger


@dataclass(slots=True)
class CostEntry:
    timestamp: float
    cost: float
    queries: int
    operation: str


@dataclass(slots=True)
class CostMetrics:
    total_queries: int
    total_cost: float
    daily_cost: float
    remaining_budget: float
    warning_triggered: bool


class CostTracker:
    def __init__(
        self,
        daily_spend_limit: float,
        cost_per_query: float,
        warning_threshold: float = 0.8,
        history_days: int = 30,
        ledger_path: str | Path | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.daily_spend_limit = float(daily_spend_limit)
        self.cost_per_query = float(cost_per_query)
        self.warning_threshold = float(warning_threshold)
        self.history_days = max(int(history_days), 1)
        self.ledger_path = Path(ledger_path) if ledger_path else None
        self._clock = clock
        self._daily: dict[str, list[CostEntry]] = {}
        self._reserved = 0
        self._load()

    def _day_key(self, timestamp: float | None = None) -> str:
        ts = self._clock() if timestamp is None else timestamp
        return datetime.fromtimestamp(ts, tz=timezone.utc).date().isoformat()

    def estimate(self, queries: int) -> float:
        return queries * self.cost_per_query

    def can_afford(self, queries: int) -> bool:
        """True when today's spend plus in-flight reservations leaves room for `queries`."""
        return self.daily_cost() + self.estimate(self._reserved + queries) <= self.daily_spend_limit

    def reserve(self, queries: int) -> bool:
        """Hold budget for queries about to hit the provider; False when the day cannot cover them."""
        if not self.can_afford(queries):
            return False
        self._reserved += queries
        return True

    def release(self, queries: int) -> None:
        self._reserved = max(0, self._reserved - queries)

    @property
    def reserved_queries(self) -> int:
        return self._reserved

    def record_cost(self, queries: int, operation: str, *, reserved: bool = False) -> float:
        """Commit a completed paid operation to today's ledger and return its cost.

        With `reserved`, the matching reservation is released in the same step.
        """
        if reserved:
            self.release(queries)
        cost = self.estimate(queries)
        now = self._clock()
        self._daily.setdefault(self._day_key(now), []).append(
            CostEntry(timestamp=now, cost=cost, queries=queries, operation=operation)
        )
        self._prune(now)
        self._save()

        if self.is_near_limit():
            logger.warning(
                f"Daily spend at ${self.daily_cost():.4f} of ${self.daily_spend_limit:.2f} "
                f"({self.warning_threshold:.0%} warning threshold reached)"
            )
        return cost

    def daily_cost(self, day: str | None = None) -> float:
        entries = self._daily.get(day or self._day_key(), [])
        return sum(entry.cost for entry in entries)

    def remaining_budget(self) -> float:
        return max(0.0, self.daily_spend_limit - self.daily_cost())

    def is_near_limit(self) -> bool:
        return self.daily_cost() >= self.daily_spend_limit * self.warning_threshold

    def metrics(self) -> CostMetrics:
        all_entries = [entry for entries in self._daily.values() for entry in entries]
        return CostMetrics(
            total_queries=sum(entry.queries for entry in all_entries),
            total_cost=sum(entry.cost for entry in all_entries),
            daily_cost=self.daily_cost(),
            remaining_budget=self.remaining_budget(),
            warning_triggered=self.is_near_limit(),
        )

    def history(self, days: int = 7) -> list[dict]:
        """Per-day totals for the last `days` days, oldest first."""
        today = datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()
        rows = []
        for offset in range(days - 1, -1, -1):
            day = (today - timedelta(days=offset)).isoformat()
            entries = self._daily.get(day, [])
            rows.append(
                {
                    "date": day,
                    "cost": sum(entry.cost for entry in entries),
                    "queries": sum(entry.queries for entry in entries),
                }
            )
        return rows

    def reset(self) -> None:
        self._daily.clear()
        self._reserved = 0
        self._save()

    def _prune(self, now: float) -> None:
        cutoff = now - self.history_days * 86400
        for day in list(self._daily):
            kept = [entry for entry in self._daily[day] if entry.timestamp > cutoff]
            if kept:
                self._daily[day] = kept
            else:
                del self._daily[day]

    def _load(self) -> None:
        if self.ledger_path is None or not self.ledger_path.exists():
            return
        try:
            payload = json.loads(self.ledger_path.read_text(encoding="utf-8"))
            self._daily = {
                day: [CostEntry(**entry) for entry in entries]
                for day, entries in payload.items()
            }
        except Exception as e:
            logger.warning(f"Failed to load cost ledger from {self.ledger_path}: {e}")
            self._daily = {}

    def _save(self) -> None:
        if self.ledger_path is None:
            return
        try:
            self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
            payload = {
                day: [asdict(entry) for entry in entries]
                for day, entries in self._daily.items()
            }
            self.ledger_path.write_text(json.dumps(payload), encoding="utf-8")
        except Exception as e:
            logger.warning(f"Failed to save cost ledger to {self.ledger_path}: {e}")
