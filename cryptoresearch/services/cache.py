"""Bounded in-process TTL cache for search results."""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from hashlib import sha256
from typing import Any, Callable

from loguru import logger

from cryptoresearch.models.search import SearchSource


@dataclass(slots=True)
class CacheEntry:
    data: Any
    timestamp: float
    ttl: float
    hits: int
    size: int


@dataclass(slots=True)
class CacheStats:
    total_entries: int
    total_size: int
    hit_rate: float
    hits: int
    misses: int


def _serialized_size(value: Any) -> int:
    def _default(obj: Any) -> Any:
        if isinstance(obj, SearchSource):
            return obj.to_dict()
        return str(obj)

    return len(json.dumps(value, default=_default).encode("utf-8"))


class CacheService:
    def __init__(
        self,
        default_ttl_seconds: float,
        max_entries: int,
        key_prefix: str = "search_",
        sweep_interval_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.default_ttl_seconds = float(default_ttl_seconds)
        self.max_entries = max(int(max_entries), 1)
        self.key_prefix = key_prefix
        self.sweep_interval_seconds = float(sweep_interval_seconds)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._sweep_task: asyncio.Task | None = None

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > entry.ttl

    def _evict_one(self, now: float) -> None:
        # score = hits + age_seconds / 1000; lowest score goes
        victim = min(
            self._entries,
            key=lambda k: self._entries[k].hits + (now - self._entries[k].timestamp) / 1000,
        )
        del self._entries[victim]
        logger.debug(f"Cache evicted {victim}")

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if self._expired(entry, self._clock()):
            del self._entries[key]
            self._misses += 1
            return None
        entry.hits += 1
        self._hits += 1
        return entry.data

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        now = self._clock()
        if key not in self._entries:
            while len(self._entries) >= self.max_entries:
                self._evict_one(now)
        self._entries[key] = CacheEntry(
            data=value,
            timestamp=now,
            ttl=float(ttl) if ttl is not None else self.default_ttl_seconds,
            hits=0,
            size=_serialized_size(value),
        )

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._expired(entry, self._clock())

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def get_many(self, keys: list[str]) -> dict[str, Any | None]:
        return {key: self.get(key) for key in keys}

    def set_many(self, items: list[tuple[str, Any, float | None]]) -> None:
        for key, value, ttl in items:
            self.set(key, value, ttl)

    def keys(self) -> list[str]:
        return list(self._entries)

    def stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            total_entries=len(self._entries),
            total_size=sum(entry.size for entry in self._entries.values()),
            hit_rate=self._hits / total if total else 0.0,
            hits=self._hits,
            misses=self._misses,
        )

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    # --- search results ---

    def search_key(self, query: str, max_results: int | None = None) -> str:
        digest = sha256(query.lower().strip().encode("utf-8")).hexdigest()[:16]
        suffix = f":{max_results}" if max_results else ""
        return f"{self.key_prefix}{digest}{suffix}"

    def get_search_results(
        self, query: str, max_results: int | None = None
    ) -> list[SearchSource] | None:
        return self.get(self.search_key(query, max_results))

    def set_search_results(
        self, query: str, results: list[SearchSource], max_results: int | None = None
    ) -> None:
        self.set(self.search_key(query, max_results), list(results))

    def has_search_results(self, query: str, max_results: int | None = None) -> bool:
        return self.has(self.search_key(query, max_results))

    # --- background sweep ---

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self.sweep()
            if removed:
                logger.debug(f"Cache sweep removed {removed} expired entries")

    def start(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
