"""Per-identifier request limits on calendar minute/hour buckets plus burst tokens.

Buckets are aligned to UTC calendar minutes and hours rather than a true
rolling window, so a burst straddling a boundary can briefly exceed the
configured rate.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable


@dataclass(slots=True)
class RequestRecord:
    timestamp: float
    count: int


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float
    retry_after: int | None = None


class RateLimiter:
    def __init__(
        self,
        requests_per_minute: int,
        requests_per_hour: int,
        burst_allowance: int,
        retention_seconds: int = 7200,
        clock: Callable[[], float] = time.time,
    ):
        self.requests_per_minute = int(requests_per_minute)
        self.requests_per_hour = int(requests_per_hour)
        self.burst_allowance = max(int(burst_allowance), 0)
        self.retention_seconds = int(retention_seconds)
        self._clock = clock
        self._records: dict[str, list[RequestRecord]] = {}
        # identifier -> (tokens, minute index of last refill)
        self._burst: dict[str, tuple[int, int]] = {}

    def _bucket_key(self, identifier: str, window: str, now: float) -> str:
        stamp = datetime.fromtimestamp(now, tz=timezone.utc)
        fmt = "%Y-%m-%dT%H:%M" if window == "minute" else "%Y-%m-%dT%H"
        return f"{identifier}:{window}:{stamp.strftime(fmt)}"

    def _count(self, identifier: str, window: str, now: float) -> int:
        records = self._records.get(self._bucket_key(identifier, window, now), [])
        return sum(record.count for record in records)

    def _burst_tokens(self, identifier: str, now: float) -> int:
        minute = int(now // 60)
        tokens, last_refill = self._burst.get(identifier, (self.burst_allowance, minute))
        if minute > last_refill:
            tokens = min(self.burst_allowance, tokens + (minute - last_refill))
        self._burst[identifier] = (tokens, minute)
        return tokens

    def check_and_consume(self, identifier: str, cost: int = 1) -> RateLimitResult:
        now = self._clock()
        minute_count = self._count(identifier, "minute", now)
        hour_count = self._count(identifier, "hour", now)

        allowed = True
        retry_after: int | None = None
        use_burst = False

        if minute_count + cost > self.requests_per_minute:
            if self._burst_tokens(identifier, now) > 0:
                use_burst = True
            else:
                allowed = False
                retry_after = 60

        if hour_count + cost > self.requests_per_hour:
            allowed = False
            use_burst = False
            retry_after = 3600

        remaining = min(
            max(0, self.requests_per_minute - minute_count),
            max(0, self.requests_per_hour - hour_count),
        )

        if allowed:
            if use_burst:
                tokens, refill = self._burst[identifier]
                self._burst[identifier] = (tokens - 1, refill)
            self._add(identifier, cost, now)

        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, remaining - (cost if allowed else 0)),
            reset_time=(int(now // 60) + 1) * 60.0,
            retry_after=retry_after,
        )

    def _add(self, identifier: str, count: int, now: float) -> None:
        record = RequestRecord(timestamp=now, count=count)
        for window in ("minute", "hour"):
            self._records.setdefault(self._bucket_key(identifier, window, now), []).append(record)
        self._sweep(now)

    def _sweep(self, now: float) -> None:
        cutoff = now - self.retention_seconds
        for key in list(self._records):
            kept = [record for record in self._records[key] if record.timestamp > cutoff]
            if kept:
                self._records[key] = kept
            else:
                del self._records[key]

    def remaining(self, identifier: str) -> int:
        now = self._clock()
        return min(
            max(0, self.requests_per_minute - self._count(identifier, "minute", now)),
            max(0, self.requests_per_hour - self._count(identifier, "hour", now)),
        )

    def usage(self, identifier: str) -> dict[str, int]:
        now = self._clock()
        return {
            "minute": self._count(identifier, "minute", now),
            "hour": self._count(identifier, "hour", now),
            "burst_tokens": self._burst_tokens(identifier, now),
        }

    def reset(self, identifier: str | None = None) -> None:
        if identifier is None:
            self._records.clear()
            self._burst.clear()
            return
        prefix = f"{identifier}:"
        for key in [k for k in self._records if k.startswith(prefix)]:
            del self._records[key]
        self._burst.pop(identifier, None)
