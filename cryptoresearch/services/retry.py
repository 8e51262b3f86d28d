"""Retry, timeout and circuit-breaker primitives for external calls."""
from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

import httpx
from loguru import logger

from cryptoresearch.errors import CircuitOpen, OperationTimeout, RetryExhausted

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)

RETRYABLE_MESSAGE_PATTERNS = (
    "rate limit",
    "too many requests",
    "service unavailable",
    "temporarily unavailable",
)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    exponential_backoff: bool = True
    retryable_status_codes: tuple[int, ...] = DEFAULT_RETRYABLE_STATUS_CODES

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_retries=max(int(settings.retry_max_retries), 0),
            base_delay_ms=max(int(settings.retry_base_delay_ms), 0),
            max_delay_ms=max(int(settings.retry_max_delay_ms), 0),
            exponential_backoff=bool(settings.retry_exponential_backoff),
            retryable_status_codes=tuple(settings.retryable_status_codes),
        )

    def delay_ms(self, attempt: int, jitter: float = 0.0) -> float:
        """Backoff before the next attempt; `jitter` is a fraction in [0, 1)."""
        delay = float(self.base_delay_ms)
        if self.exponential_backoff:
            delay = min(self.base_delay_ms * 2 ** (attempt - 1), self.max_delay_ms)
        return delay + jitter * 0.1 * delay


@dataclass(slots=True)
class RetryResult(Generic[T]):
    result: T
    attempts: int
    total_duration_ms: int
    errors: list[BaseException] = field(default_factory=list)


def _status_code(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_retryable_error(
    error: BaseException,
    retryable_status_codes: Iterable[int] = DEFAULT_RETRYABLE_STATUS_CODES,
) -> bool:
    """Classify transport failures, retryable HTTP statuses and throttling messages."""
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, OperationTimeout)):
        return True

    status = _status_code(error)
    if status is not None and status in set(retryable_status_codes):
        return True

    message = str(error).lower()
    return any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[BaseException], bool] | None = None,
    on_retry: Callable[[int, BaseException], None] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> RetryResult[T]:
    """Run `operation` until it succeeds, the error is not retryable, or retries run out."""
    policy = policy or RetryPolicy()
    started = time.monotonic()
    errors: list[BaseException] = []
    attempts = 0

    while attempts <= policy.max_retries:
        attempts += 1
        try:
            result = await operation()
            return RetryResult(
                result=result,
                attempts=attempts,
                total_duration_ms=int((time.monotonic() - started) * 1000),
                errors=errors,
            )
        except Exception as e:
            errors.append(e)
            accepts = retryable(e) if retryable else is_retryable_error(
                e, policy.retryable_status_codes
            )
            if attempts > policy.max_retries or not accepts:
                raise RetryExhausted(
                    attempts, errors, int((time.monotonic() - started) * 1000)
                ) from e

            delay_ms = policy.delay_ms(attempts, jitter=rng())
            if on_retry:
                on_retry(attempts, e)
            logger.warning(f"Attempt {attempts} failed, retrying in {delay_ms:.0f}ms: {e}")
            await sleep(delay_ms / 1000)

    raise RetryExhausted(attempts, errors, int((time.monotonic() - started) * 1000))


async def with_timeout(awaitable: Awaitable[T], timeout_seconds: float) -> T:
    """Bound an awaitable; the awaited task is cancelled when the timer wins."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise OperationTimeout(timeout_seconds) from e


async def batch_retry(
    operations: list[Callable[[], Awaitable[T]]],
    **kwargs: Any,
) -> list[RetryResult[T] | BaseException]:
    """Retry several independent operations concurrently; failures are returned, not raised."""
    return await asyncio.gather(
        *(with_retry(op, **kwargs) for op in operations),
        return_exceptions=True,
    )


class CircuitState(StrEnum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Three-state breaker: trips after consecutive failures, probes after recovery time."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_seconds: float = 60.0,
        success_threshold: int = 1,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = max(int(failure_threshold), 1)
        self.recovery_seconds = float(recovery_seconds)
        self.success_threshold = max(int(success_threshold), 1)
        self.name = name
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._half_open_successes = 0
        self._last_failure_time: float | None = None

    @property
    def state(self) -> CircuitState:
        return self._state

    def _transition(self, state: CircuitState) -> None:
        if state != self._state:
            logger.info(f"Circuit breaker '{self.name}' transitioning to {state} state")
        self._state = state

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - (self._last_failure_time or 0.0)
            if elapsed >= self.recovery_seconds:
                self._half_open_successes = 0
                self._transition(CircuitState.HALF_OPEN)
            else:
                raise CircuitOpen()

        try:
            result = await operation()
        except Exception:
            self._record_failure()
            raise

        self._record_success()
        return result

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._half_open_successes += 1
            if self._half_open_successes >= self.success_threshold:
                self._failures = 0
                self._transition(CircuitState.CLOSED)
            return
        self._failures = 0

    def _record_failure(self) -> None:
        self._failures += 1
        self._last_failure_time = self._clock()
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "failures": self._failures,
            "last_failure_time": self._last_failure_time,
        }

    def reset(self) -> None:
        self._failures = 0
        self._half_open_successes = 0
        self._last_failure_time = None
        self._state = CircuitState.CLOSED
