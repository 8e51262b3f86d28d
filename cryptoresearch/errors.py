"""Error taxonomy shared by the search, pipeline and report layers."""
from __future__ import annotations

from typing import Any


class ResearchError(Exception):
    """Base class for every error raised by the research core."""


class BudgetExceeded(ResearchError):
    def __init__(self, daily_cost: float, limit: float):
        super().__init__(
            f"Daily cost limit exceeded: spent ${daily_cost:.4f} of ${limit:.2f}"
        )
        self.daily_cost = daily_cost
        self.limit = limit


class RateLimited(ResearchError):
    def __init__(self, retry_after: int, remaining: int = 0):
        super().__init__(f"Rate limit exceeded. Retry after {retry_after} seconds")
        self.retry_after = retry_after
        self.remaining = remaining


class CircuitOpen(ResearchError):
    def __init__(self, message: str = "Circuit breaker is OPEN - service unavailable"):
        super().__init__(message)


class OperationTimeout(ResearchError, TimeoutError):
    def __init__(self, timeout_seconds: float):
        super().__init__(f"Operation timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class RetryExhausted(ResearchError):
    """Raised once a retried operation gives up.

    Carries every captured error so callers can inspect the failure history
    and back off accordingly.
    """

    def __init__(self, attempts: int, errors: list[BaseException], total_duration_ms: int):
        last = errors[-1] if errors else None
        detail = f": {last}" if last is not None else ""
        super().__init__(f"Operation failed after {attempts} attempts{detail}")
        self.attempts = attempts
        self.errors = errors
        self.total_duration_ms = total_duration_ms

    @property
    def last_error(self) -> BaseException | None:
        return self.errors[-1] if self.errors else None


class StageFailed(ResearchError):
    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Stage {stage} failed: {cause}")
        self.stage = stage
        self.cause = cause


class QualityInsufficient(ResearchError):
    """Advisory: a generated report missed its quality thresholds."""

    def __init__(self, issues: list[str], score: int, retries: int = 0):
        super().__init__(
            f"Report quality insufficient after {retries} retries "
            f"(score: {score}): {'; '.join(issues)}"
        )
        self.issues = issues
        self.score = score
        self.retries = retries


class SearchProviderError(ResearchError):
    def __init__(self, provider: str, status_code: int | None, message: str = ""):
        status = f" ({status_code})" if status_code is not None else ""
        super().__init__(f"{provider} API error{status}: {message}".rstrip(": "))
        self.provider = provider
        self.status_code = status_code


class BatchTooLarge(ResearchError, ValueError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"Batch size {size} exceeds limit of {limit}")
        self.size = size
        self.limit = limit


def describe_error(error: BaseException) -> dict[str, Any]:
    """Flatten an error into a JSON-friendly payload for API responses and logs."""
    payload: dict[str, Any] = {"type": type(error).__name__, "message": str(error)}
    for attr in ("retry_after", "attempts", "total_duration_ms", "stage", "status_code"):
        value = getattr(error, attr, None)
        if value is not None:
            payload[attr] = value
    if isinstance(error, RetryExhausted):
        payload["errors"] = [str(e) for e in error.errors[-3:]]
    return payload
