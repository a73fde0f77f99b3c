"""Retry Policies with Backoff

Used at the HTTP boundary to re-run an operation that lost an optimistic
concurrency race or hit a transient store failure. Each attempt re-runs the
whole operation, so state is re-read before it is reapplied.
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Awaitable, Callable, Generic, TypeVar

from core.errors import AppError, ErrorCode, Err, Ok, Result
from core.logging import get_logger

T = TypeVar("T")

log = get_logger("resilience.retry")


class BackoffStrategy(Enum):
    CONSTANT = auto()
    EXPONENTIAL = auto()
    EXPONENTIAL_JITTER = auto()


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_seconds: float = 0.05
    max_delay_seconds: float = 1.0
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER
    jitter_factor: float = 0.5
    multiplier: float = 2.0
    retryable_codes: frozenset[ErrorCode] = field(
        default_factory=lambda: frozenset({
            ErrorCode.E4001_CONNECTION_FAILED,
            ErrorCode.E4003_TRANSACTION_FAILED,
            ErrorCode.E5002_STATE_CONFLICT,
        })
    )

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retrying after ``attempt`` (1-indexed)."""
        if self.strategy is BackoffStrategy.CONSTANT:
            return min(self.base_delay_seconds, self.max_delay_seconds)
        base = min(
            self.base_delay_seconds * (self.multiplier ** (attempt - 1)),
            self.max_delay_seconds,
        )
        if self.strategy is BackoffStrategy.EXPONENTIAL:
            return base
        jitter_range = base * self.jitter_factor
        return max(0.0, base + random.uniform(-jitter_range / 2, jitter_range / 2))


@dataclass
class RetryResult(Generic[T]):
    result: Result[T, AppError]
    attempts: int
    errors: list[AppError] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.result.is_ok()


class RetryPolicy(Generic[T]):
    """Re-run a Result-returning coroutine factory on retryable errors.

    Usage:
        policy = RetryPolicy(RetryConfig(max_attempts=3))
        outcome = await policy.execute(lambda: service.process_review(...))
        match outcome.result:
            case Ok(review):
                ...
            case Err(error):
                raise_error(error)
    """

    def __init__(self, config: RetryConfig | None = None):
        self.config = config or RetryConfig()

    def should_retry(self, error: AppError, attempt: int) -> bool:
        if attempt >= self.config.max_attempts:
            return False
        return error.code in self.config.retryable_codes

    async def execute(
        self,
        fn: Callable[[], Awaitable[Result[T, AppError]]],
    ) -> RetryResult[T]:
        errors: list[AppError] = []
        attempt = 0
        while True:
            attempt += 1
            result = await fn()
            match result:
                case Ok(_):
                    return RetryResult(result=result, attempts=attempt, errors=errors)
                case Err(error):
                    errors.append(error)
                    if not self.should_retry(error, attempt):
                        return RetryResult(result=result, attempts=attempt, errors=errors)
                    delay = self.config.delay_for(attempt)
                    log.info(
                        "retrying_operation",
                        attempt=attempt,
                        error_code=error.code.name,
                        delay_seconds=round(delay, 3),
                    )
                    await asyncio.sleep(delay)
