"""Resilience Patterns

Bounded retries for operations that fail transiently or lose an
optimistic-concurrency race.
"""
from .retry import (
    BackoffStrategy,
    RetryConfig,
    RetryPolicy,
    RetryResult,
)

__all__ = [
    "BackoffStrategy",
    "RetryConfig",
    "RetryPolicy",
    "RetryResult",
]
