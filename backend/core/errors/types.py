"""Result Types for Scheduler Error Propagation

Operations return ``Ok(value)`` or ``Err(AppError)`` instead of raising, so a
multi-step review outcome can stop at the first failing step and hand the
error back unchanged to whoever decides to retry.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Generic, NoReturn, TypeVar, Union, final
from uuid import uuid4

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound="AppError")


class ErrorCode(Enum):
    """Hierarchical error code taxonomy.

    E2xxx: Validation errors
    E4xxx: Record store errors
    E5xxx: Scheduling / business rule errors
    E9xxx: Internal errors
    """
    # Validation (E2xxx)
    E2000_VALIDATION_GENERIC = 2000
    E2001_REQUIRED_FIELD_MISSING = 2001
    E2003_OUT_OF_RANGE = 2003

    # Record store (E4xxx)
    E4000_DATABASE_GENERIC = 4000
    E4001_CONNECTION_FAILED = 4001
    E4003_TRANSACTION_FAILED = 4003
    E4010_NOT_FOUND = 4010
    E4011_DUPLICATE_KEY = 4011
    E4013_CHECK_CONSTRAINT = 4013

    # Scheduling rules (E5xxx)
    E5000_BUSINESS_GENERIC = 5000
    E5002_STATE_CONFLICT = 5002
    E5003_IDEMPOTENCY_KEY_REUSED = 5003

    # Internal (E9xxx)
    E9000_INTERNAL_GENERIC = 9000
    E9001_UNEXPECTED_ERROR = 9001

    @property
    def http_status(self) -> int:
        code = self.value
        if 2000 <= code < 3000:
            return 400
        if code == 4010:
            return 404
        if 4011 <= code < 4020:
            return 409
        if 4000 <= code < 5000:
            return 503
        if 5000 <= code < 6000:
            return 409
        return 500

    @property
    def category(self) -> str:
        code = self.value
        if 2000 <= code < 3000:
            return "validation"
        if 4000 <= code < 5000:
            return "persistence"
        if 5000 <= code < 6000:
            return "business"
        return "internal"


@dataclass(frozen=True, slots=True)
class ErrorContext:
    correlation_id: str = field(default_factory=lambda: str(uuid4())[:8])
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    origin: str = ""
    scope_id: str | None = None
    request_id: str | None = None


@dataclass(frozen=True, slots=True)
class AppError:
    """Application error carrying a typed code, message and tracing context."""
    code: ErrorCode
    message: str
    context: ErrorContext = field(default_factory=ErrorContext)
    metadata: dict = field(default_factory=dict)
    cause: Exception | None = None

    def with_context(self, **kwargs) -> AppError:
        ctx = self.context
        return AppError(
            code=self.code,
            message=self.message,
            context=ErrorContext(
                correlation_id=kwargs.get("correlation_id") or ctx.correlation_id,
                timestamp=ctx.timestamp,
                origin=kwargs.get("origin", ctx.origin),
                scope_id=kwargs.get("scope_id", ctx.scope_id),
                request_id=kwargs.get("request_id", ctx.request_id),
            ),
            metadata=self.metadata,
            cause=self.cause,
        )

    def to_dict(self) -> dict:
        """Serialize error for API responses."""
        return {
            "error": {
                "code": self.code.name,
                "code_num": self.code.value,
                "message": self.message,
                "category": self.code.category,
                "correlation_id": self.context.correlation_id,
                "timestamp": self.context.timestamp.isoformat(),
                "metadata": self.metadata,
            }
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (correlation_id={self.context.correlation_id})"


@final
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U, AppError]:
        return Ok(f(self.value))


@final
@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        raise ValueError(f"Called unwrap on Err: {self.error}")

    def unwrap_err(self) -> E:
        return self.error

    def map(self, f: Callable[[T], U]) -> Result[U, E]:
        return self  # type: ignore


Result = Union[Ok[T], Err[E]]


def sequence_results(results: list[Result[T, AppError]]) -> Result[list[T], AppError]:
    """Sequence Results, failing fast on the first error."""
    values: list[T] = []
    for r in results:
        match r:
            case Ok(v):
                values.append(v)
            case Err(e):
                return Err(e)
    return Ok(values)


def ensure(condition: bool, error: Err[AppError]) -> Result[None, AppError]:
    return Ok(None) if condition else error
