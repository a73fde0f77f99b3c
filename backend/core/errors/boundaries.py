"""Record Store Error Boundary

SQLAlchemy exceptions never leak past the storage layer: they are mapped
here to AppErrors so the scheduler only ever sees Result values.
"""
from __future__ import annotations

import functools
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
)

from .types import AppError, ErrorCode, ErrorContext, Err, Ok, Result
from .builders import (
    db_connection_failed,
    duplicate_key,
    internal_error,
    transaction_failed,
)

T = TypeVar("T")


class DatabaseErrorMapper:
    """Maps SQLAlchemy exceptions to persistence AppErrors."""

    def __init__(self, origin: str = "database"):
        self.origin = origin

    def map_error(self, error: AppError) -> AppError:
        if not error.context.origin:
            return error.with_context(origin=self.origin)
        return error

    def map_result(self, result: Result[T, AppError]) -> Result[T, AppError]:
        match result:
            case Ok(_):
                return result
            case Err(e):
                return Err(self.map_error(e))

    def map_exception(self, exc: Exception) -> AppError:
        if isinstance(exc, IntegrityError):
            return self._map_integrity_error(exc)
        if isinstance(exc, OperationalError):
            return self._map_operational_error(exc)
        if isinstance(exc, (DBAPIError, SQLAlchemyError)):
            return transaction_failed(str(exc), origin=self.origin, cause=exc).error
        return internal_error(
            f"Record store error: {exc}",
            origin=self.origin,
            cause=exc,
        ).error

    def _map_integrity_error(self, exc: IntegrityError) -> AppError:
        message = str(exc.orig) if exc.orig else str(exc)
        lowered = message.lower()
        if "duplicate key" in lowered or "unique constraint" in lowered:
            return duplicate_key(
                entity="record",
                field="unknown",
                value="unknown",
                origin=self.origin,
            ).error
        return AppError(
            code=ErrorCode.E4013_CHECK_CONSTRAINT,
            message=f"Constraint violation: {message}",
            context=ErrorContext(origin=self.origin),
            cause=exc,
        )

    def _map_operational_error(self, exc: OperationalError) -> AppError:
        message = str(exc.orig) if exc.orig else str(exc)
        if "connect" in message.lower():
            return db_connection_failed(message, origin=self.origin, cause=exc).error
        return transaction_failed(message, origin=self.origin, cause=exc).error


def map_db_errors(origin: str = "database"):
    """Decorator turning raised SQLAlchemy errors into ``Err`` values.

    Usage:
        @map_db_errors("store.items")
        async def get_item(self, scope_id, item_id) -> Result[LearnableItem, AppError]:
            ...
    """
    mapper = DatabaseErrorMapper(origin)

    def decorator(fn: Callable[..., Awaitable[Result[T, AppError]]]):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs) -> Result[T, AppError]:
            try:
                return mapper.map_result(await fn(*args, **kwargs))
            except SQLAlchemyError as e:
                return Err(mapper.map_exception(e))
        return wrapper
    return decorator
