"""Error Builders

Constructors for the errors the scheduler surfaces. The names follow the
error taxonomy callers see:

- ``not_found``        NotFoundError: item/scope missing or owned elsewhere
- ``duplicate_key``    DuplicateError: source text already present in scope
- ``db_connection_failed`` / ``transaction_failed``  PersistenceError
- ``version_conflict`` ConflictError: a concurrent writer got there first
"""
from uuid import UUID

from .types import AppError, ErrorCode, ErrorContext, Err


# =============================================================================
# Validation Errors (E2xxx)
# =============================================================================

def validation_error(
    message: str,
    *,
    code: ErrorCode = ErrorCode.E2000_VALIDATION_GENERIC,
    field: str | None = None,
    value: str | None = None,
    origin: str = "",
    **metadata,
) -> Err[AppError]:
    meta = {"field": field, "value": value, **metadata}
    return Err(AppError(
        code=code,
        message=message,
        context=ErrorContext(origin=origin),
        metadata={k: v for k, v in meta.items() if v is not None},
    ))


def required_field(field: str, origin: str = "") -> Err[AppError]:
    return validation_error(
        f"Required field '{field}' is missing",
        code=ErrorCode.E2001_REQUIRED_FIELD_MISSING,
        field=field,
        origin=origin,
    )


def out_of_range(
    field: str,
    value: int | float,
    min_val: int | float | None = None,
    max_val: int | float | None = None,
    origin: str = "",
) -> Err[AppError]:
    bounds = []
    if min_val is not None:
        bounds.append(f">= {min_val}")
    if max_val is not None:
        bounds.append(f"<= {max_val}")
    return validation_error(
        f"Value {value} for '{field}' out of range ({', '.join(bounds)})",
        code=ErrorCode.E2003_OUT_OF_RANGE,
        field=field,
        value=str(value),
        min=min_val,
        max=max_val,
        origin=origin,
    )


# =============================================================================
# Record Store Errors (E4xxx)
# =============================================================================

def db_error(
    message: str,
    *,
    code: ErrorCode = ErrorCode.E4000_DATABASE_GENERIC,
    origin: str = "",
    cause: Exception | None = None,
    **metadata,
) -> Err[AppError]:
    return Err(AppError(
        code=code,
        message=message,
        context=ErrorContext(origin=origin),
        metadata={k: v for k, v in metadata.items() if v is not None},
        cause=cause,
    ))


def not_found(
    entity: str,
    id: str | UUID | None = None,
    origin: str = "",
) -> Err[AppError]:
    msg = f"{entity} not found"
    if id:
        msg += f": {id}"
    return db_error(
        msg,
        code=ErrorCode.E4010_NOT_FOUND,
        entity=entity,
        entity_id=str(id) if id else None,
        origin=origin,
    )


def duplicate_key(
    entity: str, field: str, value: str, origin: str = ""
) -> Err[AppError]:
    return db_error(
        f"{entity} with {field}='{value}' already exists",
        code=ErrorCode.E4011_DUPLICATE_KEY,
        entity=entity,
        field=field,
        value=value,
        origin=origin,
    )


def db_connection_failed(reason: str = "", origin: str = "", cause: Exception | None = None) -> Err[AppError]:
    msg = "Record store unavailable"
    if reason:
        msg += f": {reason}"
    return db_error(msg, code=ErrorCode.E4001_CONNECTION_FAILED, origin=origin, cause=cause)


def transaction_failed(reason: str = "", origin: str = "", cause: Exception | None = None) -> Err[AppError]:
    msg = "Record store write failed"
    if reason:
        msg += f": {reason}"
    return db_error(msg, code=ErrorCode.E4003_TRANSACTION_FAILED, origin=origin, cause=cause)


# =============================================================================
# Scheduling Rule Errors (E5xxx)
# =============================================================================

def version_conflict(
    entity: str,
    expected: int | str,
    actual: int | str | None,
    origin: str = "",
) -> Err[AppError]:
    """Optimistic write rejected; re-read and reapply to recover."""
    return Err(AppError(
        code=ErrorCode.E5002_STATE_CONFLICT,
        message=f"{entity} was modified concurrently (expected {expected}, found {actual})",
        context=ErrorContext(origin=origin),
        metadata={"entity": entity, "expected": str(expected), "actual": str(actual)},
    ))


def receipt_conflict(key: str, origin: str = "") -> Err[AppError]:
    """Another unit stored a receipt for the same key first; a retry replays it."""
    return Err(AppError(
        code=ErrorCode.E5002_STATE_CONFLICT,
        message=f"Idempotency key '{key}' was recorded concurrently",
        context=ErrorContext(origin=origin),
        metadata={"idempotency_key": key},
    ))


def idempotency_key_reused(key: str, origin: str = "") -> Err[AppError]:
    return Err(AppError(
        code=ErrorCode.E5003_IDEMPOTENCY_KEY_REUSED,
        message=f"Idempotency key '{key}' was already used for a different review",
        context=ErrorContext(origin=origin),
        metadata={"idempotency_key": key},
    ))


# =============================================================================
# Internal Errors (E9xxx)
# =============================================================================

def internal_error(
    message: str,
    *,
    origin: str = "",
    cause: Exception | None = None,
    **metadata,
) -> Err[AppError]:
    return Err(AppError(
        code=ErrorCode.E9001_UNEXPECTED_ERROR,
        message=message,
        context=ErrorContext(origin=origin),
        metadata=metadata,
        cause=cause,
    ))
