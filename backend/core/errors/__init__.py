"""Result-Based Error Handling

Usage:
    from core.errors import Ok, Err, Result, AppError, not_found

    async def get_item(scope_id, item_id) -> Result[LearnableItem, AppError]:
        item = items.get(item_id)
        if item is None or item.scope_id != scope_id:
            return not_found("LearnableItem", item_id, origin="store.memory")
        return Ok(item)

    match await store.get_item(scope_id, item_id):
        case Ok(item):
            ...
        case Err(error):
            log.warning("item_lookup_failed", code=error.code.name)
"""
from .types import (
    Result,
    Ok,
    Err,
    AppError,
    ErrorCode,
    ErrorContext,
    sequence_results,
    ensure,
)

from .builders import (
    validation_error,
    required_field,
    out_of_range,
    db_error,
    not_found,
    duplicate_key,
    db_connection_failed,
    transaction_failed,
    version_conflict,
    idempotency_key_reused,
    receipt_conflict,
    internal_error,
)

from .boundaries import (
    DatabaseErrorMapper,
    map_db_errors,
)

from .handlers import (
    AppErrorException,
    register_error_handlers,
    result_to_response,
    raise_error,
    raise_result,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "AppError",
    "ErrorCode",
    "ErrorContext",
    "sequence_results",
    "ensure",
    "validation_error",
    "required_field",
    "out_of_range",
    "db_error",
    "not_found",
    "duplicate_key",
    "db_connection_failed",
    "transaction_failed",
    "version_conflict",
    "idempotency_key_reused",
    "receipt_conflict",
    "internal_error",
    "DatabaseErrorMapper",
    "map_db_errors",
    "AppErrorException",
    "register_error_handlers",
    "result_to_response",
    "raise_error",
    "raise_result",
]
