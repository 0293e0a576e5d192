"""
Error taxonomy for the persistence core.

Callers only ever need to recognize these classes; driver-specific psycopg
exceptions are translated at the point where a statement is executed.

- NotFound             -> absence (HTTP 404 at the edge)
- ConstraintViolation  -> unique / foreign-key failure (HTTP 400)
- ValidationError      -> malformed input, rejected before reaching the database (HTTP 400)
- StorageUnavailable   -> pool exhaustion, connectivity, driver failure (HTTP 500)
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import psycopg
import psycopg.errors


class PersistenceError(Exception):
    """Base class for every error raised by the persistence core."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}
        # Name of the aggregate write step that failed, when known.
        self.step: Optional[str] = None


class NotFound(PersistenceError):
    """The requested id or filter matched no row."""


class ConstraintViolation(PersistenceError):
    """A uniqueness or foreign-key constraint rejected the write."""

    def __init__(
        self,
        message: str,
        constraint: Optional[str] = None,
        table: Optional[str] = None,
        sqlstate: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = {"constraint": constraint, "table": table, "sqlstate": sqlstate}
        merged.update(details or {})
        super().__init__(message, merged)
        self.constraint = constraint
        self.table = table
        self.sqlstate = sqlstate


class ValidationError(PersistenceError):
    """Input rejected before any statement was sent."""


class StorageUnavailable(PersistenceError):
    """The database could not serve the request."""


class OperationTimeout(StorageUnavailable):
    """An operation or transaction ran past its deadline."""


class TransactionClosed(PersistenceError):
    """A transaction handle was used after commit or rollback released it."""


def translate_driver_error(
    exc: BaseException,
    *,
    table: Optional[str] = None,
    sql: Optional[str] = None,
) -> PersistenceError:
    """
    Map a psycopg exception onto the persistence taxonomy.

    Parameters
    ----------
    exc : BaseException
        The exception raised by psycopg or psycopg_pool.
    table : str, optional
        Table the failing statement targeted, for error details.
    sql : str, optional
        Statement text, truncated into the error details.

    Returns
    -------
    PersistenceError
        The translated error; callers raise it ``from exc``.
    """
    if isinstance(exc, PersistenceError):
        return exc

    details: Dict[str, Any] = {"table": table}
    if sql:
        details["sql"] = sql[:500]

    if isinstance(exc, psycopg.IntegrityError):
        diag = exc.diag
        return ConstraintViolation(
            diag.message_primary or str(exc),
            constraint=diag.constraint_name,
            table=diag.table_name or table,
            sqlstate=exc.sqlstate,
            details={"detail": diag.message_detail},
        )
    if isinstance(exc, psycopg.DataError):
        return ValidationError(str(exc), details)
    if isinstance(exc, psycopg.errors.QueryCanceled):
        return OperationTimeout(f"Statement cancelled: {exc}", details)
    return StorageUnavailable(f"Database unavailable: {exc}", details)


__all__ = [
    "PersistenceError",
    "NotFound",
    "ConstraintViolation",
    "ValidationError",
    "StorageUnavailable",
    "OperationTimeout",
    "TransactionClosed",
    "translate_driver_error",
]
