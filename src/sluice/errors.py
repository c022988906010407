"""
Error taxonomy for the data-access layer.

psycopg raises a deep hierarchy of errors keyed by SQLSTATE. Callers of
sluice only need to know which broad class a failure falls into, so every
psycopg error crossing the layer boundary is translated into one of the
classes below, with the original chained as ``__cause__``.
"""

import psycopg
from psycopg import errors as pg_errors


class DataAccessError(Exception):
    """Base class for everything raised by sluice."""


class StoreError(DataAccessError):
    """Connectivity, protocol or SQL failure talking to the store."""

    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.message = message
        self.sqlstate = sqlstate


class ConstraintError(StoreError):
    """A store-reported data or constraint violation (uniqueness, foreign key, check)."""


class StoreUnavailableError(StoreError):
    """A connection to the store could not be opened."""


class CancellationError(DataAccessError):
    """The caller asked for the in-flight operation to be aborted."""


class TransactionInProgressError(DataAccessError):
    """A transaction is already open for this database in the current context."""


class TransactionClosedError(DataAccessError):
    """A committed or rolled-back transaction was used again."""


def _message(exc: psycopg.Error) -> str:
    diag = getattr(exc, "diag", None)
    primary = getattr(diag, "message_primary", None) if diag is not None else None
    return primary or str(exc).strip() or type(exc).__name__


def translate_error(exc: psycopg.Error) -> DataAccessError:
    """
    Map a psycopg error onto the sluice taxonomy.

    Args:
        exc: The error raised by psycopg

    Returns:
        ConstraintError for integrity and data violations (SQLSTATE classes
        22 and 23), CancellationError for a cancelled query, StoreError for
        everything else
    """
    sqlstate = getattr(exc, "sqlstate", None)
    message = _message(exc)

    if isinstance(exc, pg_errors.QueryCanceled):
        return CancellationError(message)
    if isinstance(exc, (psycopg.IntegrityError, psycopg.DataError)):
        return ConstraintError(message, sqlstate)
    return StoreError(message, sqlstate)
