"""
sluice

Data-access core for PostgreSQL: parameterized queries, transactions and
chunked batch writes with per-item fallback.
"""

from sluice.batch import BatchExecutor
from sluice.command import Command
from sluice.db import Database
from sluice.errors import (
    CancellationError,
    ConstraintError,
    DataAccessError,
    StoreError,
    StoreUnavailableError,
    TransactionClosedError,
    TransactionInProgressError,
)
from sluice.results import ABSENT, BatchResult, TransactionResult
from sluice.transaction import Transaction

__all__ = [
    "ABSENT",
    "BatchExecutor",
    "BatchResult",
    "CancellationError",
    "Command",
    "ConstraintError",
    "DataAccessError",
    "Database",
    "StoreError",
    "StoreUnavailableError",
    "Transaction",
    "TransactionClosedError",
    "TransactionInProgressError",
    "TransactionResult",
]
