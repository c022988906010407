"""
Outcome types returned by the data-access layer.
"""

from dataclasses import dataclass, field
from typing import Any


class _Absent:
    """Sentinel for "no row matched" and "unit of work did not complete"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"

    def __reduce__(self):
        return (_Absent, ())


ABSENT = _Absent()


@dataclass(frozen=True)
class TransactionResult:
    """
    Outcome of running a unit of work inside a transaction.

    Truthy when the transaction committed. A rolled-back result carries
    ``ABSENT`` as its value and keeps the exception that caused the
    rollback, so callers can tell why the work did not complete.
    """

    committed: bool
    value: Any = ABSENT
    error: BaseException | None = None

    def __bool__(self) -> bool:
        return self.committed


@dataclass
class BatchResult:
    """
    Aggregate report for one batch call.

    success_count + failure_count always equals the number of input items
    once the batch has finished. rows_affected is the sum of the counts
    reported by the store, which can differ from success_count for
    statements such as ``INSERT ... ON CONFLICT DO NOTHING``.
    """

    success_count: int = 0
    failure_count: int = 0
    errors: list[str] = field(default_factory=list)
    rows_affected: int = 0
    bulk_chunks: int = 0
    fallback_chunks: int = 0

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    @property
    def ok(self) -> bool:
        return self.failure_count == 0

    def to_dict(self) -> dict:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "errors": list(self.errors),
            "rows_affected": self.rows_affected,
            "bulk_chunks": self.bulk_chunks,
            "fallback_chunks": self.fallback_chunks,
        }
