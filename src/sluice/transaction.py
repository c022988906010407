"""
Transaction handles and the ambient transaction.

A Transaction wraps one open unit of work on one connection. While it is
open it is published as the *ambient* transaction of the Database that
opened it, so query helpers called through that Database join it without
the caller passing it around.

The ambient value lives in a ContextVar rather than on the Database:
each asyncio task works on its own copy of the context, so two tasks
sharing one Database never see each other's transactions.
"""

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

import psycopg

if TYPE_CHECKING:
    from sluice.db import Database

logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Transaction:
    """Handle on an open transaction. Terminal once committed or rolled back."""

    def __init__(self, database: "Database", connection: psycopg.AsyncConnection):
        self.database = database
        self.connection = connection
        self.state = TransactionState.ACTIVE

    @property
    def is_active(self) -> bool:
        """False once finished or once the underlying connection is unusable."""
        if self.state is not TransactionState.ACTIVE:
            return False
        conn = self.connection
        return not (getattr(conn, "closed", True) or getattr(conn, "broken", False))

    def finish(self, state: TransactionState) -> None:
        self.state = state

    def __repr__(self) -> str:
        return f"<Transaction {self.state.value} at {id(self):#x}>"


_EMPTY: Mapping = MappingProxyType({})

_ambient: ContextVar[Mapping] = ContextVar("sluice_ambient_transactions", default=_EMPTY)


def ambient_transaction(database: "Database") -> Transaction | None:
    """
    Get the open transaction published for database in the current context.

    A transaction that has finished, or whose connection has gone away,
    reads as no transaction at all.
    """
    tx = _ambient.get().get(database)
    if tx is None:
        return None
    if not tx.is_active:
        logger.debug("Ignoring stale ambient transaction %r", tx)
        return None
    return tx


@contextmanager
def publish(database: "Database", tx: Transaction) -> Iterator[Transaction]:
    """Make tx the ambient transaction for database until the block exits."""
    current = _ambient.get()
    token = _ambient.set(MappingProxyType({**current, database: tx}))
    try:
        yield tx
    finally:
        _ambient.reset(token)
