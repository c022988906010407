"""
Database connection and query utilities.

Provides a Database object that issues parameterized commands with
psycopg, wraps units of work in transactions and runs resilient batch
writes. Every call opens its own connection unless it joins an open
transaction.

For testing, use set_connection_override() to inject a connection
that will be used instead of creating new ones. This enables
transaction rollback between tests.
"""

import decimal
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import psycopg
from psycopg.rows import dict_row

from sluice.batch import BatchExecutor
from sluice.command import Command, check_cancelled, run_cancellable
from sluice.config import config
from sluice.errors import (
    CancellationError,
    StoreUnavailableError,
    TransactionClosedError,
    TransactionInProgressError,
    translate_error,
)
from sluice.mapping import row_factory_for, to_params
from sluice.results import ABSENT, BatchResult, TransactionResult
from sluice.transaction import Transaction, TransactionState, ambient_transaction, publish

logger = logging.getLogger(__name__)

T = TypeVar("T")

# =============================================================================
# Connection Override (for testing)
# =============================================================================

_connection_override: psycopg.AsyncConnection | None = None


def set_connection_override(conn: psycopg.AsyncConnection) -> None:
    """
    Set a connection to use instead of creating new ones.

    Used by test fixtures to ensure all database operations run
    on a single connection. Transactions opened on it nest as savepoints
    when the connection is already inside a transaction.

    Args:
        conn: The connection to use for all subsequent operations
    """
    global _connection_override
    _connection_override = conn


def clear_connection_override() -> None:
    """Clear the connection override, restoring normal behavior."""
    global _connection_override
    _connection_override = None


# =============================================================================
# Connection Management
# =============================================================================


@asynccontextmanager
async def get_connection(
    database_url: str, cancel=None
) -> AsyncIterator[psycopg.AsyncConnection]:
    """
    Async context manager for database connections.

    In normal operation:
        - Opens a new connection
        - Commits on successful exit
        - Rolls back on exception
        - Closes connection when done

    With override set (testing):
        - Returns the override connection
        - Does NOT commit, rollback, or close
        - Caller (test fixture) manages the transaction

    Usage:
        async with get_connection(url) as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT ...")
    """
    if _connection_override is not None:
        yield _connection_override
        return

    check_cancelled(cancel, "connecting")
    try:
        conn = await psycopg.AsyncConnection.connect(database_url)
    except psycopg.Error as exc:
        raise StoreUnavailableError(str(exc).strip() or "connection failed") from exc
    logger.debug("Opened connection")

    try:
        yield conn
        await conn.commit()
    except BaseException:
        if not conn.closed:
            try:
                await conn.rollback()
            except psycopg.Error as exc:
                logger.debug("Rollback failed: %s", exc)
        raise
    finally:
        await conn.close()


# =============================================================================
# Database
# =============================================================================


class Database:
    """
    Data-access layer bound to one store.

    Query helpers taking raw SQL join the transaction opened by
    transaction() or run_in_transaction() in the current task, if any.
    Helpers taking a Command use exactly the transaction bound to it.

    Usage:
        db = Database("postgresql://localhost/app")

        rows = await db.query("SELECT * FROM users WHERE team = %(team)s", {"team": "ops"})
        user = await db.query_single("SELECT * FROM users WHERE id = %s", (42,), row_type=User)

        async def move_funds():
            await db.execute("UPDATE accounts SET balance = balance - 10 WHERE id = 1")
            await db.execute("UPDATE accounts SET balance = balance + 10 WHERE id = 2")

        result = await db.run_in_transaction(move_funds)
    """

    def __init__(self, database_url: str | None = None, batch_size: int | None = None):
        self.database_url = database_url or config.database_url
        self.batch_size = batch_size if batch_size is not None else config.batch_size
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

    def __repr__(self) -> str:
        return f"<Database at {id(self):#x}>"

    @property
    def current_transaction(self) -> Transaction | None:
        """The transaction open for this database in the current task, if any."""
        return ambient_transaction(self)

    def command(self, sql: str, params: Any = None, cancel=None) -> Command:
        """Build a Command bound to the current transaction."""
        return Command(sql, params, self.current_transaction, cancel)

    def _as_command(self, sql: str | Command, params: Any, cancel) -> Command:
        if isinstance(sql, Command):
            if params is not None or cancel is not None:
                raise TypeError("Pass params and cancel on the Command itself")
            return sql
        return self.command(sql, params, cancel)

    # -------------------------------------------------------------------------
    # Command execution
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _connection_for(self, command: Command) -> AsyncIterator[psycopg.AsyncConnection]:
        tx = command.transaction
        if tx is not None:
            if tx.database is not self:
                raise ValueError(f"{tx!r} belongs to a different Database")
            if not tx.is_active:
                raise TransactionClosedError(f"{tx!r} can no longer be used")
            yield tx.connection
            return

        async with get_connection(self.database_url, command.cancel) as conn:
            async with conn.transaction():
                yield conn

    async def _run(
        self,
        command: Command,
        operation: Callable[[psycopg.AsyncConnection], Awaitable[T]],
    ) -> T:
        try:
            async with self._connection_for(command) as conn:
                return await run_cancellable(conn, lambda: operation(conn), command.cancel)
        except psycopg.Error as exc:
            raise translate_error(exc) from exc

    async def query(
        self,
        sql: str | Command,
        params: Any = None,
        *,
        row_type: type | None = None,
        cancel=None,
    ) -> list:
        """
        Execute a query and return all rows.

        Args:
            sql: SQL with %s or %(name)s placeholders, or a Command
            params: Parameter values (mapping, sequence or row-shaped object)
            row_type: None for dicts, a scalar type for the first column,
                or a class to build from columns matched by name
            cancel: asyncio.Event that aborts the query when set

        Returns:
            List of mapped rows, empty list if no rows found
        """
        command = self._as_command(sql, params, cancel)

        async def fetch(conn):
            async with conn.cursor(row_factory=row_factory_for(row_type)) as cur:
                await cur.execute(command.sql, to_params(command.params))
                return await cur.fetchall()

        return await self._run(command, fetch)

    async def query_single(
        self,
        sql: str | Command,
        params: Any = None,
        *,
        row_type: type | None = None,
        default: Any = ABSENT,
        cancel=None,
    ) -> Any:
        """
        Execute a query and return the first row.

        If the query matches more than one row, the first is returned and
        the rest are discarded.

        Returns:
            The mapped row, or default (ABSENT unless given) if no row found
        """
        command = self._as_command(sql, params, cancel)

        async def fetch(conn):
            async with conn.cursor(row_factory=row_factory_for(row_type)) as cur:
                await cur.execute(command.sql, to_params(command.params))
                rows = await cur.fetchmany(1)
                if not rows:
                    return ABSENT
                if cur.rowcount > 1:
                    logger.debug("query_single matched %s rows, using the first", cur.rowcount)
                return rows[0]

        row = await self._run(command, fetch)
        return default if row is ABSENT else row

    async def execute(self, sql: str | Command, params: Any = None, *, cancel=None) -> int:
        """
        Execute a statement without returning rows.

        Use for INSERT, UPDATE, DELETE.

        Returns:
            Number of rows affected
        """
        command = self._as_command(sql, params, cancel)

        async def write(conn):
            async with conn.cursor() as cur:
                await cur.execute(command.sql, to_params(command.params))
                return max(cur.rowcount, 0)

        return await self._run(command, write)

    async def query_dataframe(self, sql: str | Command, params: Any = None, *, cancel=None):
        """
        Execute a query and return results as pandas DataFrame.

        Returns:
            pandas.DataFrame with query results
        """
        import pandas as pd

        command = self._as_command(sql, params, cancel)

        async def fetch(conn):
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(command.sql, to_params(command.params))
                rows = await cur.fetchall()
                columns = [desc.name for desc in cur.description] if cur.description else []
                return rows, columns

        rows, columns = await self._run(command, fetch)
        df = pd.DataFrame(rows, columns=columns)
        # Convert decimal.Decimal columns to float for numeric compatibility
        for col in df.columns:
            if not df.empty and df[col].apply(lambda x: isinstance(x, decimal.Decimal)).all():
                df[col] = df[col].astype(float)
        return df

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self, cancel=None) -> AsyncIterator[Transaction]:
        """
        Open a transaction and publish it as the current transaction.

        Commits when the block exits normally, rolls back and re-raises
        otherwise. Only one transaction per Database may be open in a task.

        Usage:
            async with db.transaction() as tx:
                await db.execute("INSERT ...")
                await db.execute(Command("UPDATE ...", params, transaction=tx))

        Raises:
            TransactionInProgressError: If a transaction is already open
        """
        if self.current_transaction is not None:
            raise TransactionInProgressError(
                "A transaction is already open for this database; nesting is not supported"
            )

        async with get_connection(self.database_url, cancel) as conn:
            tx = Transaction(self, conn)
            try:
                with publish(self, tx):
                    async with conn.transaction():
                        yield tx
            except psycopg.Error as exc:
                tx.finish(TransactionState.ROLLED_BACK)
                raise translate_error(exc) from exc
            except BaseException:
                tx.finish(TransactionState.ROLLED_BACK)
                raise
            tx.finish(TransactionState.COMMITTED)

    async def run_in_transaction(self, work: Callable[[], Awaitable[T]]) -> TransactionResult:
        """
        Run work inside a transaction.

        Query helpers called from work through this Database join the
        transaction automatically. If work raises, the transaction is rolled
        back and the error is returned in the result instead of raised.

        Args:
            work: Zero-argument coroutine function

        Returns:
            TransactionResult, truthy with work's return value on commit,
            falsy with value ABSENT and the error on rollback

        Raises:
            TransactionInProgressError: If a transaction is already open
            CancellationError: If work was cancelled
        """
        if self.current_transaction is not None:
            raise TransactionInProgressError(
                "A transaction is already open for this database; nesting is not supported"
            )

        started = False
        try:
            async with self.transaction():
                started = True
                value = await work()
        except (CancellationError, TransactionInProgressError):
            raise
        except Exception as exc:
            if not started:
                raise
            logger.info("Transaction rolled back: %s", exc)
            return TransactionResult(committed=False, error=exc)

        return TransactionResult(committed=True, value=value)

    async def try_in_transaction(self, work: Callable[[], Awaitable[Any]]) -> bool:
        """Run work inside a transaction. Returns True if it committed."""
        return bool(await self.run_in_transaction(work))

    # -------------------------------------------------------------------------
    # Batch Operations
    # -------------------------------------------------------------------------

    async def execute_batch(
        self,
        sql: str,
        items: Iterable[Any],
        shared_params: Any = None,
        *,
        chunk_size: int | None = None,
    ) -> BatchResult:
        """
        Execute a statement once per item, in chunks.

        Each chunk is written as one multi-row command in its own
        transaction. A chunk that fails with a store error is rolled back
        and its items are retried one at a time, so one bad row does not
        take down the rest.

        Args:
            sql: SQL with %(name)s placeholders filled from each item
            items: Row-shaped items or a pandas DataFrame
            shared_params: Parameters added to every item
            chunk_size: Items per chunk (defaults to the configured batch size)

        Returns:
            BatchResult with success/failure counts and per-item errors
        """
        executor = BatchExecutor(self, chunk_size if chunk_size is not None else self.batch_size)
        return await executor.run(sql, items, shared_params)
