"""
Chunked batch writes with per-item fallback.

The executor tries the optimistic path first: every chunk of items is
written as a single multi-row command inside its own transaction. When a
chunk fails with an error is_recoverable() accepts, the chunk is rolled
back and the pessimistic path takes over for that chunk only: each item
is written on its own, so valid rows land and each invalid row is
reported with the reason it failed.
"""

import json
import logging
from collections.abc import Iterable, Iterator
from itertools import islice
from typing import TYPE_CHECKING, Any

import psycopg

from sluice.command import Command
from sluice.errors import StoreError, StoreUnavailableError, translate_error
from sluice.mapping import merge_params
from sluice.results import BatchResult

if TYPE_CHECKING:
    from sluice.db import Database

logger = logging.getLogger(__name__)


def iter_items(items: Any) -> Iterable[Any]:
    """Rows of a pandas DataFrame as dicts (NaN -> None), anything else unchanged."""
    if items is None:
        return ()
    if hasattr(items, "to_dict") and hasattr(items, "columns"):
        frame = items.astype(object).where(items.notna(), None)
        return frame.to_dict("records")
    return items


def chunked(items: Iterable[Any], size: int) -> Iterator[list[Any]]:
    iterator = iter(items)
    while chunk := list(islice(iterator, size)):
        yield chunk


def describe(params: Any) -> str:
    """Render an item's parameters for error reports."""
    try:
        return json.dumps(params, default=str)
    except (TypeError, ValueError):
        return repr(params)


class BatchExecutor:
    """
    Writes items in chunks, degrading to per-item writes on failure.

    Args:
        database: The Database whose connections and execute() are used
        chunk_size: Number of items per multi-row command
    """

    def __init__(self, database: "Database", chunk_size: int = 200):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.database = database
        self.chunk_size = chunk_size

    def is_recoverable(self, error: BaseException) -> bool:
        """
        Decide whether a failed chunk should be retried item by item.

        Store errors raised by a statement (constraint violations included)
        are recoverable. An unreachable store, cancellation, logic errors and
        anything else are not.
        """
        return isinstance(error, StoreError) and not isinstance(error, StoreUnavailableError)

    async def run(self, sql: str, items: Any, shared_params: Any = None) -> BatchResult:
        result = BatchResult()

        for index, chunk in enumerate(chunked(iter_items(items), self.chunk_size)):
            params_list = [merge_params(item, shared_params) for item in chunk]

            try:
                affected = await self.execute_bulk(sql, params_list)
            except Exception as exc:
                if not self.is_recoverable(exc):
                    raise
                logger.warning(
                    "Batch chunk %d (%d items) failed, retrying items individually: %s",
                    index,
                    len(chunk),
                    exc,
                )
                await self.execute_each(sql, params_list, result)
                result.fallback_chunks += 1
                continue

            result.success_count += len(chunk)
            result.rows_affected += affected
            result.bulk_chunks += 1

        if result.total:
            logger.info(
                "Batch finished: %d succeeded, %d failed in %d chunks",
                result.success_count,
                result.failure_count,
                result.bulk_chunks + result.fallback_chunks,
            )
        return result

    async def execute_bulk(self, sql: str, params_list: list[Any]) -> int:
        """
        Write one chunk as a single multi-row command in its own transaction.

        Returns:
            Number of rows affected as reported by the store
        """
        from sluice.db import get_connection

        async with get_connection(self.database.database_url) as conn:
            try:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        await cur.executemany(sql, params_list)
                        return max(cur.rowcount, 0)
            except psycopg.Error as exc:
                raise translate_error(exc) from exc

    async def execute_each(self, sql: str, params_list: list[Any], result: BatchResult) -> None:
        """Write items one at a time, each in its own transaction, recording the outcome."""
        for params in params_list:
            try:
                affected = await self.database.execute(Command(sql, params))
            except StoreError as exc:
                if not self.is_recoverable(exc):
                    raise
                result.failure_count += 1
                item = describe(params)
                result.errors.append(f"error executing for {item}: {exc.message}")
                logger.error("Execute error: %s for %s", exc.message, item)
                continue

            result.success_count += 1
            result.rows_affected += affected
