"""
Commands and cancellation.

A Command is one parameterized statement plus everything needed to run
it: the parameters to bind, an optional transaction to join, and an
optional cancellation signal. Commands are built per call and discarded.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import psycopg

from sluice.errors import CancellationError

if TYPE_CHECKING:
    from sluice.transaction import Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Command:
    sql: str
    params: Any = None
    transaction: "Transaction | None" = None
    cancel: asyncio.Event | None = None


def check_cancelled(cancel: asyncio.Event | None, stage: str) -> None:
    if cancel is not None and cancel.is_set():
        raise CancellationError(f"Cancelled before {stage}")


async def run_cancellable(
    conn: psycopg.AsyncConnection,
    operation: Callable[[], Awaitable[T]],
    cancel: asyncio.Event | None,
) -> T:
    """
    Run an operation on a connection, aborting it if cancel is set first.

    On cancellation the server is asked to cancel the running statement,
    the operation is awaited until it unwinds, and CancellationError is
    raised in its place.
    """
    if cancel is None:
        return await operation()
    check_cancelled(cancel, "execution")

    op = asyncio.ensure_future(operation())
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({op, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not op.done() and not cancel.is_set():
            # The caller's task was cancelled while waiting
            op.cancel()

    if op.done() and not op.cancelled():
        return op.result()

    logger.debug("Cancelling in-flight statement")
    await conn.cancel_safe()
    try:
        await op
    except (psycopg.Error, asyncio.CancelledError) as exc:
        logger.debug("Cancelled statement unwound with %r", exc)
    raise CancellationError("Command was cancelled")
