"""
In-memory stand-ins for psycopg async connections.

They record statements instead of talking to a server, so connection and
transaction handling can be tested without PostgreSQL. The conftest
fixtures patch psycopg.AsyncConnection.connect to hand these out.
"""

import asyncio

import psycopg
from psycopg import errors as pg_errors


class FakeCursor:
    """Records statements on its connection instead of talking to a server."""

    def __init__(self, conn: "FakeConnection", row_factory=None):
        self.conn = conn
        self.row_factory = row_factory
        self.rowcount = -1
        self.description = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, sql, params=None):
        self.conn.statements.append((sql, params))
        if self.conn.hold is not None:
            await self.conn.hold.wait()
            if self.conn.cancelled:
                raise pg_errors.QueryCanceled("canceling statement due to user request")
        if self.conn.fail_with is not None:
            raise self.conn.fail_with
        self.rowcount = 1

    async def executemany(self, sql, params_seq):
        params_seq = list(params_seq)
        self.conn.statements.append((sql, params_seq))
        if self.conn.fail_with is not None:
            raise self.conn.fail_with
        self.rowcount = len(params_seq)

    async def fetchall(self):
        return list(self.conn.rows)

    async def fetchmany(self, size=1):
        return list(self.conn.rows[:size])


class FakeTransactionBlock:
    """Mimics psycopg's transaction block: commit on success, rollback on error."""

    def __init__(self, conn: "FakeConnection"):
        self.conn = conn

    async def __aenter__(self):
        self.conn.depth += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.conn.depth -= 1
        if exc_type is None:
            self.conn.commits += 1
            return False
        self.conn.rollbacks += 1
        return isinstance(exc, psycopg.Rollback)


class FakeConnection:
    def __init__(self):
        self.closed = False
        self.broken = False
        self.statements = []
        self.rows = []
        self.commits = 0
        self.rollbacks = 0
        self.depth = 0
        self.fail_with: Exception | None = None
        self.rollback_fails_with: Exception | None = None
        self.hold: asyncio.Event | None = None
        self.cancelled = False

    def cursor(self, row_factory=None):
        return FakeCursor(self, row_factory)

    def transaction(self):
        return FakeTransactionBlock(self)

    async def commit(self):
        pass

    async def rollback(self):
        if self.rollback_fails_with is not None:
            raise self.rollback_fails_with

    async def close(self):
        self.closed = True

    async def cancel_safe(self):
        self.cancelled = True
        if self.hold is not None:
            self.hold.set()
