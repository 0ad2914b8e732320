"""SQLite database with per-thread transactions that stores can join."""

from __future__ import annotations

import os
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from eventus.projection import Transactor

T = TypeVar("T")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS event_store (
        event_id TEXT PRIMARY KEY,
        aggregate_id TEXT NOT NULL,
        aggregate_type TEXT NOT NULL,
        event_type TEXT NOT NULL,
        payload TEXT NOT NULL,
        version INTEGER NOT NULL,
        ts TEXT NOT NULL,
        UNIQUE (aggregate_id, version)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS outbox (
        event_id TEXT PRIMARY KEY,
        aggregate_id TEXT NOT NULL,
        aggregate_type TEXT NOT NULL,
        event_type TEXT NOT NULL,
        payload TEXT NOT NULL,
        version INTEGER NOT NULL,
        ts TEXT NOT NULL,
        published INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS outbox_unpublished ON outbox (published, ts)",
    """
    CREATE TABLE IF NOT EXISTS snapshots (
        aggregate_id TEXT NOT NULL,
        aggregate_type TEXT NOT NULL,
        aggregate_version INTEGER NOT NULL,
        payload TEXT NOT NULL,
        PRIMARY KEY (aggregate_id, aggregate_version)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS processed_events (
        event_id TEXT NOT NULL,
        subscriber_id TEXT NOT NULL,
        PRIMARY KEY (event_id, subscriber_id)
    )
    """,
)


class TransactionRequiredError(RuntimeError):
    """Raised when an operation that must run in a transaction runs outside one."""


class Database(Transactor):
    """A shared SQLite connection whose transactions are serialised across threads.

    A transaction belongs to the thread that opened it; a transaction opened
    while one is already active in the same thread joins the outer one.
    """

    def __init__(self, path: str | os.PathLike[str] = ":memory:", timeout: float = 5.0) -> None:
        self._conn = sqlite3.connect(
            path, timeout=timeout, check_same_thread=False, isolation_level=None
        )
        self._lock = threading.RLock()
        self._local = threading.local()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _in_transaction(self) -> bool:
        return getattr(self._local, "active", False)

    def create_schema(self) -> None:
        """Create the event store, outbox, snapshot and idempotency tables."""
        with self.transaction() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a transaction, or join the one this thread already has.

        The transaction commits when the block ends normally and rolls back
        when it raises.
        """
        with self._lock:
            if self._in_transaction():
                yield self._conn
                return
            self._conn.execute("BEGIN IMMEDIATE")
            self._local.active = True
            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except BaseException:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise
            finally:
                self._local.active = False

    def with_transaction(self, fn: Callable[[], T]) -> T:
        """Run fn in a transaction and return its result."""
        with self.transaction():
            return fn()

    def current_transaction(self) -> sqlite3.Connection:
        """Return the connection of this thread's active transaction."""
        if not self._in_transaction():
            raise TransactionRequiredError("operation must be called within a transaction")
        return self._conn

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()