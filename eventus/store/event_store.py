"""Event store that keeps events, outbox entries and snapshots in one transaction."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from uuid import UUID

from eventus.aggregate import AggregateRoot
from eventus.events import (
    BaseEvent,
    ConcurrencyError,
    EventStore,
    StoredAggregate,
    create_event,
)
from eventus.store.database import Database
from eventus.store.outbox_store import SqlOutboxStore

logger = logging.getLogger(__name__)

_INSERT_EVENT = """
    INSERT INTO event_store (event_id, aggregate_id, aggregate_type, event_type, payload, version, ts)
    VALUES (?, ?, ?, ?, ?, ?, ?)
"""

_SELECT_EVENTS = """
    SELECT event_type, payload
    FROM event_store
    WHERE aggregate_id = ? AND version > ?
    ORDER BY version ASC
"""

_INSERT_SNAPSHOT = """
    INSERT INTO snapshots (aggregate_id, aggregate_type, aggregate_version, payload)
    VALUES (?, ?, ?, ?)
    ON CONFLICT (aggregate_id, aggregate_version) DO NOTHING
"""

_SELECT_SNAPSHOT = """
    SELECT aggregate_version, payload
    FROM snapshots
    WHERE aggregate_id = ?
    ORDER BY aggregate_version DESC
    LIMIT 1
"""


def _decode_event(event_type: str, payload: str) -> BaseEvent:
    template = create_event(event_type)
    return type(template).from_dict(json.loads(payload))


class SqlEventStore(EventStore):
    """Stores events and snapshots in the database and mirrors events to the outbox."""

    def __init__(self, db: Database, outbox: SqlOutboxStore, snapshot_frequency: int) -> None:
        self._db = db
        self._outbox = outbox
        self.snapshot_frequency = snapshot_frequency

    def save(self, aggregate: AggregateRoot) -> None:
        """Persist uncommitted events and, every snapshot_frequency versions, a snapshot.

        Must be called inside a transaction when there is anything to save.
        """
        events = aggregate.uncommitted_events
        if not events:
            return
        conn = self._db.current_transaction()
        self._insert_events(conn, events)
        self._outbox.save_events(events)

        if self._should_snapshot(aggregate):
            try:
                conn.execute(
                    _INSERT_SNAPSHOT,
                    (
                        str(aggregate.id),
                        aggregate.aggregate_type,
                        aggregate.version,
                        json.dumps(aggregate.to_snapshot()),
                    ),
                )
            except (sqlite3.Error, TypeError, ValueError) as exc:
                logger.error("Failed to save snapshot for aggregate %s: %s", aggregate.id, exc)
            else:
                logger.info(
                    "Snapshot saved successfully: aggregateID=%s version=%d",
                    aggregate.id,
                    aggregate.version,
                )

    @staticmethod
    def _insert_events(conn: sqlite3.Connection, events: Iterable[BaseEvent]) -> None:
        for event in events:
            row = (
                str(event.id),
                str(event.aggregate_id),
                event.aggregate_type,
                event.event_type,
                json.dumps(event.to_dict()),
                event.version,
                event.timestamp.isoformat(timespec="microseconds"),
            )
            try:
                conn.execute(_INSERT_EVENT, row)
            except sqlite3.IntegrityError as exc:
                if "UNIQUE" in str(exc):
                    raise ConcurrencyError(f"concurrency error: {exc}") from exc
                raise

    def _should_snapshot(self, aggregate: AggregateRoot) -> bool:
        if self.snapshot_frequency <= 0:
            return False
        return aggregate.version % self.snapshot_frequency == 0

    def load(self, aggregate_id: UUID) -> StoredAggregate:
        """Return the latest snapshot, its version and the events recorded after it."""
        key = str(aggregate_id)
        with self._db.transaction() as conn:
            row = conn.execute(_SELECT_SNAPSHOT, (key,)).fetchone()
            snapshot, version = (row[1], row[0]) if row is not None else (None, 0)
            rows = conn.execute(_SELECT_EVENTS, (key, version)).fetchall()
        history = [_decode_event(event_type, payload) for event_type, payload in rows]
        return StoredAggregate(snapshot, version, history)