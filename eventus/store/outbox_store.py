"""Outbox table storage with transactional batch processing."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from eventus.events import BaseEvent, OutboxEvent
from eventus.relay import BatchProcessor, OutboxStore
from eventus.store.database import Database

_INSERT = """
    INSERT INTO outbox (event_id, aggregate_id, aggregate_type, event_type, payload, version, ts)
    VALUES (?, ?, ?, ?, ?, ?, ?)
"""

_FETCH = """
    SELECT event_id, aggregate_id, aggregate_type, event_type, payload, version, ts
    FROM outbox
    WHERE published = 0
    ORDER BY ts, rowid
    LIMIT ?
"""


def _values(record: OutboxEvent) -> tuple:
    return (
        str(record.event_id),
        str(record.aggregate_id),
        record.aggregate_type,
        record.event_type,
        record.payload,
        record.version,
        record.ts.isoformat(timespec="microseconds"),
    )


def _to_record(row: sqlite3.Row | tuple) -> OutboxEvent:
    event_id, aggregate_id, aggregate_type, event_type, payload, version, ts = row
    return OutboxEvent(
        event_id=UUID(event_id),
        aggregate_id=UUID(aggregate_id),
        aggregate_type=aggregate_type,
        event_type=event_type,
        payload=payload,
        version=version,
        ts=datetime.fromisoformat(ts),
    )


class SqlOutboxStore(OutboxStore):
    """Outbox stored in the database's outbox table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def process_outbox_batch(self, batch_size: int, process: BatchProcessor) -> None:
        """Fetch unpublished events oldest first, process them and mark them published.

        Everything happens in one transaction; if process raises, the batch
        stays unpublished and the exception propagates.
        """
        with self._db.transaction() as conn:
            events = [_to_record(row) for row in conn.execute(_FETCH, (batch_size,))]
            if not events:
                return
            process(events)
            self._mark_published(conn, events)

    @staticmethod
    def _mark_published(conn: sqlite3.Connection, events: list[OutboxEvent]) -> None:
        ids = [str(event.event_id) for event in events]
        placeholders = ", ".join("?" for _ in ids)
        cursor = conn.execute(
            f"UPDATE outbox SET published = 1 WHERE event_id IN ({placeholders})", ids
        )
        if cursor.rowcount != len(ids):
            raise RuntimeError(
                f"consistency error: expected to mark {len(ids)} events, "
                f"but marked {cursor.rowcount}"
            )

    def save_events(self, events: Iterable[BaseEvent]) -> None:
        """Add events to the outbox; must be called inside a transaction."""
        conn = self._db.current_transaction()
        conn.executemany(_INSERT, [_values(OutboxEvent.from_event(e)) for e in events])