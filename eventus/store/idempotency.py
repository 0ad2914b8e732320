"""Database record of which events each subscriber has processed."""

from __future__ import annotations

from uuid import UUID

from eventus.projection import IdempotencyStore
from eventus.store.database import Database


class SqlIdempotencyStore(IdempotencyStore):
    """Idempotency records kept in the processed_events table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def is_processed(self, event_id: UUID, subscriber_id: str) -> bool:
        """Return whether the subscriber has already processed the event."""
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT EXISTS(SELECT 1 FROM processed_events "
                "WHERE event_id = ? AND subscriber_id = ?)",
                (str(event_id), subscriber_id),
            ).fetchone()
        return bool(row[0])

    def mark_as_processed(self, event_id: UUID, subscriber_id: str) -> None:
        """Record the event as processed; must be called inside a transaction.

        A record written concurrently by another worker is not an error.
        """
        conn = self._db.current_transaction()
        conn.execute(
            "INSERT INTO processed_events (event_id, subscriber_id) VALUES (?, ?) "
            "ON CONFLICT (event_id, subscriber_id) DO NOTHING",
            (str(event_id), subscriber_id),
        )