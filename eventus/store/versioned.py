"""A minimal versioned read model that tracks one version per aggregate."""

from __future__ import annotations

from uuid import UUID

from eventus.projection import VersionedStore
from eventus.store.database import Database


class VersionedRepository(VersionedStore):
    """Read model of aggregate versions kept in the versioned_views table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create_table(self) -> None:
        """Create the versioned_views table if it does not exist."""
        with self._db.transaction() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS versioned_views ("
                "id TEXT PRIMARY KEY, version INTEGER NOT NULL)"
            )

    def get_version(self, aggregate_id: UUID) -> int:
        """Return the view's version, or 0 if there is no view for the aggregate."""
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT version FROM versioned_views WHERE id = ?", (str(aggregate_id),)
            ).fetchone()
        return 0 if row is None else row[0]