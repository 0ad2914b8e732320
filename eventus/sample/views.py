"""Product read model: its repository, the query that reads it and the projection that fills it."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from eventus.events import OutboxEvent
from eventus.projection import VersionedStore
from eventus.sample.product import (
    PRODUCT_CREATED_EVENT_TYPE,
    PRODUCT_UPDATED_EVENT_TYPE,
    ProductCreated,
    ProductUpdated,
    ProductView,
)
from eventus.store.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS product_views (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        price REAL NOT NULL,
        version INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

_UPSERT = """
    INSERT INTO product_views (id, name, price, version, created_at, updated_at)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT (id) DO UPDATE SET
        name = excluded.name,
        price = excluded.price,
        version = excluded.version,
        updated_at = excluded.updated_at
"""

_UPDATE = """
    UPDATE product_views SET
        name = ?,
        price = ?,
        version = ?,
        updated_at = ?
    WHERE id = ?
"""

_SELECT = """
    SELECT id, name, price, version, created_at, updated_at
    FROM product_views
    WHERE id = ?
"""


def _timestamp(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


class ProductNotFoundError(LookupError):
    """Raised when no view exists for the requested product."""


class ProductViewRepository(VersionedStore):
    """Product views kept in the product_views table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create_table(self) -> None:
        """Create the product_views table if it does not exist."""
        with self._db.transaction() as conn:
            conn.execute(_CREATE_TABLE)

    def get_version(self, aggregate_id: UUID) -> int:
        """Return the view's version, or 0 if the product has no view yet."""
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT version FROM product_views WHERE id = ?", (str(aggregate_id),)
            ).fetchone()
        return 0 if row is None else row[0]

    def save_product_view(self, view: ProductView) -> None:
        """Insert the view, or overwrite everything but its creation time."""
        with self._db.transaction() as conn:
            conn.execute(
                _UPSERT,
                (
                    str(view.id),
                    view.name,
                    view.price,
                    view.version,
                    _timestamp(view.created_at),
                    _timestamp(view.updated_at),
                ),
            )

    def update_product_view(self, view: ProductView) -> None:
        """Change the name, price, version and update time of an existing view."""
        with self._db.transaction() as conn:
            conn.execute(
                _UPDATE,
                (
                    view.name,
                    view.price,
                    view.version,
                    _timestamp(view.updated_at),
                    str(view.id),
                ),
            )

    def get_product_view_by_id(self, aggregate_id: UUID) -> ProductView | None:
        """Return the product's view, or None if it has none yet."""
        with self._db.transaction() as conn:
            row = conn.execute(_SELECT, (str(aggregate_id),)).fetchone()
        if row is None:
            return None
        view_id, name, price, version, created_at, updated_at = row
        return ProductView(
            id=UUID(view_id),
            name=name,
            price=float(price),
            version=version,
            created_at=datetime.fromisoformat(created_at),
            updated_at=datetime.fromisoformat(updated_at),
        )


@dataclass(frozen=True)
class GetProductByID:
    """Query for the view of one product."""

    id: UUID


class GetProductByIDHandler:
    """Answers GetProductByID queries from the read model."""

    def __init__(self, repository: ProductViewRepository) -> None:
        self._repository = repository

    def query(self, query: GetProductByID) -> ProductView:
        """Return the product's view; raise ProductNotFoundError if there is none."""
        view = self._repository.get_product_view_by_id(query.id)
        if view is None:
            raise ProductNotFoundError(f"product with id = {query.id} not found")
        return view


class ProductProjectionHandler:
    """Projects product events into denormalised product views."""

    def __init__(self, repo: ProductViewRepository) -> None:
        self._repo = repo

    def handle(self, event: OutboxEvent) -> None:
        """Update the view for product events; other event types are ignored."""
        if event.event_type == PRODUCT_CREATED_EVENT_TYPE:
            self._on_created(event)
        elif event.event_type == PRODUCT_UPDATED_EVENT_TYPE:
            self._on_updated(event)

    def _on_created(self, event: OutboxEvent) -> None:
        try:
            created = ProductCreated.from_dict(json.loads(event.payload))
        except (ValueError, TypeError) as exc:
            raise ValueError(f"failed to unmarshal ProductCreated event: {exc}") from exc
        logger.info(
            "Projecting ProductView: productID=%s name=%s price=%s",
            created.aggregate_id,
            created.name,
            created.price,
        )
        view = ProductView(
            id=created.aggregate_id,
            name=created.name,
            price=created.price,
            created_at=event.ts,
            updated_at=event.ts,
            version=event.version,
        )
        try:
            self._repo.save_product_view(view)
        except sqlite3.Error as exc:
            logger.error("save product view failed: %s", exc)

    def _on_updated(self, event: OutboxEvent) -> None:
        try:
            updated = ProductUpdated.from_dict(json.loads(event.payload))
        except (ValueError, TypeError) as exc:
            raise ValueError(f"failed to unmarshal ProductUpdated event: {exc}") from exc
        logger.info(
            "Projecting ProductView: productID=%s name=%s price=%s",
            updated.aggregate_id,
            updated.name,
            updated.price,
        )
        view = ProductView(
            id=updated.aggregate_id,
            name=updated.name,
            price=updated.price,
            updated_at=event.ts,
            version=event.version,
        )
        try:
            self._repo.update_product_view(view)
        except sqlite3.Error as exc:
            logger.error("update product view failed: %s", exc)