"""Event-sourced aggregate base class and a repository to load and save them."""

from __future__ import annotations

import abc
import json
import logging
from collections.abc import Callable
from typing import Any, ClassVar, Generic, Iterable, TypeVar
from uuid import UUID

from eventus.events import NIL_UUID, AggregateType, BaseEvent, EventStore

logger = logging.getLogger(__name__)


class SnapshotError(Exception):
    """Raised when a stored snapshot cannot be restored."""


class AggregateRoot(abc.ABC):
    """Tracks an aggregate's identity, version and uncommitted events."""

    aggregate_type: ClassVar[AggregateType] = ""

    def __init__(self) -> None:
        self.id: UUID = NIL_UUID
        self.version: int = 0
        self._uncommitted: list[BaseEvent] = []

    @property
    def uncommitted_events(self) -> list[BaseEvent]:
        return list(self._uncommitted)

    @abc.abstractmethod
    def apply(self, event: BaseEvent) -> None:
        """Change the aggregate's state according to an event."""

    def validate(self) -> None:
        """Check the current state; subclasses raise when an invariant is broken."""

    def track_change(self, event: BaseEvent) -> None:
        """Apply a new event, validate the resulting state and record the event."""
        self.apply(event)
        self.validate()
        self._uncommitted.append(event)

    def load_from_history(self, history: Iterable[BaseEvent]) -> None:
        """Replay past events without validating the state."""
        for event in history:
            self.apply(event)

    def clear_uncommitted_events(self) -> None:
        self._uncommitted.clear()

    def to_snapshot(self) -> dict[str, Any]:
        """Return the JSON-ready state of the aggregate."""
        return {"id": str(self.id), "version": self.version}

    def restore_snapshot(self, data: dict[str, Any]) -> None:
        """Restore the state captured by to_snapshot."""
        if "id" in data:
            self.id = UUID(data["id"])
        if "version" in data:
            self.version = int(data["version"])


A = TypeVar("A", bound=AggregateRoot)


class Repository(Generic[A]):
    """Loads aggregates from an event store and saves their new events."""

    def __init__(self, store: EventStore, factory: Callable[[], A]) -> None:
        self._store = store
        self._factory = factory

    def load(self, aggregate_id: UUID) -> A:
        """Rebuild an aggregate from its latest snapshot and the events after it."""
        aggregate = self._factory()
        snapshot, _, history = self._store.load(aggregate_id)
        if snapshot is not None:
            try:
                aggregate.restore_snapshot(json.loads(snapshot))
            except (ValueError, TypeError, KeyError) as exc:
                logger.error(
                    "Failed to unmarshal snapshot, cannot load aggregate %s: %s",
                    aggregate_id,
                    exc,
                )
                raise SnapshotError(
                    f"failed to unmarshal snapshot for aggregate {aggregate_id}: {exc}"
                ) from exc
        aggregate.load_from_history(history)
        return aggregate

    def save(self, aggregate: A) -> None:
        """Persist the aggregate's uncommitted events, then forget them."""
        if not aggregate.uncommitted_events:
            return
        self._store.save(aggregate)
        aggregate.clear_uncommitted_events()