"""Domain events, the outbox record, the event type registry and the store contract."""

from __future__ import annotations

import abc
import dataclasses
import json
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar, NamedTuple
from uuid import UUID

if TYPE_CHECKING:
    from eventus.aggregate import AggregateRoot

AggregateType = str

NIL_UUID = UUID(int=0)
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _encode(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _type_name(annotation: Any) -> str:
    """Name of a field's declared type, whether given as a string or as a type."""
    if isinstance(annotation, str):
        return annotation.strip()
    return getattr(annotation, "__name__", "")


def _decode(value: Any, type_name: str) -> Any:
    if type_name == "UUID":
        return value if isinstance(value, UUID) else UUID(value)
    if type_name == "datetime":
        return value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if type_name == "float" and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    return value


@dataclass
class BaseEvent:
    """Common fields of every domain event; concrete events subclass it."""

    event_type: ClassVar[str] = ""

    id: UUID = NIL_UUID
    aggregate_id: UUID = NIL_UUID
    aggregate_type: AggregateType = ""
    version: int = 0
    timestamp: datetime = field(default=ZERO_TIME, metadata={"json": "ts"})

    @property
    def event_id(self) -> UUID:
        return self.id

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form of the event."""
        return {
            f.metadata.get("json", f.name): _encode(getattr(self, f.name))
            for f in dataclasses.fields(self)
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BaseEvent:
        """Build an event from its JSON form; missing keys keep their defaults."""
        values = {}
        for f in dataclasses.fields(cls):
            key = f.metadata.get("json", f.name)
            if key in data:
                values[f.name] = _decode(data[key], _type_name(f.type))
        return cls(**values)


Event = BaseEvent


@dataclass
class OutboxEvent:
    """An event as stored in the outbox, with its payload as raw JSON."""

    event_id: UUID = NIL_UUID
    aggregate_id: UUID = NIL_UUID
    aggregate_type: AggregateType = ""
    event_type: str = ""
    payload: str = ""
    version: int = 0
    ts: datetime = ZERO_TIME

    @classmethod
    def from_event(cls, event: BaseEvent) -> OutboxEvent:
        """Wrap a domain event in an outbox record."""
        return cls(
            event_id=event.id,
            aggregate_id=event.aggregate_id,
            aggregate_type=event.aggregate_type,
            event_type=event.event_type,
            payload=json.dumps(event.to_dict()),
            version=event.version,
            ts=event.timestamp,
        )


class ConcurrencyError(Exception):
    """Raised when a save fails because the aggregate was modified concurrently."""


class UnknownEventTypeError(LookupError):
    """Raised when no factory is registered for an event type."""


class StoredAggregate(NamedTuple):
    """What a store returns for an aggregate: snapshot, its version and later events."""

    snapshot: str | bytes | None
    version: int
    history: list[BaseEvent]


class EventStore(abc.ABC):
    """Persists aggregates as events and snapshots."""

    @abc.abstractmethod
    def save(self, aggregate: AggregateRoot) -> None:
        """Persist the aggregate's uncommitted events, snapshotting as the store sees fit."""

    @abc.abstractmethod
    def load(self, aggregate_id: UUID) -> StoredAggregate:
        """Return the latest snapshot, its version and the events recorded after it."""


EventFactory = Callable[[], BaseEvent]

_registry: dict[str, EventFactory] = {}
_lock = threading.RLock()


def register_event(event_type: str, factory: EventFactory) -> None:
    """Associate an event type name with a factory; a name may be registered once."""
    with _lock:
        if event_type in _registry:
            raise ValueError(f"event type '{event_type}' is already registered")
        _registry[event_type] = factory


def create_event(event_type: str) -> BaseEvent:
    """Create an empty event of a registered type."""
    with _lock:
        try:
            factory = _registry[event_type]
        except KeyError:
            raise UnknownEventTypeError(
                f"event type '{event_type}' is not registered"
            ) from None
    return factory()