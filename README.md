# eventus

Building blocks for event-sourced applications: aggregates that record
domain events, a repository that rebuilds them from snapshots and history,
an SQLite event store that writes events and a transactional outbox in one
transaction, a relay that publishes outbox events to a broker, and
projections that apply events to read models exactly once and in order.

The package uses only the Python standard library.

## Installation

```
pip install eventus
```

To run the test suite:

```
pip install "eventus[test]"
pytest
```

## Events — `eventus.events`

Domain events are dataclasses deriving from `BaseEvent`, which carries
`id`, `aggregate_id`, `aggregate_type`, `version` and `timestamp`, and a
class-level `event_type` name. `to_dict()` gives the JSON-ready form (the
timestamp under the key `ts`, UUIDs and datetimes as strings) and
`from_dict()` builds the event back, leaving missing keys at their defaults.

Every concrete event type is registered by name with
`register_event(event_type, factory)` so the store can rebuild it later with
`create_event(event_type)`. Registering a name twice raises `ValueError`;
creating an unregistered type raises `UnknownEventTypeError`.

`OutboxEvent` is the form an event takes in the outbox and on the message
bus: its identifying fields, `event_type`, `version`, `ts` and the JSON
`payload`. `OutboxEvent.from_event(event)` builds one from a domain event.

`EventStore` is the abstract store contract: `save(aggregate)` and
`load(aggregate_id)`, which returns a `StoredAggregate` of
`(snapshot, version, history)`. `ConcurrencyError` signals that another
writer stored the same aggregate version first.

## Aggregates and repositories — `eventus.aggregate`

`AggregateRoot` tracks an aggregate's `id`, `version` and
`uncommitted_events`. A concrete aggregate sets `aggregate_type` and
implements `apply(event)`, and may override `validate()`.

- `track_change(event)` applies the event, validates the new state and
  records the event as uncommitted; if either step raises, the event is not
  recorded.
- `load_from_history(events)` replays past events without validating.
- `clear_uncommitted_events()` forgets recorded events.
- `to_snapshot()` / `restore_snapshot(data)` turn the state into plain data
  and back; subclasses extend both with their own fields.

`Repository(store, factory)` loads and saves aggregates. `load(aggregate_id)`
creates an empty aggregate, restores the latest snapshot if there is one
(raising `SnapshotError` if it cannot be decoded) and replays the later
events. `save(aggregate)` hands uncommitted events to the store and clears
them; with nothing to save it does nothing.

## Storage — `eventus.store`

All stores share one `eventus.store.database.Database`, a SQLite connection
(`":memory:"` by default, or a file path) usable from several threads.

- `create_schema()` creates the `event_store`, `outbox`, `snapshots` and
  `processed_events` tables.
- `transaction()` is a context manager that commits when the block ends and
  rolls back when it raises. Transactions are serialised across threads; a
  transaction opened in a thread that already has one joins the outer one.
- `with_transaction(fn)` runs `fn()` inside a transaction and returns its
  result.
- `current_transaction()` returns the connection of this thread's active
  transaction, or raises `TransactionRequiredError`.
- `close()` closes the connection; `Database` is also a context manager.

The stores built on it:

- `eventus.store.event_store.SqlEventStore(db, outbox, snapshot_frequency)`
  appends events, raising `ConcurrencyError` when the aggregate version is
  already stored, copies them into the outbox, and stores a snapshot whenever
  the aggregate's version is a multiple of `snapshot_frequency` (never if it
  is 0 or less). A failed snapshot is logged, not raised. `save` must run
  inside a transaction.
- `eventus.store.outbox_store.SqlOutboxStore(db)`: `save_events(events)`
  adds events to the outbox and must run inside a transaction;
  `process_outbox_batch(batch_size, process)` fetches up to `batch_size`
  unpublished events, oldest first, calls `process(events)` and marks them
  published, all in one transaction — if `process` raises, nothing is marked.
- `eventus.store.idempotency.SqlIdempotencyStore(db)`: `is_processed` and
  `mark_as_processed`; the latter must run inside a transaction and ignores a
  record that already exists.
- `eventus.store.versioned.VersionedRepository(db)`: a minimal read model
  with `create_table()` and `get_version(aggregate_id)` (0 when there is no
  view).

## Relaying the outbox — `eventus.relay`

`Broker` is the abstract message-bus contract (`publish`, `subscribe`,
`close`) and `OutboxStore` the abstract batch-processing contract.

`Relay(store, broker, batch_size, interval)` publishes each fetched event to
the broker, using the event's `aggregate_type` as the topic; events without
one are skipped. If publishing fails, the whole batch stays unpublished and
is tried again later. `start()` polls every `interval` seconds in a
background thread, `stop()` ends it and waits, and `process_batch()` runs a
single poll on demand. A `Relay` is also a context manager. Several relays
may run against the same store.

## Projections — `eventus.projection`

`Projection(subscriber_id, idempotency_store, versioned_store, transactor,
handler)` wraps a read-model handler with:

1. an idempotency check: an event the subscriber already processed is
   skipped;
2. an ordering check against the `VersionedStore`: an event at or below the
   current version is marked processed and skipped, and an event that is not
   exactly the next version raises `OutOfOrderEventError` without retrying;
3. a transaction from the `Transactor` in which the handler runs and the
   event is marked processed;
4. retries of other failures with randomised exponential backoff, for at
   most `max_elapsed_time` seconds (60 by default; keyword options also set
   the initial interval, multiplier, maximum interval and randomisation).

`handle(event)` returns on success or on a skipped event and raises
otherwise, so a broker can redeliver the message. `IdempotencyStore`,
`VersionedStore` and `Transactor` are the abstract contracts; `Database`
is a `Transactor`.

## The sample application — `eventus.sample`

- `eventus.sample.product` — `Product` (its `validate()` requires a name and
  a positive price), the `ProductCreated` and `ProductUpdated` events
  (registered on import) and the `ProductView` record;
- `eventus.sample.aggregate` — `ProductAggregate` and `ProductRepository`;
- `eventus.sample.commands` — `CreateProductHandler` and
  `UpdateProductHandler`, each running in one transaction;
- `eventus.sample.views` — `ProductViewRepository`, the
  `ProductProjectionHandler` that keeps it up to date, and
  `GetProductByIDHandler`, which raises `ProductNotFoundError` for an
  unknown id.

```python
from uuid import uuid4

from eventus.projection import Projection
from eventus.relay import Broker, Relay
from eventus.sample.aggregate import ProductRepository
from eventus.sample.commands import CreateProductCommand, CreateProductHandler
from eventus.sample.views import (
    GetProductByID,
    GetProductByIDHandler,
    ProductProjectionHandler,
    ProductViewRepository,
)
from eventus.store.database import Database
from eventus.store.event_store import SqlEventStore
from eventus.store.idempotency import SqlIdempotencyStore
from eventus.store.outbox_store import SqlOutboxStore


class InProcessBroker(Broker):
    def __init__(self):
        self.handlers = {}

    def publish(self, topic, event):
        for handler in self.handlers.get(topic, []):
            handler(event)

    def subscribe(self, topic, subscriber_id, handler):
        self.handlers.setdefault(topic, []).append(handler)

    def close(self):
        self.handlers.clear()


db = Database()
db.create_schema()
outbox = SqlOutboxStore(db)
products = ProductRepository(SqlEventStore(db, outbox, snapshot_frequency=5))

views = ProductViewRepository(db)
views.create_table()
projection = Projection(
    "ProductProjection",
    SqlIdempotencyStore(db),
    views,
    db,
    ProductProjectionHandler(views).handle,
)

broker = InProcessBroker()
broker.subscribe("products", "ProductProjection", projection.handle)

product_id = uuid4()
CreateProductHandler(products, db).handle(
    CreateProductCommand(id=product_id, name="Widget", price=199.99)
)
Relay(outbox, broker, batch_size=10, interval=2.0).process_batch()

view = GetProductByIDHandler(views).query(GetProductByID(product_id))
print(view.name, view.price)
```

## What the package does not do

- It ships no message broker: `Broker` is only a contract, to be implemented
  over whatever bus an application uses.
- Storage is SQLite only; there is no client for other database servers.
- There is no command-line program or long-running service; applications
  wire the components together themselves.