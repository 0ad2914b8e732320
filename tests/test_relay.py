import queue
import threading
import time
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from eventus.events import OutboxEvent
from eventus.relay import Broker, OutboxStore, Relay


class MockBroker(Broker):
    def __init__(self, fail_times=0, error=None):
        self.published = queue.Queue()
        self.topics = []
        self.fail_times = fail_times
        self.error = error or ConnectionError("broker unavailable")
        self._lock = threading.Lock()

    def publish(self, topic, event):
        with self._lock:
            if self.fail_times > 0:
                self.fail_times -= 1
                raise self.error
            self.topics.append(topic)
        self.published.put(event)

    def subscribe(self, topic, subscriber_id, handler):
        return None

    def close(self):
        return None


class InMemoryOutboxStore(OutboxStore):
    def __init__(self):
        self._lock = threading.Lock()
        self.rows = []

    def add(self, event):
        with self._lock:
            self.rows.append({"event": event, "published": False, "locked": False})

    def published_count(self):
        with self._lock:
            return sum(row["published"] for row in self.rows)

    def process_outbox_batch(self, batch_size, process):
        with self._lock:
            candidates = sorted(
                (r for r in self.rows if not r["published"] and not r["locked"]),
                key=lambda r: r["event"].ts,
            )[:batch_size]
            for row in candidates:
                row["locked"] = True
        try:
            if not candidates:
                return
            process([row["event"] for row in candidates])
            with self._lock:
                for row in candidates:
                    row["published"] = True
        finally:
            with self._lock:
                for row in candidates:
                    row["locked"] = False


def insert_test_events(store, count, aggregate_type="products"):
    aggregate_id = uuid4()
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    events = []
    for i in range(count):
        event = OutboxEvent(
            event_id=uuid4(),
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            event_type="ProductCreated",
            payload='{"name": "test", "price": 1.0}',
            version=i + 1,
            ts=base + timedelta(seconds=i),
        )
        store.add(event)
        events.append(event)
    return events


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_relay_processes_and_publishes_events():
    store = InMemoryOutboxStore()
    broker = MockBroker()
    inserted = insert_test_events(store, 3)

    relay = Relay(store, broker, 2, 0.05)
    relay.start()
    try:
        received = [broker.published.get(timeout=10) for _ in range(3)]
    finally:
        relay.stop()

    assert len(received) == 3
    assert {e.event_id for e in received} == {e.event_id for e in inserted}
    assert store.published_count() == 3


def test_concurrent_workers_do_not_process_same_event():
    store = InMemoryOutboxStore()
    broker = MockBroker()
    num_events = 15
    insert_test_events(store, num_events)

    relays = [Relay(store, broker, 5, 0.05) for _ in range(3)]
    for relay in relays:
        relay.start()
    try:
        counts = {}
        for _ in range(num_events):
            event = broker.published.get(timeout=10)
            counts[event.event_id] = counts.get(event.event_id, 0) + 1
        assert wait_until(lambda: store.published_count() == num_events)
    finally:
        for relay in relays:
            relay.stop()

    assert len(counts) == num_events
    assert all(count == 1 for count in counts.values())
    assert broker.published.empty()


def test_process_batch_publishes_to_aggregate_type_topic():
    store = InMemoryOutboxStore()
    broker = MockBroker()
    insert_test_events(store, 3)

    relay = Relay(store, broker, 10, 1.0)
    relay.process_batch()

    assert broker.topics == ["products", "products", "products"]
    assert store.published_count() == 3


def test_process_batch_respects_batch_size_and_order():
    store = InMemoryOutboxStore()
    broker = MockBroker()
    inserted = insert_test_events(store, 5)

    relay = Relay(store, broker, 2, 1.0)
    relay.process_batch()

    first = [broker.published.get_nowait() for _ in range(2)]
    assert [e.version for e in first] == [1, 2]
    assert first[0].event_id == inserted[0].event_id
    assert store.published_count() == 2


def test_publish_failure_leaves_events_unpublished():
    store = InMemoryOutboxStore()
    broker = MockBroker(fail_times=1, error=ConnectionError("broker down"))
    insert_test_events(store, 2)

    relay = Relay(store, broker, 10, 1.0)
    with pytest.raises(ConnectionError, match="broker down"):
        relay.process_batch()

    assert store.published_count() == 0


def test_event_without_topic_is_skipped_but_batch_completes():
    store = InMemoryOutboxStore()
    broker = MockBroker()
    insert_test_events(store, 1, aggregate_type="")
    insert_test_events(store, 1, aggregate_type="orders")

    relay = Relay(store, broker, 10, 1.0)
    relay.process_batch()

    assert broker.topics == ["orders"]
    assert store.published_count() == 2


def test_empty_outbox_publishes_nothing():
    store = InMemoryOutboxStore()
    broker = MockBroker()

    Relay(store, broker, 10, 1.0).process_batch()

    assert broker.topics == []
    assert store.published_count() == 0


def test_relay_keeps_running_after_failed_batch():
    store = InMemoryOutboxStore()
    broker = MockBroker(fail_times=2)
    inserted = insert_test_events(store, 1)

    with Relay(store, broker, 5, 0.02):
        event = broker.published.get(timeout=10)
        assert wait_until(lambda: store.published_count() == 1)

    assert event.event_id == inserted[0].event_id
    assert broker.fail_times == 0


def test_start_twice_raises():
    relay = Relay(InMemoryOutboxStore(), MockBroker(), 1, 0.05)
    relay.start()
    try:
        with pytest.raises(RuntimeError, match="already running"):
            relay.start()
    finally:
        relay.stop()


def test_stopped_relay_publishes_no_more_events():
    store = InMemoryOutboxStore()
    broker = MockBroker()
    relay = Relay(store, broker, 5, 0.02)
    relay.start()
    relay.stop()

    insert_test_events(store, 2)
    time.sleep(0.1)

    assert store.published_count() == 0
    assert broker.published.empty()