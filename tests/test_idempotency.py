from uuid import uuid4

import pytest

from eventus.store.database import Database, TransactionRequiredError
from eventus.store.idempotency import SqlIdempotencyStore


@pytest.fixture
def db():
    database = Database()
    database.create_schema()
    yield database
    database.close()


@pytest.fixture
def store(db):
    return SqlIdempotencyStore(db)


def test_unknown_event_is_not_processed(store):
    assert store.is_processed(uuid4(), "subscriber") is False


def test_mark_then_is_processed(db, store):
    event_id = uuid4()
    db.with_transaction(lambda: store.mark_as_processed(event_id, "subscriber"))
    assert store.is_processed(event_id, "subscriber") is True


def test_mark_requires_transaction(store):
    with pytest.raises(TransactionRequiredError):
        store.mark_as_processed(uuid4(), "subscriber")


def test_marking_twice_is_not_an_error(db, store):
    event_id = uuid4()
    db.with_transaction(lambda: store.mark_as_processed(event_id, "subscriber"))
    db.with_transaction(lambda: store.mark_as_processed(event_id, "subscriber"))
    assert store.is_processed(event_id, "subscriber") is True


def test_records_are_per_subscriber(db, store):
    event_id = uuid4()
    db.with_transaction(lambda: store.mark_as_processed(event_id, "first"))
    assert store.is_processed(event_id, "first") is True
    assert store.is_processed(event_id, "second") is False


def test_mark_is_rolled_back_with_transaction(db, store):
    event_id = uuid4()

    def work():
        store.mark_as_processed(event_id, "subscriber")
        raise RuntimeError("handler failed")

    with pytest.raises(RuntimeError):
        db.with_transaction(work)
    assert store.is_processed(event_id, "subscriber") is False