import json
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from eventus.events import OutboxEvent, create_event
from eventus.sample.product import (
    PRODUCT_CREATED_EVENT_TYPE,
    PRODUCT_UPDATED_EVENT_TYPE,
    Product,
    ProductCreated,
    ProductUpdated,
)


def test_valid_product_passes_validation():
    product = Product(id=uuid4(), name="Widget", price=1.5)
    product.validate()
    assert product.name == "Widget"


def test_empty_name_is_rejected():
    with pytest.raises(ValueError, match="product name cannot be empty"):
        Product(name="", price=10.0).validate()


@pytest.mark.parametrize("price", [0.0, -3.0])
def test_non_positive_price_is_rejected(price):
    with pytest.raises(ValueError, match="product price must be positive"):
        Product(name="Widget", price=price).validate()


def test_registered_events_are_created_by_name():
    created = create_event(PRODUCT_CREATED_EVENT_TYPE)
    updated = create_event(PRODUCT_UPDATED_EVENT_TYPE)
    assert isinstance(created, ProductCreated)
    assert isinstance(updated, ProductUpdated)
    assert created.event_type == "ProductCreated"
    assert updated.event_type == "ProductUpdated"


def test_event_round_trips_through_json():
    event = ProductCreated(
        id=uuid4(),
        aggregate_id=uuid4(),
        aggregate_type="products",
        version=3,
        timestamp=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        name="Widget",
        price=2.5,
    )
    data = json.loads(json.dumps(event.to_dict()))
    assert ProductCreated.from_dict(data) == event


def test_event_json_uses_wire_field_names():
    event = ProductUpdated(name="Widget", price=4.0)
    assert set(event.to_dict()) == {
        "id",
        "aggregate_id",
        "aggregate_type",
        "version",
        "ts",
        "name",
        "price",
    }


def test_integer_price_is_read_as_float():
    event = ProductUpdated.from_dict({"name": "Widget", "price": 5})
    assert event.price == 5.0
    assert isinstance(event.price, float)


def test_outbox_record_carries_event_type_and_payload():
    aggregate_id = uuid4()
    event = ProductUpdated(
        id=uuid4(), aggregate_id=aggregate_id, aggregate_type="products", version=2, name="Widget", price=9.0
    )
    record = OutboxEvent.from_event(event)
    assert record.event_type == "ProductUpdated"
    assert record.aggregate_id == aggregate_id
    assert record.version == 2
    assert ProductUpdated.from_dict(json.loads(record.payload)) == event