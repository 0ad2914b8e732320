"""The product aggregate and its repository."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from eventus.aggregate import AggregateRoot, Repository
from eventus.events import NIL_UUID, AggregateType, BaseEvent, EventStore
from eventus.sample.product import Product, ProductCreated, ProductUpdated

PRODUCT_AGGREGATE_TYPE: AggregateType = "products"


class ProductAggregate(AggregateRoot):
    """Event-sourced aggregate holding a product's state."""

    aggregate_type = PRODUCT_AGGREGATE_TYPE

    def __init__(self) -> None:
        super().__init__()
        self.product = Product()

    def apply(self, event: BaseEvent) -> None:
        """Change the product according to a product event and take its version."""
        if isinstance(event, ProductCreated):
            self.id = event.aggregate_id
            self.product.name = event.name
            self.product.price = event.price
        elif isinstance(event, ProductUpdated):
            self.product.name = event.name
            self.product.price = event.price
        else:
            raise TypeError(f"unknown event type: {type(event).__name__}")
        self.version = event.version

    def validate(self) -> None:
        """Raise ValueError if the product state is invalid."""
        self.product.validate()

    def to_snapshot(self) -> dict[str, Any]:
        """Return the JSON-ready state, including the product."""
        return {
            **super().to_snapshot(),
            "product": {
                "id": str(self.product.id),
                "name": self.product.name,
                "price": self.product.price,
            },
        }

    def restore_snapshot(self, data: dict[str, Any]) -> None:
        """Restore the state captured by to_snapshot."""
        super().restore_snapshot(data)
        product = data.get("product")
        if product is not None:
            self.product = Product(
                id=UUID(product["id"]) if "id" in product else NIL_UUID,
                name=product.get("name", ""),
                price=float(product.get("price", 0.0)),
            )


class ProductRepository(Repository[ProductAggregate]):
    """Repository of product aggregates."""

    def __init__(self, store: EventStore) -> None:
        super().__init__(store, ProductAggregate)