"""Sample product domain: the entity, its events and its read-model view."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar
from uuid import UUID

from eventus.events import NIL_UUID, ZERO_TIME, BaseEvent, register_event

PRODUCT_CREATED_EVENT_TYPE = "ProductCreated"
PRODUCT_UPDATED_EVENT_TYPE = "ProductUpdated"


@dataclass
class Product:
    """The state of a product held by its aggregate."""

    id: UUID = NIL_UUID
    name: str = ""
    price: float = 0.0

    def validate(self) -> None:
        """Raise ValueError unless the product has a name and a positive price."""
        if not self.name:
            raise ValueError("product name cannot be empty")
        if self.price <= 0:
            raise ValueError(f"product price must be positive, but got {self.price:f}")


@dataclass
class ProductCreated(BaseEvent):
    """Emitted when a new product is created."""

    event_type: ClassVar[str] = PRODUCT_CREATED_EVENT_TYPE

    name: str = ""
    price: float = 0.0


@dataclass
class ProductUpdated(BaseEvent):
    """Emitted when a product's name or price changes."""

    event_type: ClassVar[str] = PRODUCT_UPDATED_EVENT_TYPE

    name: str = ""
    price: float = 0.0


@dataclass
class ProductView:
    """Denormalised read model of a product."""

    id: UUID = NIL_UUID
    name: str = ""
    price: float = 0.0
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    version: int = 0


register_event(PRODUCT_CREATED_EVENT_TYPE, ProductCreated)
register_event(PRODUCT_UPDATED_EVENT_TYPE, ProductUpdated)