"""Command handlers that create and update products."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID, uuid4

from eventus.projection import Transactor
from eventus.sample.aggregate import (
    PRODUCT_AGGREGATE_TYPE,
    ProductAggregate,
    ProductRepository,
)
from eventus.sample.product import ProductCreated, ProductUpdated

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreateProductCommand:
    """Request to create a product with the given identifier."""

    id: UUID
    name: str
    price: float


@dataclass(frozen=True)
class UpdateProduct:
    """Request to change a product's name and price."""

    id: UUID
    name: str
    price: float


class CreateProductHandler:
    """Creates a product and saves its events atomically."""

    def __init__(self, repo: ProductRepository, transactor: Transactor) -> None:
        self._repo = repo
        self._transactor = transactor

    def handle(self, command: CreateProductCommand) -> None:
        """Create the product; every change is rolled back if any step fails."""
        logger.info("Handling CreateProductCommand: name=%s", command.name)

        def create() -> None:
            product = ProductAggregate()
            product.track_change(
                ProductCreated(
                    id=uuid4(),
                    aggregate_id=command.id,
                    aggregate_type=PRODUCT_AGGREGATE_TYPE,
                    version=product.version + 1,
                    timestamp=datetime.now(timezone.utc),
                    name=command.name,
                    price=command.price,
                )
            )
            self._repo.save(product)
            logger.info(
                "Product aggregate and outbox events saved successfully: productID=%s",
                product.id,
            )

        try:
            self._transactor.with_transaction(create)
        except Exception as exc:
            logger.error("Failed to handle CreateProductCommand: %s", exc)
            raise


class UpdateProductHandler:
    """Loads a product, records an update and saves it atomically."""

    def __init__(self, repo: ProductRepository, transactor: Transactor) -> None:
        self._repo = repo
        self._transactor = transactor

    def handle(self, command: UpdateProduct) -> None:
        """Apply the update; every change is rolled back if any step fails."""

        def update() -> None:
            product = self._repo.load(command.id)
            product.track_change(
                ProductUpdated(
                    id=uuid4(),
                    aggregate_id=command.id,
                    aggregate_type=PRODUCT_AGGREGATE_TYPE,
                    version=product.version + 1,
                    timestamp=datetime.now(timezone.utc),
                    name=command.name,
                    price=command.price,
                )
            )
            self._repo.save(product)

        self._transactor.with_transaction(update)