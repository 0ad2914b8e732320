"""Idempotent, ordered and retried projection of outbox events into read models."""

from __future__ import annotations

import abc
import logging
import random
import time
from collections.abc import Callable, Iterator
from typing import TypeVar
from uuid import UUID

from eventus.events import OutboxEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProjectionHandler = Callable[[OutboxEvent], None]

DEFAULT_MAX_ELAPSED_TIME = 60.0
DEFAULT_INITIAL_INTERVAL = 0.5
DEFAULT_RANDOMIZATION_FACTOR = 0.5
DEFAULT_MULTIPLIER = 1.5
DEFAULT_MAX_INTERVAL = 60.0


class OutOfOrderEventError(Exception):
    """Raised when an event's version is not the next one the read model expects."""


class IdempotencyStore(abc.ABC):
    """Records which events each subscriber has already processed."""

    @abc.abstractmethod
    def is_processed(self, event_id: UUID, subscriber_id: str) -> bool:
        """Return whether the subscriber has already processed the event."""

    @abc.abstractmethod
    def mark_as_processed(self, event_id: UUID, subscriber_id: str) -> None:
        """Record the event as processed by the subscriber."""


class VersionedStore(abc.ABC):
    """A read model that tracks the version of each aggregate's view."""

    @abc.abstractmethod
    def get_version(self, aggregate_id: UUID) -> int:
        """Return the current view version, or 0 if there is no view yet."""


class Transactor(abc.ABC):
    """Runs a function inside a transaction."""

    @abc.abstractmethod
    def with_transaction(self, fn: Callable[[], T]) -> T:
        """Run fn in a transaction: commit if it returns, roll back if it raises."""


class _Permanent(Exception):
    """Carries an error that must not be retried."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.cause = cause


class Projection:
    """Wraps a projection handler with idempotency, ordering checks and retries."""

    def __init__(
        self,
        subscriber_id: str,
        idempotency_store: IdempotencyStore,
        versioned_store: VersionedStore,
        transactor: Transactor,
        handler: ProjectionHandler,
        *,
        max_elapsed_time: float = DEFAULT_MAX_ELAPSED_TIME,
        initial_interval: float = DEFAULT_INITIAL_INTERVAL,
        randomization_factor: float = DEFAULT_RANDOMIZATION_FACTOR,
        multiplier: float = DEFAULT_MULTIPLIER,
        max_interval: float = DEFAULT_MAX_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.subscriber_id = subscriber_id
        self.max_elapsed_time = max_elapsed_time
        self._idempotency = idempotency_store
        self._versions = versioned_store
        self._transactor = transactor
        self._handler = handler
        self._initial_interval = initial_interval
        self._randomization_factor = randomization_factor
        self._multiplier = multiplier
        self._max_interval = max_interval
        self._sleep = sleep
        self._clock = clock
        self._random = random.Random()

    def handle(self, event: OutboxEvent) -> None:
        """Process an event once, in version order, retrying transient failures."""
        if self._idempotency.is_processed(event.event_id, self.subscriber_id):
            logger.warning(
                "Event already processed, skipping: eventID=%s subscriber=%s",
                event.event_id,
                self.subscriber_id,
            )
            return

        try:
            self._retry(lambda: self._attempt(event))
        except Exception as exc:
            logger.error(
                "Failed to process event after multiple retries: error=%s eventID=%s subscriber=%s",
                exc,
                event.event_id,
                self.subscriber_id,
            )
            raise

        logger.info(
            "Event processed successfully by idempotent handler: eventID=%s subscriber=%s",
            event.event_id,
            self.subscriber_id,
        )

    def _attempt(self, event: OutboxEvent) -> None:
        current = self._versions.get_version(event.aggregate_id)

        if event.version <= current:
            logger.warning(
                "Received old or duplicate event version, skipping: "
                "eventID=%s eventVersion=%d currentVersion=%d",
                event.event_id,
                event.version,
                current,
            )
            try:
                self._transactor.with_transaction(
                    lambda: self._idempotency.mark_as_processed(
                        event.event_id, self.subscriber_id
                    )
                )
            except Exception as exc:
                raise _Permanent(exc) from exc
            return

        if event.version != current + 1:
            logger.warning(
                "Received out-of-order event, will be retried by the broker: "
                "eventID=%s eventVersion=%d expectedVersion=%d",
                event.event_id,
                event.version,
                current + 1,
            )
            raise _Permanent(
                OutOfOrderEventError(
                    f"out of order event: got version {event.version}, "
                    f"expected {current + 1}"
                )
            )

        def run_in_transaction() -> None:
            self._handler(event)
            self._idempotency.mark_as_processed(event.event_id, self.subscriber_id)

        self._transactor.with_transaction(run_in_transaction)

    def _delays(self) -> Iterator[float]:
        interval = self._initial_interval
        while True:
            delta = self._randomization_factor * interval
            yield self._random.uniform(interval - delta, interval + delta)
            interval = min(interval * self._multiplier, self._max_interval)

    def _retry(self, operation: Callable[[], None]) -> None:
        started = self._clock()
        delays = self._delays()
        while True:
            permanent: BaseException | None = None
            try:
                operation()
                return
            except _Permanent as stop:
                permanent = stop.cause
            except Exception as exc:
                delay = next(delays)
                elapsed = self._clock() - started
                if self.max_elapsed_time > 0 and elapsed + delay > self.max_elapsed_time:
                    raise
                logger.debug("Retrying in %.3fs after error: %s", delay, exc)
            if permanent is not None:
                raise permanent
            self._sleep(delay)