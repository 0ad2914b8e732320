"""Message broker contract and the background relay that publishes the outbox."""

from __future__ import annotations

import abc
import logging
import threading
from collections.abc import Callable, Sequence

from eventus.events import OutboxEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[OutboxEvent], None]
BatchProcessor = Callable[[Sequence[OutboxEvent]], None]


class Broker(abc.ABC):
    """Publishes events to topics and delivers them to subscribers."""

    @abc.abstractmethod
    def publish(self, topic: str, event: OutboxEvent) -> None:
        """Send an event to a topic."""

    @abc.abstractmethod
    def subscribe(self, topic: str, subscriber_id: str, handler: EventHandler) -> None:
        """Deliver the topic's events to handler under a durable subscriber name."""

    @abc.abstractmethod
    def close(self) -> None:
        """Shut the broker connection down."""


class OutboxStore(abc.ABC):
    """Storage of outbox events that processes batches transactionally."""

    @abc.abstractmethod
    def process_outbox_batch(self, batch_size: int, process: BatchProcessor) -> None:
        """Fetch and lock unpublished events, pass them to process and mark them published.

        If process raises, nothing is marked and the exception propagates.
        """


class Relay:
    """A background worker that polls the outbox and publishes its events."""

    def __init__(
        self,
        store: OutboxStore,
        broker: Broker,
        batch_size: int,
        interval: float,
    ) -> None:
        self.batch_size = batch_size
        self.interval = interval
        self._store = store
        self._broker = broker
        self._quit = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("relay is already running")
        self._quit.clear()
        self._thread = threading.Thread(
            target=self._run, name="outbox-relay", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop polling and wait for the worker to finish."""
        self._quit.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> Relay:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _run(self) -> None:
        logger.info("Outbox relay started")
        while not self._quit.wait(self.interval):
            try:
                self.process_batch()
            except Exception as exc:
                logger.error("Failed to process outbox batch: %s", exc)
        logger.info("Outbox relay shutting down")

    def process_batch(self) -> None:
        """Publish one batch of outbox events inside the store's transaction."""
        self._store.process_outbox_batch(self.batch_size, self._publish_all)

    def _publish_all(self, events: Sequence[OutboxEvent]) -> None:
        if not events:
            return
        logger.debug("Processing fetched events: count=%d", len(events))
        for event in events:
            topic = event.aggregate_type
            if not topic:
                logger.warning(
                    "No topic mapped for event type, skipping: eventType=%s eventID=%s",
                    event.event_type,
                    event.event_id,
                )
                continue
            try:
                self._broker.publish(topic, event)
            except Exception as exc:
                logger.error(
                    "Failed to publish event %s to topic %s: %s",
                    event.event_id,
                    topic,
                    exc,
                )
                raise
        logger.info("Successfully published events to broker: count=%d", len(events))