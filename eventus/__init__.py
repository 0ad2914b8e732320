"""Event sourcing, CQRS projections and a transactional outbox relay on SQLite."""

__version__ = "0.1.0"