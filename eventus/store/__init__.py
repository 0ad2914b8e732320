"""SQLite database with event, outbox, idempotency and versioned stores."""