"""Shared infrastructure: key/value store, rate limiting, idempotency."""
