"""Outbound webhooks for connection updates."""

from app.services.webhooks.dispatcher import (
    WEBHOOK_FORMAT,
    WebhookNotifier,
    build_payload,
    deliver_webhook,
    validate_webhook_url,
)

__all__ = [
    "WEBHOOK_FORMAT",
    "WebhookNotifier",
    "build_payload",
    "deliver_webhook",
    "validate_webhook_url",
]
