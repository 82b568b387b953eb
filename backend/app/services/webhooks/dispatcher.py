"""Webhook push of connection updates."""
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import httpx
import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.db.models import WebhookSubscription
from app.errors import RequestValidationError
from app.services.monitoring.events import ConnectionUpdate
from app.services.subscription.repository import SubscriptionRepository

logger = structlog.get_logger()

WEBHOOK_EVENT_TYPE = "connection_update"

WEBHOOK_FORMAT = {
    "type": WEBHOOK_EVENT_TYPE,
    "alert_id": "string",
    "timestamp": "ISO 8601",
    "update_type": "new_connection | cascade_update | risk_change",
    "data": "varies",
}

Enqueue = Callable[[str, Dict[str, Any]], None]


def validate_webhook_url(url: str) -> str:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise RequestValidationError("Invalid webhook URL format")
    return url


def build_payload(update: ConnectionUpdate) -> Dict[str, Any]:
    return {
        "type": WEBHOOK_EVENT_TYPE,
        "alert_id": update.alert_id,
        "timestamp": update.timestamp,
        "update_type": update.type.value,
        "data": dict(update.data),
    }


def wants_update(subscription: WebhookSubscription, update: ConnectionUpdate) -> bool:
    """Apply the subscription's optional ``update_types`` filter."""
    filters = subscription.filters or {}
    update_types = filters.get("update_types")
    if not update_types:
        return True
    return update.type.value in update_types


def deliver_webhook(url: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> bool:
    """POST one payload. A failed delivery is logged and dropped, never retried."""
    timeout = settings.WEBHOOK_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(url, json=payload)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(
            "Webhook delivery failed",
            url=url,
            alert_id=payload.get("alert_id"),
            update_type=payload.get("update_type"),
            error=str(e),
        )
        return False

    logger.info(
        "Webhook delivered",
        url=url,
        alert_id=payload.get("alert_id"),
        update_type=payload.get("update_type"),
    )
    return True


def _enqueue_delivery(url: str, payload: Dict[str, Any]) -> None:
    from app.workers.tasks import deliver_webhook_task

    deliver_webhook_task.delay(url, payload)


class WebhookNotifier:
    """Update callback that fans an event out to matching webhook subscriptions."""

    def __init__(self, session_maker: async_sessionmaker, enqueue: Optional[Enqueue] = None):
        self.session_maker = session_maker
        self.enqueue = enqueue or _enqueue_delivery

    async def subscriptions_for(self, update: ConnectionUpdate) -> List[WebhookSubscription]:
        async with self.session_maker() as session:
            subscriptions = await SubscriptionRepository(session).list_webhooks_for_alert(
                update.alert_id
            )
        return [s for s in subscriptions if wants_update(s, update)]

    async def __call__(self, update: ConnectionUpdate) -> int:
        subscriptions = await self.subscriptions_for(update)
        payload = build_payload(update)
        for subscription in subscriptions:
            self.enqueue(subscription.webhook_url, payload)

        if subscriptions:
            logger.info(
                "Webhook deliveries queued",
                alert_id=update.alert_id,
                update_type=update.type.value,
                count=len(subscriptions),
            )
        return len(subscriptions)
