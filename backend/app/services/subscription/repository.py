"""Persistence for subscriptions, usage records and webhook subscriptions."""
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, func, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import UserSubscription, UsageRecord, WebhookSubscription
from app.errors import SubscriptionNotFoundError, TransientStoreError

logger = structlog.get_logger()


class SubscriptionRepository:
    """Thin async SQLAlchemy wrapper. Writes are flushed, the caller commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _execute(self, query, operation: str):
        try:
            return await self.session.execute(query)
        except SQLAlchemyError as e:
            logger.error("Subscription store query failed", operation=operation, error=str(e))
            raise TransientStoreError("Subscription store unavailable") from e

    async def _flush(self, operation: str) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("Subscription store write failed", operation=operation, error=str(e))
            raise TransientStoreError("Subscription store unavailable") from e

    # ============== Subscriptions ==============

    async def get_active_subscription(self, user_id: str) -> Optional[UserSubscription]:
        result = await self._execute(
            select(UserSubscription)
            .where(UserSubscription.user_id == user_id, UserSubscription.is_active.is_(True))
            .order_by(desc(UserSubscription.started_at))
            .limit(1),
            "get_active_subscription",
        )
        return result.scalar_one_or_none()

    # ============== Usage ==============

    async def count_usage_since(
        self,
        user_id: str,
        since: datetime,
        analysis_type: str = "connection"
    ) -> int:
        result = await self._execute(
            select(func.count(UsageRecord.id)).where(
                UsageRecord.user_id == user_id,
                UsageRecord.analysis_type == analysis_type,
                UsageRecord.created_at >= since,
            ),
            "count_usage_since",
        )
        return result.scalar() or 0

    async def add_usage(
        self,
        user_id: str,
        alert_id: str,
        time_window: int,
        analysis_type: str = "connection",
        metadata: Optional[Dict[str, Any]] = None
    ) -> UsageRecord:
        record = UsageRecord(
            user_id=user_id,
            alert_id=alert_id,
            analysis_type=analysis_type,
            time_window=time_window,
            metadata_json=metadata or {},
        )
        self.session.add(record)
        await self._flush("add_usage")
        return record

    # ============== Webhooks ==============

    async def create_webhook(
        self,
        user_id: str,
        webhook_url: str,
        alert_ids: List[str],
        filters: Optional[Dict[str, Any]] = None,
        time_window: int = 30
    ) -> WebhookSubscription:
        subscription = WebhookSubscription(
            user_id=user_id,
            webhook_url=webhook_url,
            alert_ids=list(alert_ids),
            filters=filters or {},
            time_window=time_window,
            is_active=True,
        )
        self.session.add(subscription)
        await self._flush("create_webhook")
        logger.info("Webhook subscription created", subscription_id=subscription.id, user_id=user_id)
        return subscription

    async def list_webhooks(self, user_id: str) -> List[WebhookSubscription]:
        result = await self._execute(
            select(WebhookSubscription)
            .where(
                WebhookSubscription.user_id == user_id,
                WebhookSubscription.is_active.is_(True),
            )
            .order_by(desc(WebhookSubscription.created_at)),
            "list_webhooks",
        )
        return list(result.scalars().all())

    async def list_webhooks_for_alert(self, alert_id: str) -> List[WebhookSubscription]:
        # alert_ids is a JSON list, filtered here to stay portable across backends
        result = await self._execute(
            select(WebhookSubscription).where(WebhookSubscription.is_active.is_(True)),
            "list_webhooks_for_alert",
        )
        return [s for s in result.scalars().all() if alert_id in (s.alert_ids or [])]

    async def deactivate_webhook(self, user_id: str, subscription_id: str) -> WebhookSubscription:
        result = await self._execute(
            select(WebhookSubscription).where(
                WebhookSubscription.id == subscription_id,
                WebhookSubscription.user_id == user_id,
            ),
            "deactivate_webhook",
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)

        subscription.is_active = False
        await self._flush("deactivate_webhook")
        logger.info("Webhook subscription deactivated", subscription_id=subscription_id)
        return subscription
