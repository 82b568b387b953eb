"""Celery task definitions."""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.config import settings
from app.services.intelligence.engine import sql_engine_factory
from app.services.monitoring.monitor import RiskScanner
from app.services.webhooks.dispatcher import WebhookNotifier, deliver_webhook
from app.workers.celery_app import celery_app

logger = structlog.get_logger()


@asynccontextmanager
async def task_session_maker():
    """
    Session factory bound to a private engine.

    Each task runs in its own event loop, so it cannot share the API's
    pooled engine.
    """
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@celery_app.task(name="app.workers.tasks.deliver_webhook")
def deliver_webhook_task(url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Deliver one webhook payload. No retries."""
    delivered = deliver_webhook(url, payload)
    return {"url": url, "delivered": delivered}


async def _scan_risk_thresholds() -> List[Dict[str, Any]]:
    async with task_session_maker() as session_maker:
        scanner = RiskScanner(sql_engine_factory(session_maker))
        notifier = WebhookNotifier(session_maker)

        events = await scanner.scan_once()
        for event in events:
            await notifier(event)

    return [event.to_dict() for event in events]


@celery_app.task(name="app.workers.tasks.scan_risk_thresholds")
def scan_risk_thresholds() -> Dict[str, Any]:
    """
    One risk-scan pass over the most recent alerts.

    Runs on the beat schedule; alerts above the risk threshold are pushed to
    their webhook subscribers.
    """
    logger.info("Running risk threshold scan", limit=settings.RISK_SCAN_LIMIT)
    events = asyncio.run(_scan_risk_thresholds())
    return {"above_threshold": len(events), "events": events}
