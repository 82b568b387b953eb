"""Database package."""
from app.db.session import get_db, engine, async_session_maker
from app.db.models import (
    Base,
    Anomaly,
    AnomalyType,
    Severity,
    SubscriptionTier,
    UserSubscription,
    UsageRecord,
    WebhookSubscription,
)

__all__ = [
    "get_db",
    "engine",
    "async_session_maker",
    "Base",
    "Anomaly",
    "AnomalyType",
    "Severity",
    "SubscriptionTier",
    "UserSubscription",
    "UsageRecord",
    "WebhookSubscription",
]
