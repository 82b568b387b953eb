"""Database models for anomalies, subscriptions, usage and webhooks."""
import enum
import uuid
from typing import Dict, Any

from sqlalchemy import (
    Column, String, DateTime, Enum, Integer, Boolean, JSON, Index
)
from sqlalchemy.orm import DeclarativeBase

from app.clock import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class AnomalyType(str, enum.Enum):
    """Anomaly type enumeration."""
    PRICE_SPIKE = "price_spike"
    TARIFF_CHANGE = "tariff_change"
    FREIGHT_SURGE = "freight_surge"
    FX_VOLATILITY = "fx_volatility"
    CUSTOM = "custom"


class Severity(str, enum.Enum):
    """Anomaly severity levels, totally ordered low < medium < high < critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if isinstance(other, Severity):
            return self.rank < other.rank
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, Severity):
            return self.rank <= other.rank
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, Severity):
            return self.rank > other.rank
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, Severity):
            return self.rank >= other.rank
        return NotImplemented


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class SubscriptionTier(str, enum.Enum):
    """Subscription tiers, ordered by capability."""
    FREE = "free"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class Anomaly(Base):
    """
    An anomaly raised by the upstream detection layer.

    Alerts and anomalies share ids: the alert id a caller asks about is the
    id of its anomaly row. This service only reads the table.
    """

    __tablename__ = "anomalies"
    __table_args__ = (Index("ix_anomalies_timestamp", "timestamp"),)

    id = Column(String(64), primary_key=True, default=_new_id)
    type = Column(Enum(AnomalyType, values_callable=_enum_values), nullable=False)
    severity = Column(Enum(Severity, values_callable=_enum_values), nullable=False)
    status = Column(String(32), nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    metadata_json = Column(JSON, nullable=True, default=dict)

    def __repr__(self) -> str:
        return f"<Anomaly(id={self.id}, type={self.type}, severity={self.severity})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value if self.type else None,
            "severity": self.severity.value if self.severity else None,
            "status": self.status,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "metadata": self.metadata_json or {},
        }


class UserSubscription(Base):
    """Subscription tier record for a user."""

    __tablename__ = "user_subscriptions"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False, index=True)
    tier = Column(
        Enum(SubscriptionTier, values_callable=_enum_values),
        default=SubscriptionTier.FREE,
        nullable=False
    )
    usage_limits = Column(JSON, nullable=True, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<UserSubscription(user_id={self.user_id}, tier={self.tier})>"


class UsageRecord(Base):
    """One completed analysis. Append-only."""

    __tablename__ = "intelligence_analysis_usage"
    __table_args__ = (Index("ix_usage_user_created", "user_id", "created_at"),)

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False)
    alert_id = Column(String(64), nullable=False)
    analysis_type = Column(String(50), nullable=False, default="connection")
    time_window = Column(Integer, nullable=False)
    metadata_json = Column(JSON, nullable=True, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<UsageRecord(user_id={self.user_id}, alert_id={self.alert_id})>"


class WebhookSubscription(Base):
    """Push subscription for connection updates on a set of alerts."""

    __tablename__ = "intelligence_webhook_subscriptions"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False, index=True)
    webhook_url = Column(String(2048), nullable=False)
    alert_ids = Column(JSON, nullable=False, default=list)
    filters = Column(JSON, nullable=True, default=dict)
    time_window = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<WebhookSubscription(id={self.id}, user_id={self.user_id})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "webhook_url": self.webhook_url,
            "alert_ids": list(self.alert_ids or []),
            "filters": self.filters or {},
            "time_window": self.time_window,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
