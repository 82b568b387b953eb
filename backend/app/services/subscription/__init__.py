"""Subscription tiers, monthly quotas and feature gating."""

from app.services.subscription.tiers import (
    DEFAULT_TIER_LIMITS,
    Feature,
    TierLimits,
    get_promotion_message,
    resolve_limits,
)
from app.services.subscription.repository import SubscriptionRepository
from app.services.subscription.gate import TierContext, TierGate, UsageStatus

__all__ = [
    "DEFAULT_TIER_LIMITS",
    "Feature",
    "TierLimits",
    "get_promotion_message",
    "resolve_limits",
    "SubscriptionRepository",
    "TierContext",
    "TierGate",
    "UsageStatus",
]
