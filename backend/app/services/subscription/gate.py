"""
Tier/Quota Gate.

Resolves the caller's tier, clamps the requested time window to the tier
ceiling, enforces the monthly analysis quota and feature access, and records
usage once an analysis has succeeded.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import structlog

from app.clock import start_of_month, utcnow
from app.db.models import SubscriptionTier
from app.errors import TierForbiddenError, UsageLimitReachedError
from app.services.subscription.repository import SubscriptionRepository
from app.services.subscription.tiers import (
    FEATURE_REQUIREMENTS,
    TierLimits,
    get_promotion_message,
    has_feature,
    resolve_limits,
)

logger = structlog.get_logger()

CONNECTION_ANALYSIS = "connection"


@dataclass(frozen=True)
class TierContext:
    user_id: str
    tier: SubscriptionTier
    limits: TierLimits


@dataclass
class UsageStatus:
    current_month_count: int
    monthly_limit: int

    @property
    def can_use(self) -> bool:
        return self.current_month_count < self.monthly_limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_month_count": self.current_month_count,
            "monthly_limit": self.monthly_limit,
            "can_use": self.can_use,
        }


class TierGate:
    """Access control in front of the intelligence engine."""

    def __init__(self, repository: SubscriptionRepository):
        self.repository = repository

    async def resolve(self, user_id: str) -> TierContext:
        """Caller's tier and limits; free tier when no active subscription exists."""
        subscription = await self.repository.get_active_subscription(user_id)
        if subscription is None:
            tier = SubscriptionTier.FREE
            limits = resolve_limits(tier)
        else:
            tier = subscription.tier
            limits = resolve_limits(tier, subscription.usage_limits)

        return TierContext(user_id=user_id, tier=tier, limits=limits)

    def clamp_window(self, context: TierContext, requested_days: int) -> Tuple[int, bool]:
        """Return (effective window, whether it was clamped)."""
        ceiling = context.limits.max_time_window_days
        if requested_days > ceiling:
            return ceiling, True
        return requested_days, False

    async def usage(self, context: TierContext, now: Optional[datetime] = None) -> UsageStatus:
        count = await self.repository.count_usage_since(
            context.user_id,
            start_of_month(now or utcnow()),
            analysis_type=CONNECTION_ANALYSIS,
        )
        return UsageStatus(
            current_month_count=count,
            monthly_limit=context.limits.analyses_per_month,
        )

    async def check_usage(self, context: TierContext, now: Optional[datetime] = None) -> UsageStatus:
        """
        Current month usage.

        Raises:
            UsageLimitReachedError: quota exhausted, with the upgrade prompt
        """
        status = await self.usage(context, now=now)
        if not status.can_use:
            promotion = get_promotion_message(True, context.tier)
            logger.info(
                "Monthly analysis limit reached",
                user_id=context.user_id,
                tier=context.tier.value,
                count=status.current_month_count,
            )
            raise UsageLimitReachedError(
                message=promotion["message"],
                cta=promotion["cta"],
                upgrade_to=promotion["upgradeTo"],
                current_month_count=status.current_month_count,
                monthly_limit=status.monthly_limit,
            )
        return status

    def require_feature(self, context: TierContext, feature: str) -> None:
        """Raises TierForbiddenError unless the tier includes ``feature``."""
        if has_feature(context.tier, feature):
            return

        requirement = FEATURE_REQUIREMENTS[feature]
        logger.info(
            "Feature denied by tier",
            user_id=context.user_id,
            feature=feature,
            tier=context.tier.value,
        )
        raise TierForbiddenError(
            requirement["message"],
            required_tier=requirement["tier"].value,
            current_tier=context.tier.value,
        )

    async def record_usage(
        self,
        context: TierContext,
        alert_id: str,
        time_window: int,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        meta = {"tier": context.tier.value}
        meta.update(metadata or {})
        await self.repository.add_usage(
            context.user_id,
            alert_id,
            time_window,
            analysis_type=CONNECTION_ANALYSIS,
            metadata=meta,
        )
