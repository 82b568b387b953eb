"""Subscription tier catalogue: limits, features and upgrade prompts."""
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional

from app.db.models import SubscriptionTier

UNLIMITED_ANALYSES = 999999


@dataclass(frozen=True)
class TierLimits:
    analyses_per_month: int
    max_time_window_days: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "analyses_per_month": self.analyses_per_month,
            "max_time_window_days": self.max_time_window_days,
        }


DEFAULT_TIER_LIMITS: Dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.FREE: TierLimits(analyses_per_month=5, max_time_window_days=30),
    SubscriptionTier.PROFESSIONAL: TierLimits(
        analyses_per_month=UNLIMITED_ANALYSES, max_time_window_days=90
    ),
    SubscriptionTier.ENTERPRISE: TierLimits(
        analyses_per_month=UNLIMITED_ANALYSES, max_time_window_days=180
    ),
}


class Feature:
    """Gated features."""
    BATCH_ANALYSIS = "batch_analysis"
    WEBHOOKS = "webhooks"
    PREDICTIONS = "ml_predictions"


TIER_FEATURES: Dict[SubscriptionTier, FrozenSet[str]] = {
    SubscriptionTier.FREE: frozenset(),
    SubscriptionTier.PROFESSIONAL: frozenset({Feature.BATCH_ANALYSIS}),
    SubscriptionTier.ENTERPRISE: frozenset({
        Feature.BATCH_ANALYSIS,
        Feature.WEBHOOKS,
        Feature.PREDICTIONS,
    }),
}

# Lowest tier that unlocks each feature, with the message shown on refusal
FEATURE_REQUIREMENTS: Dict[str, Dict[str, Any]] = {
    Feature.BATCH_ANALYSIS: {
        "tier": SubscriptionTier.PROFESSIONAL,
        "message": "Batch analysis requires Professional or Enterprise tier",
    },
    Feature.WEBHOOKS: {
        "tier": SubscriptionTier.ENTERPRISE,
        "message": "Webhook subscriptions require Enterprise tier",
    },
    Feature.PREDICTIONS: {
        "tier": SubscriptionTier.ENTERPRISE,
        "message": "ML predictions require Enterprise tier",
    },
}


def has_feature(tier: SubscriptionTier, feature: str) -> bool:
    return feature in TIER_FEATURES[tier]


def resolve_limits(
    tier: SubscriptionTier,
    usage_limits: Optional[Dict[str, Any]] = None
) -> TierLimits:
    """Tier defaults overridden by whatever the subscription record sets."""
    defaults = DEFAULT_TIER_LIMITS[tier]
    usage_limits = usage_limits or {}
    return TierLimits(
        analyses_per_month=int(
            usage_limits.get("analyses_per_month") or defaults.analyses_per_month
        ),
        max_time_window_days=int(
            usage_limits.get("max_time_window_days") or defaults.max_time_window_days
        ),
    )


def get_promotion_message(reached_limit: bool, current_tier: SubscriptionTier) -> Dict[str, Any]:
    if not reached_limit:
        return {"message": "", "cta": "", "upgradeTo": None}

    if current_tier == SubscriptionTier.FREE:
        return {
            "message": (
                "You've reached your monthly limit of 5 analyses. "
                "Upgrade to Professional for unlimited access."
            ),
            "cta": "Upgrade to Professional - RM 499/month",
            "upgradeTo": SubscriptionTier.PROFESSIONAL.value,
        }

    return {
        "message": "You've reached your monthly limit. Contact us for an Enterprise plan.",
        "cta": "Contact Sales",
        "upgradeTo": SubscriptionTier.ENTERPRISE.value,
    }


FREE_TIER_UPGRADE_HINT = (
    "Showing the top connected factors only. "
    "Upgrade to Professional to see every connection."
)
