"""Error taxonomy for the intelligence service.

Each error carries the HTTP status the API layer maps it to, so handlers
never have to guess.
"""
from typing import Any, Dict, Optional


class IntelligenceError(Exception):
    """Base class for all service errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class AlertNotFoundError(IntelligenceError):
    """The primary alert (or another referenced record) does not exist."""

    status_code = 404

    def __init__(self, alert_id: str):
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id


class SubscriptionNotFoundError(IntelligenceError):
    status_code = 404

    def __init__(self, subscription_id: str):
        super().__init__(f"Webhook subscription {subscription_id} not found")
        self.subscription_id = subscription_id


class AuthenticationError(IntelligenceError):
    status_code = 401


class TierForbiddenError(IntelligenceError):
    """The caller's subscription tier does not include a feature."""

    status_code = 403

    def __init__(self, message: str, required_tier: str, current_tier: str):
        super().__init__(message)
        self.required_tier = required_tier
        self.current_tier = current_tier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "requiredTier": self.required_tier,
            "currentTier": self.current_tier,
        }


class UsageLimitReachedError(IntelligenceError):
    """Monthly analysis quota exhausted."""

    status_code = 403

    def __init__(
        self,
        message: str,
        cta: str,
        upgrade_to: Optional[str],
        current_month_count: int,
        monthly_limit: int
    ):
        super().__init__(message)
        self.cta = cta
        self.upgrade_to = upgrade_to
        self.current_month_count = current_month_count
        self.monthly_limit = monthly_limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "Monthly limit reached",
            "message": self.message,
            "cta": self.cta,
            "upgradeTo": self.upgrade_to,
            "usage": {
                "current_month_count": self.current_month_count,
                "monthly_limit": self.monthly_limit,
                "can_use": False,
            },
        }


class RequestValidationError(IntelligenceError):
    """Malformed input, rejected before any pipeline work."""

    status_code = 400


class RateLimitExceededError(IntelligenceError):
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message)


class TransientStoreError(IntelligenceError):
    """The data store could not be reached. Never retried or cached."""

    status_code = 503
