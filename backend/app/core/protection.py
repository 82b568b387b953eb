"""Per-caller rate limiting and idempotent replay of write requests."""
from typing import Any, Dict, Optional

import structlog

from app.config import settings
from app.core.store import KeyValueStore
from app.errors import RateLimitExceededError

logger = structlog.get_logger()


class RateLimiter:
    """Fixed-window request counter per key."""

    def __init__(
        self,
        store: KeyValueStore,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None
    ):
        self.store = store
        self.limit = settings.RATE_LIMIT_REQUESTS if limit is None else limit
        self.window_seconds = (
            settings.RATE_LIMIT_WINDOW_SECONDS if window_seconds is None else window_seconds
        )

    async def hit(self, key: str) -> int:
        """
        Count one request for ``key``.

        Raises:
            RateLimitExceededError: more than ``limit`` requests in the window
        """
        count = await self.store.incr(f"ratelimit:{key}", self.window_seconds)
        if count > self.limit:
            logger.warning(
                "Rate limit exceeded",
                key=key,
                limit=self.limit,
                window_seconds=self.window_seconds,
            )
            raise RateLimitExceededError()
        return count


class IdempotencyCache:
    """Stores the response of a keyed write so a retry gets the same answer."""

    def __init__(self, store: KeyValueStore, ttl_seconds: Optional[int] = None):
        self.store = store
        self.ttl_seconds = settings.IDEMPOTENCY_TTL_SECONDS if ttl_seconds is None else ttl_seconds

    @staticmethod
    def _key(user_id: str, idempotency_key: str) -> str:
        return f"idempotency:{user_id}:{idempotency_key}"

    async def get(self, user_id: str, idempotency_key: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(self._key(user_id, idempotency_key))

    async def put(self, user_id: str, idempotency_key: str, response: Dict[str, Any]) -> None:
        await self.store.set(self._key(user_id, idempotency_key), response, ttl_seconds=self.ttl_seconds)
