"""
Key/value store behind rate limits, idempotency results and monitor baselines.

Two implementations:
- InMemoryKeyValueStore: single process, used in tests and local runs
- RedisKeyValueStore: redis.asyncio, shared across workers
"""
import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from app.config import settings
from app.errors import TransientStoreError

logger = structlog.get_logger()


class KeyValueStore(ABC):
    """JSON values with optional expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        pass

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter; the expiry is set when the counter is created."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    async def close(self) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live(key)
        return json.loads(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        # JSON text, same as the Redis backend
        self._data[key] = (json.dumps(value), expires_at)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                self._data[key] = (json.dumps(1), time.monotonic() + ttl_seconds)
                return 1
            value, expires_at = entry
            count = json.loads(value) + 1
            self._data[key] = (json.dumps(count), expires_at)
            return count

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, client: redis.Redis, key_prefix: str = "intelligence:"):
        self._redis = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(redis.from_url(url, decode_responses=True))

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._redis.get(self._key(key))
        except RedisError as e:
            logger.error("Redis get failed", key=key, error=str(e))
            raise TransientStoreError("Key/value store unavailable") from e
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self._redis.set(self._key(key), json.dumps(value), ex=ttl_seconds)
        except RedisError as e:
            logger.error("Redis set failed", key=key, error=str(e))
            raise TransientStoreError("Key/value store unavailable") from e

    async def incr(self, key: str, ttl_seconds: int) -> int:
        redis_key = self._key(key)
        try:
            pipe = self._redis.pipeline()
            pipe.incr(redis_key)
            pipe.expire(redis_key, ttl_seconds, nx=True)
            results = await pipe.execute()
        except RedisError as e:
            logger.error("Redis incr failed", key=key, error=str(e))
            raise TransientStoreError("Key/value store unavailable") from e
        return int(results[0])

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(key))
        except RedisError as e:
            logger.error("Redis delete failed", key=key, error=str(e))
            raise TransientStoreError("Key/value store unavailable") from e

    async def close(self) -> None:
        await self._redis.aclose()


def create_store(backend: Optional[str] = None) -> KeyValueStore:
    backend = backend or settings.STORE_BACKEND
    if backend == "redis":
        logger.info("Using Redis key/value store", url=settings.REDIS_URL)
        return RedisKeyValueStore.from_url(settings.REDIS_URL)
    return InMemoryKeyValueStore()
