"""FastAPI dependencies: caller identity, services and shared stores."""
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.protection import IdempotencyCache, RateLimiter
from app.core.store import KeyValueStore
from app.db import get_db, async_session_maker
from app.errors import AuthenticationError
from app.services.intelligence.engine import EngineFactory, sql_engine_factory
from app.services.intelligence.service import IntelligenceService
from app.services.monitoring.monitor import ChangeMonitor
from app.services.subscription.gate import TierGate
from app.services.subscription.repository import SubscriptionRepository


async def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """Caller identity, resolved upstream and passed in the X-User-Id header."""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError("Authentication required")
    return x_user_id.strip()


def get_engine_factory() -> EngineFactory:
    return sql_engine_factory(async_session_maker)


def get_store(request: Request) -> KeyValueStore:
    return request.app.state.store


def get_monitor(request: Request) -> ChangeMonitor:
    return request.app.state.monitor


def get_subscription_repository(db: AsyncSession = Depends(get_db)) -> SubscriptionRepository:
    return SubscriptionRepository(db)


def get_intelligence_service(
    repository: SubscriptionRepository = Depends(get_subscription_repository),
    engine_factory: EngineFactory = Depends(get_engine_factory)
) -> IntelligenceService:
    return IntelligenceService(TierGate(repository), engine_factory)


def get_idempotency_cache(store: KeyValueStore = Depends(get_store)) -> IdempotencyCache:
    return IdempotencyCache(store)


async def enforce_rate_limit(
    user_id: str = Depends(get_user_id),
    store: KeyValueStore = Depends(get_store)
) -> None:
    await RateLimiter(store).hit(f"user:{user_id}")
