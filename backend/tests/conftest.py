"""Pytest configuration and fixtures."""
import asyncio
import pytest
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncGenerator, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.clock import utcnow
from app.db.models import Base, AnomalyType, Severity, SubscriptionTier, UserSubscription
from app.services.intelligence.engine import IntelligenceEngine
from app.services.intelligence.models import AnomalyRecord, build_anomaly
from app.services.intelligence.repository import AnomalyRepository
from app.services.subscription.gate import TierGate
from app.services.subscription.repository import SubscriptionRepository


# Create test database engine (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed reference instant for pure engine tests
NOW = datetime(2025, 6, 15, 12, 0, 0)


class InMemoryAnomalyRepository(AnomalyRepository):
    """Anomaly repository over a dict, with one suspension point per lookup."""

    def __init__(self, anomalies: Optional[List[AnomalyRecord]] = None):
        self.anomalies: Dict[str, AnomalyRecord] = {}
        for anomaly in anomalies or []:
            self.add(anomaly)

    def add(self, anomaly: AnomalyRecord) -> None:
        self.anomalies[anomaly.id] = anomaly

    async def get_anomaly(self, anomaly_id: str) -> Optional[AnomalyRecord]:
        await asyncio.sleep(0)
        return self.anomalies.get(anomaly_id)

    async def list_in_window(self, start, end, exclude_id=None) -> List[AnomalyRecord]:
        await asyncio.sleep(0)
        return [
            a for a in sorted(self.anomalies.values(), key=lambda a: (a.timestamp, a.id))
            if start <= a.timestamp <= end and a.id != exclude_id
        ]

    async def list_recent_ids(self, limit: int) -> List[str]:
        ordered = sorted(self.anomalies.values(), key=lambda a: (-a.timestamp.timestamp(), a.id))
        return [a.id for a in ordered[:limit]]


def make_engine_factory(repository: AnomalyRepository):
    """Engine factory over a shared in-memory repository."""

    @asynccontextmanager
    async def open_engine():
        yield IntelligenceEngine(repository)

    return open_engine


def anomaly(
    id: str,
    type: AnomalyType,
    severity: Severity,
    timestamp: datetime,
    **metadata
) -> AnomalyRecord:
    return build_anomaly(id, type, severity, timestamp, metadata)


def abc_anomalies(now: datetime) -> List[AnomalyRecord]:
    """
    Primary A with one correlated anomaly B and one unrelated anomaly C.

    B shares A's product and sits two days earlier; C is outside a 30-day window.
    """
    return [
        anomaly("A", AnomalyType.PRICE_SPIKE, Severity.HIGH, now, product_id="P-100"),
        anomaly(
            "B", AnomalyType.FREIGHT_SURGE, Severity.CRITICAL, now - timedelta(days=2),
            product_id="P-100",
        ),
        anomaly(
            "C", AnomalyType.TARIFF_CHANGE, Severity.LOW, now - timedelta(days=60),
            hs_code="8471.30",
        ),
    ]


@pytest.fixture
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def test_session_maker(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(test_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with test_session_maker() as session:
        yield session


@pytest.fixture
def subscription_repository(db_session):
    return SubscriptionRepository(db_session)


@pytest.fixture
def tier_gate(subscription_repository):
    return TierGate(subscription_repository)


@pytest.fixture
def subscribe_user(db_session):
    """Give a user an active subscription at ``tier``."""

    async def _subscribe(user_id: str, tier: SubscriptionTier, usage_limits=None):
        subscription = UserSubscription(
            user_id=user_id,
            tier=tier,
            usage_limits=usage_limits or {},
            is_active=True,
        )
        db_session.add(subscription)
        await db_session.flush()
        return subscription

    return _subscribe


@pytest.fixture
def abc_repository():
    """A/B/C scenario anchored at the fixed reference instant."""
    return InMemoryAnomalyRepository(abc_anomalies(NOW))


@pytest.fixture
def live_abc_repository():
    """A/B/C scenario anchored at the current time, for code that reads the clock."""
    return InMemoryAnomalyRepository(abc_anomalies(utcnow()))
