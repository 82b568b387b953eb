"""
Tests for the SQL repositories, store outages and the Celery tasks.

Task bodies are called directly; nothing goes through a broker.
"""

import pytest
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, Mock, patch

from sqlalchemy.exc import OperationalError

from app.clock import utcnow
from app.db.models import Anomaly, AnomalyType, Severity
from app.errors import TransientStoreError
from app.services.intelligence.engine import analyze_interconnected_intelligence
from app.services.intelligence.models import FreightSurgeAnomaly
from app.services.intelligence.repository import SqlAnomalyRepository
from app.services.subscription.repository import SubscriptionRepository
from app.services.webhooks import dispatcher
from app.workers import tasks


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
async def seeded_session_maker(test_session_maker):
    """The A/B/C scenario stored as anomaly rows."""
    now = utcnow()
    async with test_session_maker() as session:
        session.add_all([
            Anomaly(
                id="A", type=AnomalyType.PRICE_SPIKE, severity=Severity.HIGH,
                timestamp=now, metadata_json={"product_id": "P-100"},
            ),
            Anomaly(
                id="B", type=AnomalyType.FREIGHT_SURGE, severity=Severity.CRITICAL,
                timestamp=now - timedelta(days=2),
                metadata_json={"product_id": "P-100", "origin": "CN"},
            ),
            Anomaly(
                id="C", type=AnomalyType.TARIFF_CHANGE, severity=Severity.LOW,
                timestamp=now - timedelta(days=60), metadata_json={"hs_code": "8471.30"},
            ),
        ])
        await session.commit()
    return test_session_maker


def unreachable_session():
    """Session whose every round trip fails the way a dropped connection does."""
    error = OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))
    session = Mock()
    session.execute = AsyncMock(side_effect=error)
    session.flush = AsyncMock(side_effect=error)
    return session


# =============================================================================
# Test SQL Repository
# =============================================================================

class TestSqlAnomalyRepository:
    """Tests for SqlAnomalyRepository."""

    async def test_get_anomaly_builds_variant(self, seeded_session_maker):
        async with seeded_session_maker() as session:
            record = await SqlAnomalyRepository(session).get_anomaly("B")

        assert isinstance(record, FreightSurgeAnomaly)
        assert record.origin == "CN"
        assert record.severity == Severity.CRITICAL

    async def test_missing_anomaly(self, seeded_session_maker):
        async with seeded_session_maker() as session:
            assert await SqlAnomalyRepository(session).get_anomaly("nope") is None

    async def test_window_query(self, seeded_session_maker):
        now = utcnow()
        async with seeded_session_maker() as session:
            records = await SqlAnomalyRepository(session).list_in_window(
                now - timedelta(days=30), now, exclude_id="A"
            )

        assert [r.id for r in records] == ["B"]

    async def test_recent_ids(self, seeded_session_maker):
        async with seeded_session_maker() as session:
            assert await SqlAnomalyRepository(session).list_recent_ids(2) == ["A", "B"]

    async def test_analysis_over_database(self, seeded_session_maker):
        async with seeded_session_maker() as session:
            snapshot = await analyze_interconnected_intelligence(session, "A", 30)

        assert snapshot.connected_ids == ["B"]
        assert snapshot.impact_cascade.affected_supply_chain is True


# =============================================================================
# Test Tasks
# =============================================================================

class TestTasks:
    """Tests for Celery task bodies."""

    @patch("app.workers.tasks.deliver_webhook")
    def test_deliver_webhook_task(self, mock_deliver):
        mock_deliver.return_value = True

        result = tasks.deliver_webhook_task.run("https://hooks.example.com/a", {"alert_id": "A"})

        assert result == {"url": "https://hooks.example.com/a", "delivered": True}
        mock_deliver.assert_called_once_with("https://hooks.example.com/a", {"alert_id": "A"})

    async def test_scan_pushes_to_subscribers(self, seeded_session_maker, monkeypatch):
        async with seeded_session_maker() as session:
            await SubscriptionRepository(session).create_webhook(
                "u-ent", "https://hooks.example.com/a", ["A"]
            )
            await session.commit()

        @asynccontextmanager
        async def fake_task_session_maker():
            yield seeded_session_maker

        enqueue = Mock()
        monkeypatch.setattr(tasks, "task_session_maker", fake_task_session_maker)
        monkeypatch.setattr(dispatcher, "_enqueue_delivery", enqueue)
        monkeypatch.setattr(tasks.settings, "RISK_THRESHOLD", 40.0)

        events = await tasks._scan_risk_thresholds()

        assert [e["alert_id"] for e in events] == ["A"]
        assert events[0]["type"] == "risk_change"
        enqueue.assert_called_once()
        assert enqueue.call_args.args[0] == "https://hooks.example.com/a"
        assert enqueue.call_args.args[1]["update_type"] == "risk_change"


# =============================================================================
# Test Store Unavailable
# =============================================================================

class TestStoreUnavailable:
    """Driver errors surface as TransientStoreError."""

    async def test_anomaly_lookup(self):
        repository = SqlAnomalyRepository(unreachable_session())

        with pytest.raises(TransientStoreError) as exc_info:
            await repository.get_anomaly("A")

        assert exc_info.value.status_code == 503
        assert isinstance(exc_info.value.__cause__, OperationalError)

    async def test_window_query(self):
        now = utcnow()
        with pytest.raises(TransientStoreError, match="Anomaly store unavailable"):
            await SqlAnomalyRepository(unreachable_session()).list_in_window(
                now - timedelta(days=30), now
            )

    async def test_recent_ids(self):
        with pytest.raises(TransientStoreError):
            await SqlAnomalyRepository(unreachable_session()).list_recent_ids(5)

    async def test_lookup_is_not_retried(self):
        session = unreachable_session()

        with pytest.raises(TransientStoreError):
            await SqlAnomalyRepository(session).get_anomaly("A")

        assert session.execute.await_count == 1

    async def test_subscription_read(self):
        repository = SubscriptionRepository(unreachable_session())

        with pytest.raises(TransientStoreError, match="Subscription store unavailable"):
            await repository.get_active_subscription("u1")

    async def test_usage_write(self):
        repository = SubscriptionRepository(unreachable_session())

        with pytest.raises(TransientStoreError, match="Subscription store unavailable"):
            await repository.add_usage("u1", "A", 30)
