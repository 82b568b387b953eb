"""
Tests for webhook subscriptions, delivery and request protection.

Tests cover:
- Subscription persistence
- Payload building and update filters
- Fan-out to matching subscriptions
- HTTP delivery without retries
- Key/value store, rate limiting and idempotent replay
"""

import httpx
import pytest
from unittest.mock import Mock

from app.core.protection import IdempotencyCache, RateLimiter
from app.core.store import InMemoryKeyValueStore, create_store
from app.errors import RateLimitExceededError, RequestValidationError, SubscriptionNotFoundError
from app.services.monitoring.events import ConnectionUpdate, UpdateType
from app.services.subscription.repository import SubscriptionRepository
from app.services.webhooks import dispatcher
from app.services.webhooks.dispatcher import (
    WebhookNotifier,
    build_payload,
    deliver_webhook,
    validate_webhook_url,
    wants_update,
)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def cascade_update():
    return ConnectionUpdate(
        type=UpdateType.CASCADE_UPDATE,
        alert_id="A",
        data={"cascade_impact": 52.1, "impact_change": 8.4},
        timestamp="2025-06-15T12:00:00",
    )


@pytest.fixture
def mock_transport(monkeypatch):
    """Route every httpx.Client through a recording MockTransport."""
    calls = []
    state = {"status": 200}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(state["status"], json={"ok": True})

    transport = httpx.MockTransport(handler)
    real_client = httpx.Client
    monkeypatch.setattr(
        dispatcher.httpx, "Client", lambda **kwargs: real_client(transport=transport, **kwargs)
    )
    return calls, state


# =============================================================================
# Test Subscription Repository
# =============================================================================

class TestWebhookSubscriptions:
    """Tests for webhook subscription persistence."""

    async def test_create_and_list(self, subscription_repository):
        created = await subscription_repository.create_webhook(
            "u-ent", "https://hooks.example.com/a", ["A", "B"], time_window=60
        )

        listed = await subscription_repository.list_webhooks("u-ent")

        assert [s.id for s in listed] == [created.id]
        assert listed[0].to_dict()["alert_ids"] == ["A", "B"]
        assert await subscription_repository.list_webhooks("someone-else") == []

    async def test_lookup_by_alert(self, subscription_repository):
        await subscription_repository.create_webhook("u1", "https://x.example.com", ["A"])
        await subscription_repository.create_webhook("u2", "https://y.example.com", ["B"])

        matches = await subscription_repository.list_webhooks_for_alert("A")

        assert [s.user_id for s in matches] == ["u1"]

    async def test_deactivate(self, subscription_repository):
        created = await subscription_repository.create_webhook("u1", "https://x.example.com", ["A"])

        deactivated = await subscription_repository.deactivate_webhook("u1", created.id)

        assert deactivated.is_active is False
        assert await subscription_repository.list_webhooks("u1") == []
        assert await subscription_repository.list_webhooks_for_alert("A") == []

    async def test_deactivate_foreign_subscription(self, subscription_repository):
        created = await subscription_repository.create_webhook("u1", "https://x.example.com", ["A"])

        with pytest.raises(SubscriptionNotFoundError):
            await subscription_repository.deactivate_webhook("u2", created.id)


# =============================================================================
# Test Dispatch
# =============================================================================

class TestDispatch:
    """Tests for payloads, filters and fan-out."""

    @pytest.mark.parametrize("url", [
        "https://hooks.example.com/path",
        "http://localhost:9000/hook",
    ])
    def test_valid_urls(self, url):
        assert validate_webhook_url(url) == url

    @pytest.mark.parametrize("url", ["", "not a url", "ftp://example.com/x", "https://"])
    def test_invalid_urls(self, url):
        with pytest.raises(RequestValidationError, match="Invalid webhook URL format"):
            validate_webhook_url(url)

    def test_payload_shape(self, cascade_update):
        assert build_payload(cascade_update) == {
            "type": "connection_update",
            "alert_id": "A",
            "timestamp": "2025-06-15T12:00:00",
            "update_type": "cascade_update",
            "data": {"cascade_impact": 52.1, "impact_change": 8.4},
        }

    async def test_update_type_filter(self, subscription_repository, cascade_update):
        unfiltered = await subscription_repository.create_webhook("u1", "https://x.example.com", ["A"])
        risk_only = await subscription_repository.create_webhook(
            "u1", "https://y.example.com", ["A"], filters={"update_types": ["risk_change"]}
        )

        assert wants_update(unfiltered, cascade_update) is True
        assert wants_update(risk_only, cascade_update) is False

    async def test_notifier_enqueues_matching(self, test_session_maker, cascade_update):
        async with test_session_maker() as session:
            repository = SubscriptionRepository(session)
            await repository.create_webhook("u1", "https://x.example.com/a", ["A"])
            await repository.create_webhook("u2", "https://y.example.com/b", ["B"])
            await repository.create_webhook(
                "u3", "https://z.example.com/c", ["A"], filters={"update_types": ["new_connection"]}
            )
            await session.commit()

        enqueue = Mock()
        notifier = WebhookNotifier(test_session_maker, enqueue=enqueue)

        count = await notifier(cascade_update)

        assert count == 1
        enqueue.assert_called_once_with("https://x.example.com/a", build_payload(cascade_update))


# =============================================================================
# Test Delivery
# =============================================================================

class TestDelivery:
    """Tests for deliver_webhook."""

    def test_successful_delivery(self, mock_transport, cascade_update):
        calls, _ = mock_transport

        assert deliver_webhook("https://hooks.example.com/a", build_payload(cascade_update)) is True
        assert len(calls) == 1
        assert calls[0].method == "POST"
        assert b'"update_type":"cascade_update"' in calls[0].content.replace(b" ", b"")

    def test_failed_delivery_is_not_retried(self, mock_transport, cascade_update):
        calls, state = mock_transport
        state["status"] = 503

        assert deliver_webhook("https://hooks.example.com/a", build_payload(cascade_update)) is False
        assert len(calls) == 1


# =============================================================================
# Test Request Protection
# =============================================================================

class TestKeyValueStore:
    """Tests for the in-memory key/value store."""

    async def test_json_values(self):
        store = InMemoryKeyValueStore()
        await store.set("k", {"a": [1, 2]})

        assert await store.get("k") == {"a": [1, 2]}
        await store.delete("k")
        assert await store.get("k") is None

    async def test_expired_value_is_gone(self):
        store = InMemoryKeyValueStore()
        await store.set("k", 1, ttl_seconds=-1)
        assert await store.get("k") is None

    async def test_incr(self):
        store = InMemoryKeyValueStore()
        assert await store.incr("c", 60) == 1
        assert await store.incr("c", 60) == 2

    def test_default_backend_is_memory(self):
        assert isinstance(create_store("memory"), InMemoryKeyValueStore)


class TestRateLimiter:
    """Tests for RateLimiter."""

    async def test_limit_per_key(self):
        limiter = RateLimiter(InMemoryKeyValueStore(), limit=2, window_seconds=60)

        await limiter.hit("user:a")
        await limiter.hit("user:a")
        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.hit("user:a")

        assert exc_info.value.status_code == 429
        assert await limiter.hit("user:b") == 1


class TestIdempotencyCache:
    """Tests for IdempotencyCache."""

    async def test_replay_is_scoped_per_user(self):
        cache = IdempotencyCache(InMemoryKeyValueStore(), ttl_seconds=60)
        await cache.put("u1", "key-1", {"subscription_id": "s-1"})

        assert await cache.get("u1", "key-1") == {"subscription_id": "s-1"}
        assert await cache.get("u2", "key-1") is None
