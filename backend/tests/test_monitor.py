"""
Tests for change monitoring.

Tests cover:
- Change detection against a baseline
- Baseline stores
- Watch lifecycle, events and cancellation
- Event buffering for iterated and unread watches
- Periodic risk scanning
"""

import asyncio
import pytest
from contextlib import asynccontextmanager
from datetime import timedelta

from app.config import settings
from app.db.models import AnomalyType, Severity
from app.errors import AlertNotFoundError
from app.services.intelligence.models import (
    ConnectedFactor,
    ImpactCascade,
    IntelligenceSnapshot,
    RiskAssessment,
)
from app.services.intelligence.synthesizer import RiskSynthesizer
from app.services.monitoring.baseline import Baseline, InMemoryBaselineStore
from app.services.monitoring.events import ConnectionUpdate, UpdateType
from app.services.monitoring.monitor import ChangeDetector, ChangeMonitor, RiskScanner, WatchHandle

from tests.conftest import NOW, anomaly, make_engine_factory


# =============================================================================
# Test Fixtures
# =============================================================================

PRIMARY = anomaly("A", AnomalyType.PRICE_SPIKE, Severity.HIGH, NOW, product_id="P-100")


def snapshot_with(impact, risk, ids=()):
    factors = [
        ConnectedFactor(
            id=node_id,
            type=AnomalyType.FREIGHT_SURGE,
            severity=Severity.MEDIUM,
            timestamp=NOW - timedelta(days=1),
            correlation_score=0.8,
        )
        for node_id in ids
    ]
    return IntelligenceSnapshot(
        primary_alert=PRIMARY,
        connected_factors=factors,
        impact_cascade=ImpactCascade(cascading_impact=impact, total_factors=len(factors)),
        risk_assessment=RiskAssessment(overall_risk=risk),
        recommended_actions=[],
    )


def synthesized(*factor_specs):
    factors = [
        ConnectedFactor(
            id=node_id,
            type=AnomalyType.FREIGHT_SURGE,
            severity=severity,
            timestamp=NOW - timedelta(days=1),
            correlation_score=score,
        )
        for node_id, severity, score in factor_specs
    ]
    return RiskSynthesizer().synthesize(PRIMARY, factors)


class ScriptedEngine:
    def __init__(self, script):
        self.script = script

    async def analyze(self, alert_id, window_days, now=None):
        await asyncio.sleep(0)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        return step


def scripted_factory(*steps):
    """Engine factory returning the given snapshots (or raising errors) in order."""
    script = list(steps)

    @asynccontextmanager
    async def open_engine():
        yield ScriptedEngine(script)

    return open_engine


async def next_event(handle, timeout=2.0):
    return await asyncio.wait_for(handle.__anext__(), timeout)


class GatedEngine:
    """Answers the first 30-day analysis, then blocks 30-day ticks until the gate opens."""

    def __init__(self, gate, calls):
        self.gate = gate
        self.calls = calls

    async def analyze(self, alert_id, window_days, now=None):
        self.calls.append(window_days)
        if window_days == 30 and self.calls.count(30) > 1:
            await self.gate.wait()
        return synthesized(("B", Severity.CRITICAL, 0.9383))


def gated_factory(gate, calls):
    @asynccontextmanager
    async def open_engine():
        yield GatedEngine(gate, calls)

    return open_engine


# =============================================================================
# Test Change Detection
# =============================================================================

class TestChangeDetector:
    """Tests for ChangeDetector.compare."""

    def setup_method(self):
        self.detector = ChangeDetector(delta_threshold=5.0, risk_threshold=80.0)
        self.baseline = Baseline(alert_id="A", cascading_impact=40.0, overall_risk=50.0, connected_ids=["B"])

    def test_small_delta_is_silent(self):
        events, next_baseline = self.detector.compare(self.baseline, snapshot_with(43.0, 50.0, ["B"]))

        assert events == []
        assert next_baseline.cascading_impact == 40.0

    def test_small_deltas_accumulate(self):
        _, baseline = self.detector.compare(self.baseline, snapshot_with(43.0, 50.0, ["B"]))
        events, _ = self.detector.compare(baseline, snapshot_with(47.0, 50.0, ["B"]))

        assert [e.type for e in events] == [UpdateType.CASCADE_UPDATE]

    def test_cascade_update(self):
        events, next_baseline = self.detector.compare(self.baseline, snapshot_with(50.0, 50.0, ["B"]))

        assert len(events) == 1
        assert events[0].type == UpdateType.CASCADE_UPDATE
        assert events[0].data == {"cascade_impact": 50.0, "impact_change": 10.0}
        assert next_baseline.cascading_impact == 50.0

    def test_drop_is_reported(self):
        events, _ = self.detector.compare(self.baseline, snapshot_with(30.0, 50.0, ["B"]))
        assert events[0].data["impact_change"] == -10.0

    def test_risk_crossing_upward(self):
        baseline = Baseline(alert_id="A", cascading_impact=40.0, overall_risk=70.0, connected_ids=["B"])

        events, next_baseline = self.detector.compare(baseline, snapshot_with(40.0, 85.0, ["B"]))

        assert [e.type for e in events] == [UpdateType.RISK_CHANGE]
        assert events[0].data["overall_risk"] == 85.0
        assert events[0].data["risk_change"] == 15.0
        assert next_baseline.overall_risk == 85.0

    def test_staying_above_threshold_is_silent(self):
        baseline = Baseline(alert_id="A", cascading_impact=40.0, overall_risk=85.0, connected_ids=["B"])
        events, _ = self.detector.compare(baseline, snapshot_with(40.0, 90.0, ["B"]))
        assert events == []

    def test_new_connection(self):
        events, next_baseline = self.detector.compare(
            self.baseline, snapshot_with(40.0, 50.0, ["B", "D", "C"])
        )

        assert [e.type for e in events] == [UpdateType.NEW_CONNECTION]
        assert events[0].data["connection_id"] == "C"
        assert events[0].data["connection_ids"] == ["C", "D"]
        assert next_baseline.connected_ids == ["B", "C", "D"]

    def test_lost_connection_is_not_an_event(self):
        events, next_baseline = self.detector.compare(self.baseline, snapshot_with(40.0, 50.0, []))

        assert events == []
        assert next_baseline.connected_ids == []


# =============================================================================
# Test Baseline Store
# =============================================================================

class TestInMemoryBaselineStore:
    """Tests for InMemoryBaselineStore."""

    async def test_roundtrip_returns_copies(self):
        store = InMemoryBaselineStore()
        baseline = Baseline(alert_id="A", cascading_impact=1.0, overall_risk=2.0, connected_ids=["B"])

        await store.put(baseline)
        baseline.connected_ids.append("C")
        loaded = await store.get("A")

        assert loaded.connected_ids == ["B"]
        await store.delete("A")
        assert await store.get("A") is None


# =============================================================================
# Test Watches
# =============================================================================

class TestChangeMonitor:
    """Tests for ChangeMonitor watches."""

    async def test_watch_unknown_alert_raises(self, abc_repository):
        monitor = ChangeMonitor(make_engine_factory(abc_repository), interval_seconds=0)

        with pytest.raises(AlertNotFoundError):
            await monitor.watch("missing", 30)
        assert monitor.active_alert_ids() == []

    async def test_watch_stores_baseline(self):
        monitor = ChangeMonitor(scripted_factory(synthesized()), interval_seconds=3600)

        handle = await monitor.watch("A", 30)
        baseline = await monitor.baseline_store.get("A")

        assert baseline.cascading_impact == 0.0
        assert baseline.connected_ids == []
        assert monitor.get_watch("A") is handle
        await monitor.shutdown()

    async def test_watch_emits_changes(self):
        received = []

        async def on_update(update: ConnectionUpdate):
            received.append(update)

        monitor = ChangeMonitor(
            scripted_factory(synthesized(), synthesized(("B", Severity.CRITICAL, 0.9383))),
            interval_seconds=0,
            on_update=on_update,
        )

        handle = await monitor.watch("A", 30)
        first = await next_event(handle)
        second = await next_event(handle)

        assert first.type == UpdateType.CASCADE_UPDATE
        assert first.data["cascade_impact"] == pytest.approx(46.5, abs=0.01)
        assert second.type == UpdateType.NEW_CONNECTION
        assert second.data["connection_id"] == "B"
        assert [u.type for u in received[:2]] == [first.type, second.type]
        await monitor.shutdown()

    async def test_failed_tick_is_skipped(self):
        monitor = ChangeMonitor(
            scripted_factory(
                synthesized(),
                RuntimeError("store hiccup"),
                synthesized(("B", Severity.CRITICAL, 0.9383)),
            ),
            interval_seconds=0,
        )

        handle = await monitor.watch("A", 30)
        event = await next_event(handle)

        assert event.type == UpdateType.CASCADE_UPDATE
        assert not handle.cancelled
        await monitor.shutdown()

    async def test_failing_callback_does_not_stop_watch(self):
        async def on_update(update):
            raise RuntimeError("webhook queue down")

        monitor = ChangeMonitor(
            scripted_factory(synthesized(), synthesized(("B", Severity.CRITICAL, 0.9383))),
            interval_seconds=0,
            on_update=on_update,
        )

        handle = await monitor.watch("A", 30)
        assert (await next_event(handle)).type == UpdateType.CASCADE_UPDATE
        await monitor.shutdown()

    async def test_cancel_ends_iteration(self):
        monitor = ChangeMonitor(scripted_factory(synthesized()), interval_seconds=0)
        handle = await monitor.watch("A", 30)

        handle.cancel()
        events = [event async for event in handle]

        assert events == []
        assert handle.cancelled
        assert monitor.get_watch("A") is None
        # a second pass stops too
        assert [event async for event in handle] == []

    async def test_stop_removes_baseline(self):
        monitor = ChangeMonitor(scripted_factory(synthesized()), interval_seconds=3600)
        handle = await monitor.watch("A", 30)

        assert await monitor.stop("A") is True
        assert handle.cancelled
        assert await monitor.baseline_store.get("A") is None
        assert await monitor.stop("A") is False

    async def test_rewatch_replaces_existing(self):
        monitor = ChangeMonitor(scripted_factory(synthesized()), interval_seconds=3600)

        first = await monitor.watch("A", 30)
        second = await monitor.watch("A", 60)

        assert first.cancelled
        assert monitor.get_watch("A") is second
        assert monitor.active_alert_ids() == ["A"]
        await monitor.shutdown()
        assert monitor.active_alert_ids() == []

    async def test_rewatch_waits_for_running_tick(self):
        gate = asyncio.Event()
        calls = []
        monitor = ChangeMonitor(gated_factory(gate, calls), interval_seconds=0)

        first = await monitor.watch("A", 30)
        while calls.count(30) < 2:
            await asyncio.sleep(0)
        await monitor.watch("A", 60)

        assert first._task.done()
        assert (await monitor.baseline_store.get("A")).time_window == 60
        gate.set()
        await monitor.shutdown()

    async def test_stop_waits_for_running_tick(self):
        gate = asyncio.Event()
        calls = []
        monitor = ChangeMonitor(gated_factory(gate, calls), interval_seconds=0)

        handle = await monitor.watch("A", 30)
        while calls.count(30) < 2:
            await asyncio.sleep(0)
        await monitor.stop("A")
        gate.set()
        await asyncio.sleep(0)

        assert handle._task.done()
        assert await monitor.baseline_store.get("A") is None


# =============================================================================
# Test Event Buffering
# =============================================================================

def flapping_factory(flips=10):
    """Alternates between an empty and a connected snapshot, one change per tick."""
    connected = synthesized(("B", Severity.CRITICAL, 0.9383))
    steps = [synthesized()]
    for _ in range(flips):
        steps.extend([connected, synthesized()])
    return scripted_factory(*steps)


def collecting_callback(expected):
    received = []
    enough = asyncio.Event()

    async def on_update(update):
        received.append(update)
        if len(received) >= expected:
            enough.set()

    return on_update, received, enough


class TestWatchBuffering:
    """Tests for the per-watch event buffer."""

    async def test_full_buffer_drops_oldest(self):
        handle = WatchHandle("A", 30, max_buffered=2)
        updates = [
            ConnectionUpdate(type=UpdateType.CASCADE_UPDATE, alert_id="A", data={"n": n})
            for n in range(3)
        ]

        for update in updates:
            handle._emit(update)
        handle.cancel()

        assert [u.data["n"] async for u in handle] == [1, 2]
        assert handle.dropped == 1

    async def test_unbuffered_watch_keeps_nothing(self):
        on_update, received, enough = collecting_callback(10)
        monitor = ChangeMonitor(flapping_factory(), interval_seconds=0, on_update=on_update)

        handle = await monitor.watch("A", 30, buffer_events=False)
        await asyncio.wait_for(enough.wait(), 2.0)

        assert len(received) >= 10
        assert handle._queue.qsize() == 0
        await monitor.shutdown()

    async def test_unread_watch_stays_bounded(self, monkeypatch):
        monkeypatch.setattr(settings, "MONITOR_EVENT_BUFFER", 3)
        on_update, received, enough = collecting_callback(10)
        monitor = ChangeMonitor(flapping_factory(), interval_seconds=0, on_update=on_update)

        handle = await monitor.watch("A", 30)
        await asyncio.wait_for(enough.wait(), 2.0)

        assert handle._queue.qsize() <= 3
        assert handle.dropped >= len(received) - 3
        await monitor.shutdown()


# =============================================================================
# Test Risk Scanner
# =============================================================================

class TestRiskScanner:
    """Tests for RiskScanner."""

    async def test_scan_flags_alerts_above_threshold(self, live_abc_repository):
        scanner = RiskScanner(
            make_engine_factory(live_abc_repository),
            limit=10,
            window_days=30,
            risk_threshold=40.0,
        )

        events = await scanner.scan_once()

        assert [e.alert_id for e in events] == ["A"]
        assert events[0].type == UpdateType.RISK_CHANGE
        assert events[0].data["overall_risk"] >= 40.0

    async def test_high_threshold_is_quiet(self, live_abc_repository):
        scanner = RiskScanner(make_engine_factory(live_abc_repository), risk_threshold=80.0)
        assert await scanner.scan_once() == []

    async def test_start_and_stop(self, live_abc_repository):
        received = []

        async def on_update(update):
            received.append(update)

        scanner = RiskScanner(
            make_engine_factory(live_abc_repository),
            interval_seconds=3600,
            risk_threshold=40.0,
            on_update=on_update,
        )

        task = scanner.start()
        for _ in range(50):
            if received:
                break
            await asyncio.sleep(0.01)
        await scanner.stop()

        assert task.done()
        assert [u.alert_id for u in received] == ["A"]
