"""
Change Monitor.

Polls the engine for watched alerts and turns differences against a stored
baseline into ``ConnectionUpdate`` events:

- cascade_update: |delta cascading_impact| above the threshold
- risk_change: overall_risk crossed the risk threshold upward
- new_connection: a connected id not present at the previous check

Each watch is an independent asyncio task touching only its own baseline.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

import structlog

from app.config import settings
from app.services.intelligence.engine import EngineFactory
from app.services.intelligence.models import IntelligenceSnapshot
from app.services.monitoring.baseline import Baseline, BaselineStore, InMemoryBaselineStore
from app.services.monitoring.events import ConnectionUpdate, UpdateType

logger = structlog.get_logger()

UpdateCallback = Callable[[ConnectionUpdate], Awaitable[None]]

_END = object()


class ChangeDetector:
    """Pure comparison of a fresh snapshot against a baseline."""

    def __init__(
        self,
        delta_threshold: Optional[float] = None,
        risk_threshold: Optional[float] = None
    ):
        self.delta_threshold = (
            settings.CASCADE_DELTA_THRESHOLD if delta_threshold is None else delta_threshold
        )
        self.risk_threshold = settings.RISK_THRESHOLD if risk_threshold is None else risk_threshold

    def compare(
        self,
        baseline: Baseline,
        snapshot: IntelligenceSnapshot
    ) -> Tuple[List[ConnectionUpdate], Baseline]:
        """Return (events, next baseline)."""
        alert_id = baseline.alert_id
        impact = snapshot.impact_cascade.cascading_impact
        risk = snapshot.risk_assessment.overall_risk
        events: List[ConnectionUpdate] = []

        next_impact = baseline.cascading_impact
        delta = impact - baseline.cascading_impact
        if abs(delta) > self.delta_threshold:
            events.append(ConnectionUpdate(
                type=UpdateType.CASCADE_UPDATE,
                alert_id=alert_id,
                data={"cascade_impact": impact, "impact_change": round(delta, 2)},
            ))
            next_impact = impact

        if baseline.overall_risk < self.risk_threshold <= risk:
            events.append(ConnectionUpdate(
                type=UpdateType.RISK_CHANGE,
                alert_id=alert_id,
                data={
                    "overall_risk": risk,
                    "risk_change": round(risk - baseline.overall_risk, 2),
                    "cascade_impact": impact,
                },
            ))

        known = set(baseline.connected_ids)
        scores = {f.id: f.correlation_score for f in snapshot.connected_factors}
        new_ids = sorted(set(scores) - known)
        if new_ids:
            events.append(ConnectionUpdate(
                type=UpdateType.NEW_CONNECTION,
                alert_id=alert_id,
                data={
                    "connection_id": new_ids[0],
                    "connection_ids": new_ids,
                    "correlation_score": scores[new_ids[0]],
                },
            ))

        next_baseline = Baseline(
            alert_id=alert_id,
            cascading_impact=next_impact,
            overall_risk=risk,
            connected_ids=sorted(scores),
            time_window=baseline.time_window,
        )
        return events, next_baseline


class WatchHandle:
    """
    Async iterator over a watch's events and its cancellation token.

    Iteration ends once the watch is cancelled and queued events are drained.
    Handles that nobody iterates should be created with ``buffer_events=False``.
    Otherwise at most ``max_buffered`` events are held and the oldest is
    dropped when the buffer is full.
    """

    def __init__(
        self,
        alert_id: str,
        time_window: int,
        buffer_events: bool = True,
        max_buffered: Optional[int] = None
    ):
        self.alert_id = alert_id
        self.time_window = time_window
        self.buffer_events = buffer_events
        self.max_buffered = settings.MONITOR_EVENT_BUFFER if max_buffered is None else max_buffered
        # one extra slot for the end sentinel
        self._queue: "asyncio.Queue" = asyncio.Queue(maxsize=self.max_buffered + 1)
        self._task: Optional[asyncio.Task] = None
        self._on_cancel: Optional[Callable[[], None]] = None
        self.cancelled = False
        self.dropped = 0

    def _attach(self, task: asyncio.Task, on_cancel: Callable[[], None]) -> None:
        self._task = task
        self._on_cancel = on_cancel

    def _emit(self, update: ConnectionUpdate) -> None:
        if not self.buffer_events or self.cancelled or self.max_buffered <= 0:
            return
        if self._queue.qsize() >= self.max_buffered:
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning("Watch event buffer full, dropped oldest", alert_id=self.alert_id)
        self._queue.put_nowait(update)

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._task is not None:
            self._task.cancel()
        if self._on_cancel is not None:
            self._on_cancel()
        self._queue.put_nowait(_END)

    async def wait_closed(self) -> None:
        """Wait for the polling task to finish after ``cancel``."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def __aiter__(self) -> AsyncIterator[ConnectionUpdate]:
        return self

    async def __anext__(self) -> ConnectionUpdate:
        item = await self._queue.get()
        if item is _END:
            # keep the sentinel so later iterations also stop
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return item


class ChangeMonitor:
    """Polling monitor with one task per watched alert."""

    def __init__(
        self,
        engine_factory: EngineFactory,
        baseline_store: Optional[BaselineStore] = None,
        detector: Optional[ChangeDetector] = None,
        interval_seconds: Optional[float] = None,
        on_update: Optional[UpdateCallback] = None
    ):
        self.engine_factory = engine_factory
        self.baseline_store = baseline_store or InMemoryBaselineStore()
        self.detector = detector or ChangeDetector()
        self.interval_seconds = (
            settings.MONITOR_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self.on_update = on_update
        self._watches: Dict[str, WatchHandle] = {}

    async def _analyze(self, alert_id: str, window_days: int) -> IntelligenceSnapshot:
        async with self.engine_factory() as engine:
            return await engine.analyze(alert_id, window_days)

    async def watch(
        self,
        alert_id: str,
        window_days: int = 30,
        buffer_events: bool = True
    ) -> WatchHandle:
        """
        Start watching ``alert_id``.

        The baseline analysis runs before this returns, so a missing alert
        raises AlertNotFoundError here rather than inside the task. An
        existing watch for the same alert is replaced; its task has finished
        before the new baseline is stored. Pass ``buffer_events=False`` when
        the handle will not be iterated and events are consumed through
        ``on_update`` only.
        """
        snapshot = await self._analyze(alert_id, window_days)

        existing = self._watches.get(alert_id)
        if existing is not None:
            existing.cancel()
            await existing.wait_closed()

        await self.baseline_store.put(Baseline.from_snapshot(alert_id, snapshot, window_days))

        handle = WatchHandle(alert_id, window_days, buffer_events=buffer_events)
        task = asyncio.create_task(self._run(handle), name=f"watch:{alert_id}")
        handle._attach(task, lambda: self._forget(handle))
        self._watches[alert_id] = handle

        logger.info(
            "Monitoring started",
            alert_id=alert_id,
            window_days=window_days,
            interval_seconds=self.interval_seconds,
        )
        return handle

    def _forget(self, handle: WatchHandle) -> None:
        if self._watches.get(handle.alert_id) is handle:
            del self._watches[handle.alert_id]

    def get_watch(self, alert_id: str) -> Optional[WatchHandle]:
        return self._watches.get(alert_id)

    def active_alert_ids(self) -> List[str]:
        return sorted(self._watches)

    async def stop(self, alert_id: str) -> bool:
        handle = self._watches.get(alert_id)
        if handle is None:
            return False
        handle.cancel()
        await handle.wait_closed()
        await self.baseline_store.delete(alert_id)
        logger.info("Monitoring stopped", alert_id=alert_id)
        return True

    async def shutdown(self) -> None:
        handles = list(self._watches.values())
        for handle in handles:
            handle.cancel()
        await asyncio.gather(*(h.wait_closed() for h in handles))

    async def _run(self, handle: WatchHandle) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                events = await self.tick(handle.alert_id, handle.time_window)
            except Exception as e:
                logger.error("Monitor tick failed", alert_id=handle.alert_id, error=str(e))
                continue

            for event in events:
                handle._emit(event)
                await self._notify(event)

    async def tick(self, alert_id: str, window_days: int) -> List[ConnectionUpdate]:
        """One poll: analyze, diff against the baseline, store the new baseline."""
        snapshot = await self._analyze(alert_id, window_days)
        baseline = await self.baseline_store.get(alert_id)
        if baseline is None:
            await self.baseline_store.put(Baseline.from_snapshot(alert_id, snapshot, window_days))
            return []

        events, next_baseline = self.detector.compare(baseline, snapshot)
        await self.baseline_store.put(next_baseline)

        if events:
            logger.info(
                "Connection updates detected",
                alert_id=alert_id,
                updates=[e.type.value for e in events],
            )
        return events

    async def _notify(self, event: ConnectionUpdate) -> None:
        if self.on_update is None:
            return
        try:
            await self.on_update(event)
        except Exception as e:
            logger.error("Update callback failed", alert_id=event.alert_id, error=str(e))


class RiskScanner:
    """
    Periodic scan of the most recent alerts.

    Emits ``risk_change`` for every scanned alert whose overall risk is at or
    above the threshold.
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        limit: Optional[int] = None,
        window_days: Optional[int] = None,
        interval_seconds: Optional[float] = None,
        risk_threshold: Optional[float] = None,
        on_update: Optional[UpdateCallback] = None
    ):
        self.engine_factory = engine_factory
        self.limit = settings.RISK_SCAN_LIMIT if limit is None else limit
        self.window_days = settings.RISK_SCAN_WINDOW_DAYS if window_days is None else window_days
        self.interval_seconds = (
            settings.RISK_SCAN_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self.risk_threshold = settings.RISK_THRESHOLD if risk_threshold is None else risk_threshold
        self.on_update = on_update
        self._task: Optional[asyncio.Task] = None

    async def scan_once(self) -> List[ConnectionUpdate]:
        async with self.engine_factory() as engine:
            alert_ids = await engine.recent_alert_ids(self.limit)

        events = []
        for alert_id in alert_ids:
            try:
                async with self.engine_factory() as engine:
                    snapshot = await engine.analyze(alert_id, self.window_days)
            except Exception as e:
                logger.warning("Risk scan skipped alert", alert_id=alert_id, error=str(e))
                continue

            risk = snapshot.risk_assessment.overall_risk
            if risk >= self.risk_threshold:
                events.append(ConnectionUpdate(
                    type=UpdateType.RISK_CHANGE,
                    alert_id=alert_id,
                    data={
                        "overall_risk": risk,
                        "cascade_impact": snapshot.impact_cascade.cascading_impact,
                    },
                ))

        logger.info("Risk scan complete", scanned=len(alert_ids), above_threshold=len(events))
        return events

    async def _run(self) -> None:
        while True:
            try:
                events = await self.scan_once()
            except Exception as e:
                logger.error("Risk scan failed", error=str(e))
                events = []

            for event in events:
                if self.on_update is None:
                    continue
                try:
                    await self.on_update(event)
                except Exception as e:
                    logger.error("Update callback failed", alert_id=event.alert_id, error=str(e))

            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="risk-scanner")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
