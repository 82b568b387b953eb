"""Polling change monitor and periodic risk scanner."""

from app.services.monitoring.events import ConnectionUpdate, UpdateType, STATUS_MESSAGES
from app.services.monitoring.baseline import (
    Baseline,
    BaselineStore,
    InMemoryBaselineStore,
    RedisBaselineStore,
)
from app.services.monitoring.monitor import ChangeDetector, ChangeMonitor, RiskScanner, WatchHandle

__all__ = [
    "ConnectionUpdate",
    "UpdateType",
    "STATUS_MESSAGES",
    "Baseline",
    "BaselineStore",
    "InMemoryBaselineStore",
    "RedisBaselineStore",
    "ChangeDetector",
    "ChangeMonitor",
    "RiskScanner",
    "WatchHandle",
]
