"""Baseline storage for watched alerts."""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from app.errors import TransientStoreError
from app.services.intelligence.models import IntelligenceSnapshot

logger = structlog.get_logger()


@dataclass
class Baseline:
    """Last observed figures for one watched alert."""
    alert_id: str
    cascading_impact: float
    overall_risk: float
    connected_ids: List[str] = field(default_factory=list)
    time_window: int = 30

    @classmethod
    def from_snapshot(cls, alert_id: str, snapshot: IntelligenceSnapshot, time_window: int) -> "Baseline":
        return cls(
            alert_id=alert_id,
            cascading_impact=snapshot.impact_cascade.cascading_impact,
            overall_risk=snapshot.risk_assessment.overall_risk,
            connected_ids=sorted(snapshot.connected_ids),
            time_window=time_window,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "cascading_impact": self.cascading_impact,
            "overall_risk": self.overall_risk,
            "connected_ids": list(self.connected_ids),
            "time_window": self.time_window,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Baseline":
        return cls(
            alert_id=data["alert_id"],
            cascading_impact=float(data["cascading_impact"]),
            overall_risk=float(data["overall_risk"]),
            connected_ids=list(data.get("connected_ids", [])),
            time_window=int(data.get("time_window", 30)),
        )


class BaselineStore(ABC):
    """One baseline per alert id."""

    @abstractmethod
    async def get(self, alert_id: str) -> Optional[Baseline]:
        pass

    @abstractmethod
    async def put(self, baseline: Baseline) -> None:
        pass

    @abstractmethod
    async def delete(self, alert_id: str) -> None:
        pass


class InMemoryBaselineStore(BaselineStore):
    def __init__(self):
        self._baselines: Dict[str, Baseline] = {}

    async def get(self, alert_id: str) -> Optional[Baseline]:
        baseline = self._baselines.get(alert_id)
        return Baseline.from_dict(baseline.to_dict()) if baseline else None

    async def put(self, baseline: Baseline) -> None:
        self._baselines[baseline.alert_id] = Baseline.from_dict(baseline.to_dict())

    async def delete(self, alert_id: str) -> None:
        self._baselines.pop(alert_id, None)


class RedisBaselineStore(BaselineStore):
    def __init__(self, client: redis.Redis, key_prefix: str = "intelligence:baseline:"):
        self._redis = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisBaselineStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, alert_id: str) -> Optional[Baseline]:
        try:
            raw = await self._redis.get(f"{self._prefix}{alert_id}")
        except RedisError as e:
            logger.error("Baseline read failed", alert_id=alert_id, error=str(e))
            raise TransientStoreError("Baseline store unavailable") from e
        return Baseline.from_dict(json.loads(raw)) if raw else None

    async def put(self, baseline: Baseline) -> None:
        try:
            await self._redis.set(
                f"{self._prefix}{baseline.alert_id}", json.dumps(baseline.to_dict())
            )
        except RedisError as e:
            logger.error("Baseline write failed", alert_id=baseline.alert_id, error=str(e))
            raise TransientStoreError("Baseline store unavailable") from e

    async def delete(self, alert_id: str) -> None:
        try:
            await self._redis.delete(f"{self._prefix}{alert_id}")
        except RedisError as e:
            logger.error("Baseline delete failed", alert_id=alert_id, error=str(e))
            raise TransientStoreError("Baseline store unavailable") from e
