"""
Intelligence service: the tier gate wrapped around the engine.

Every public entry point resolves the caller's tier first, clamps the
requested window and enforces quota and feature access before any pipeline
work. Usage is only recorded for analyses that completed.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from app.clock import utcnow
from app.config import settings
from app.db.models import SubscriptionTier
from app.errors import IntelligenceError, RequestValidationError
from app.services.intelligence.engine import EngineFactory
from app.services.intelligence.models import IntelligenceSnapshot
from app.services.intelligence.predictor import (
    CascadePrediction,
    CascadePredictorProtocol,
    HeuristicCascadePredictor,
)
from app.services.subscription.gate import TierGate, UsageStatus
from app.services.subscription.tiers import FREE_TIER_UPGRADE_HINT, Feature

logger = structlog.get_logger()


@dataclass
class AnalysisResult:
    snapshot: IntelligenceSnapshot
    tier: SubscriptionTier
    time_window: int
    time_window_clamped: bool
    usage: UsageStatus
    total_factors_available: int
    upgrade_hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.snapshot.to_dict()
        data.update({
            "tier": self.tier.value,
            "time_window": self.time_window,
            "time_window_clamped": self.time_window_clamped,
            "usage": self.usage.to_dict(),
            "total_factors_available": self.total_factors_available,
            "upgrade_hint": self.upgrade_hint,
        })
        return data


@dataclass
class BatchResult:
    total_alerts: int
    time_window: int
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    usage: Optional[UsageStatus] = None

    @property
    def successful(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_alerts": self.total_alerts,
            "successful": self.successful,
            "failed": self.failed,
            "time_window": self.time_window,
            "results": list(self.results),
            "errors": list(self.errors),
            "usage": self.usage.to_dict() if self.usage else None,
        }


@dataclass
class PredictionResult:
    alert_id: str
    time_window: int
    prediction: CascadePrediction
    snapshot: IntelligenceSnapshot

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "alert_id": self.alert_id,
            "analyzed_at": utcnow().isoformat(),
            "time_window": self.time_window,
        }
        data.update(self.prediction.to_dict())
        data["current_state"] = {
            "cascading_impact": self.snapshot.impact_cascade.cascading_impact,
            "total_connections": self.snapshot.impact_cascade.total_factors,
            "overall_risk": self.snapshot.risk_assessment.overall_risk,
        }
        return data


def batch_summary(alert_id: str, snapshot: IntelligenceSnapshot) -> Dict[str, Any]:
    return {
        "alert_id": alert_id,
        "cascading_impact": snapshot.impact_cascade.cascading_impact,
        "total_factors": snapshot.impact_cascade.total_factors,
        "overall_risk": snapshot.risk_assessment.overall_risk,
        "mitigation_priority": snapshot.risk_assessment.mitigation_priority.value,
    }


class IntelligenceService:
    """Tier-aware front door to the intelligence engine."""

    def __init__(
        self,
        gate: TierGate,
        engine_factory: EngineFactory,
        predictor: Optional[CascadePredictorProtocol] = None,
        free_tier_factor_limit: Optional[int] = None,
        batch_max_alerts: Optional[int] = None,
        batch_chunk_size: Optional[int] = None
    ):
        self.gate = gate
        self.engine_factory = engine_factory
        self.predictor = predictor or HeuristicCascadePredictor()
        self.free_tier_factor_limit = (
            settings.FREE_TIER_FACTOR_LIMIT if free_tier_factor_limit is None else free_tier_factor_limit
        )
        self.batch_max_alerts = (
            settings.BATCH_MAX_ALERTS if batch_max_alerts is None else batch_max_alerts
        )
        self.batch_chunk_size = (
            settings.BATCH_CHUNK_SIZE if batch_chunk_size is None else batch_chunk_size
        )

    async def _run(self, alert_id: str, window_days: int) -> IntelligenceSnapshot:
        async with self.engine_factory() as engine:
            return await engine.analyze(alert_id, window_days)

    async def analyze(self, user_id: str, alert_id: str, window_days: int = 30) -> AnalysisResult:
        """
        Tier-gated single analysis.

        Raises:
            UsageLimitReachedError: monthly quota exhausted
            AlertNotFoundError: primary alert does not exist
            TransientStoreError: a store could not be reached
        """
        if window_days < 1:
            raise RequestValidationError("time window must be at least 1 day")

        context = await self.gate.resolve(user_id)
        effective, clamped = self.gate.clamp_window(context, window_days)
        usage = await self.gate.check_usage(context)

        snapshot = await self._run(alert_id, effective)

        await self.gate.record_usage(context, alert_id, effective)
        usage.current_month_count += 1

        total_available = len(snapshot.connected_factors)
        upgrade_hint = None
        if context.tier == SubscriptionTier.FREE:
            snapshot = snapshot.truncated(self.free_tier_factor_limit)
            if total_available > self.free_tier_factor_limit:
                upgrade_hint = FREE_TIER_UPGRADE_HINT

        logger.info(
            "Connection analysis served",
            user_id=user_id,
            alert_id=alert_id,
            tier=context.tier.value,
            time_window=effective,
            clamped=clamped,
        )
        return AnalysisResult(
            snapshot=snapshot,
            tier=context.tier,
            time_window=effective,
            time_window_clamped=clamped,
            usage=usage,
            total_factors_available=total_available,
            upgrade_hint=upgrade_hint,
        )

    def _validate_batch(self, alert_ids: List[str]) -> None:
        if not alert_ids:
            raise RequestValidationError("alert_ids array is required")
        if len(alert_ids) > self.batch_max_alerts:
            raise RequestValidationError(
                f"Maximum {self.batch_max_alerts} alerts can be analyzed at once"
            )

    async def analyze_batch(
        self,
        user_id: str,
        alert_ids: List[str],
        window_days: int = 30
    ) -> BatchResult:
        """
        Analyze up to ``batch_max_alerts`` alerts in chunks.

        Each chunk runs concurrently with all-settled semantics: one failing
        alert lands in ``errors`` and never aborts its siblings.
        """
        self._validate_batch(alert_ids)

        context = await self.gate.resolve(user_id)
        self.gate.require_feature(context, Feature.BATCH_ANALYSIS)
        await self.gate.check_usage(context)
        effective, _ = self.gate.clamp_window(context, window_days)

        batch = BatchResult(total_alerts=len(alert_ids), time_window=effective)
        for start in range(0, len(alert_ids), self.batch_chunk_size):
            chunk = alert_ids[start:start + self.batch_chunk_size]
            outcomes = await asyncio.gather(
                *(self._run(alert_id, effective) for alert_id in chunk),
                return_exceptions=True,
            )
            for alert_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    batch.errors.append(self._batch_error(alert_id, outcome))
                else:
                    batch.results.append(batch_summary(alert_id, outcome))

        for result in batch.results:
            await self.gate.record_usage(
                context, result["alert_id"], effective, metadata={"batch_analysis": True}
            )

        batch.usage = await self.gate.usage(context)
        logger.info(
            "Batch analysis complete",
            user_id=user_id,
            total=batch.total_alerts,
            successful=batch.successful,
            failed=batch.failed,
        )
        return batch

    def _batch_error(self, alert_id: str, error: BaseException) -> Dict[str, str]:
        if isinstance(error, IntelligenceError):
            message = error.message
        else:
            logger.error("Batch item failed", alert_id=alert_id, error=str(error))
            message = "Failed to analyze"
        return {"alert_id": alert_id, "error": message}

    async def predict(self, user_id: str, alert_id: str, window_days: int = 180) -> PredictionResult:
        """Enterprise-only forward prediction over a fresh analysis."""
        context = await self.gate.resolve(user_id)
        self.gate.require_feature(context, Feature.PREDICTIONS)
        effective, _ = self.gate.clamp_window(context, window_days)

        snapshot = await self._run(alert_id, effective)
        prediction = self.predictor.predict(snapshot)
        return PredictionResult(
            alert_id=alert_id,
            time_window=effective,
            prediction=prediction,
            snapshot=snapshot,
        )

    async def snapshot_for_export(
        self,
        user_id: str,
        alert_id: str,
        window_days: int = 30
    ) -> IntelligenceSnapshot:
        """Window-clamped snapshot for export. Does not count against the quota."""
        context = await self.gate.resolve(user_id)
        effective, _ = self.gate.clamp_window(context, window_days)
        snapshot = await self._run(alert_id, effective)
        if context.tier == SubscriptionTier.FREE:
            snapshot = snapshot.truncated(self.free_tier_factor_limit)
        return snapshot
