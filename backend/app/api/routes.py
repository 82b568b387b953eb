"""API routes for interconnected intelligence."""
import structlog
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import (
    enforce_rate_limit,
    get_engine_factory,
    get_idempotency_cache,
    get_intelligence_service,
    get_monitor,
    get_store,
    get_subscription_repository,
    get_user_id,
)
from app.api.schemas import (
    BatchAnalysisRequest, BatchAnalysisResponse, ConnectionAnalysisResponse,
    HealthResponse, MonitorStartRequest, MonitorStartResponse, MonitorStatusResponse,
    MonitorStopResponse, PredictionResponse, WebhookCreatedResponse, WebhookListResponse,
    WebhookSubscribeRequest, WebhookSubscriptionResponse,
)
from app.clock import utcnow
from app.config import settings
from app.core.protection import IdempotencyCache
from app.core.store import KeyValueStore
from app.db import get_db
from app.errors import RequestValidationError
from app.services.intelligence.engine import EngineFactory
from app.services.intelligence.exporter import export_json, export_text
from app.services.intelligence.service import IntelligenceService
from app.services.monitoring.events import STATUS_MESSAGES
from app.services.monitoring.monitor import ChangeMonitor
from app.services.subscription.gate import TierGate
from app.services.subscription.repository import SubscriptionRepository
from app.services.subscription.tiers import Feature
from app.services.webhooks.dispatcher import WEBHOOK_FORMAT, validate_webhook_url

logger = structlog.get_logger()

router = APIRouter()

EXPORT_FORMATS = ("json", "text")


# ============== Health ==============

@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(
    db: AsyncSession = Depends(get_db),
    store: KeyValueStore = Depends(get_store)
):
    """Health check endpoint."""
    db_status = "connected"
    try:
        await db.execute(select(1))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        db_status = "disconnected"

    store_status = "connected"
    try:
        await store.get("health")
    except Exception as e:
        logger.error("Store health check failed", error=str(e))
        store_status = "disconnected"

    healthy = db_status == "connected" and store_status == "connected"
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.APP_VERSION,
        database=db_status,
        store=store_status,
    )


# ============== Export ==============

@router.get("/analytics/connections/export", tags=["Connections"])
async def export_connections(
    alert_id: str = Query(..., min_length=1),
    format: str = Query("json"),
    window: int = Query(30, ge=1),
    user_id: str = Depends(get_user_id),
    _: None = Depends(enforce_rate_limit),
    service: IntelligenceService = Depends(get_intelligence_service)
):
    """Export an analysis as a JSON envelope or a plain-text table."""
    if format not in EXPORT_FORMATS:
        raise RequestValidationError(f"format must be one of: {', '.join(EXPORT_FORMATS)}")

    snapshot = await service.snapshot_for_export(user_id, alert_id, window)
    filename = f"intelligence-{alert_id}"
    if format == "text":
        return PlainTextResponse(
            export_text(snapshot),
            headers={"Content-Disposition": f'attachment; filename="{filename}.txt"'},
        )
    return export_json(snapshot)


# ============== Webhook Subscriptions ==============

@router.post(
    "/analytics/connections/subscribe",
    response_model=WebhookCreatedResponse,
    tags=["Webhooks"]
)
async def create_webhook_subscription(
    request: WebhookSubscribeRequest,
    user_id: str = Depends(get_user_id),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    repository: SubscriptionRepository = Depends(get_subscription_repository),
    idempotency: IdempotencyCache = Depends(get_idempotency_cache)
):
    """Create a webhook subscription (Enterprise tier)."""
    gate = TierGate(repository)
    context = await gate.resolve(user_id)
    gate.require_feature(context, Feature.WEBHOOKS)

    if not request.alert_ids:
        raise RequestValidationError("alert_ids array is required")
    validate_webhook_url(request.webhook_url)

    if idempotency_key:
        cached = await idempotency.get(user_id, idempotency_key)
        if cached is not None:
            logger.info("Idempotent replay", user_id=user_id, idempotency_key=idempotency_key)
            return cached

    subscription = await repository.create_webhook(
        user_id,
        request.webhook_url,
        request.alert_ids,
        filters=request.filters,
        time_window=request.time_window,
    )
    response = WebhookCreatedResponse(
        subscription_id=subscription.id,
        webhook_url=subscription.webhook_url,
        alert_ids=list(subscription.alert_ids),
        webhook_format=WEBHOOK_FORMAT,
    ).model_dump()

    if idempotency_key:
        await idempotency.put(user_id, idempotency_key, response)
    return response


@router.get(
    "/analytics/connections/subscribe",
    response_model=WebhookListResponse,
    tags=["Webhooks"]
)
async def list_webhook_subscriptions(
    user_id: str = Depends(get_user_id),
    repository: SubscriptionRepository = Depends(get_subscription_repository)
):
    """List the caller's active webhook subscriptions."""
    subscriptions = await repository.list_webhooks(user_id)
    return WebhookListResponse(
        subscriptions=[WebhookSubscriptionResponse(**s.to_dict()) for s in subscriptions],
        total=len(subscriptions),
    )


@router.delete(
    "/analytics/connections/subscribe",
    response_model=WebhookSubscriptionResponse,
    tags=["Webhooks"]
)
async def delete_webhook_subscription(
    subscription_id: str = Query(..., min_length=1),
    user_id: str = Depends(get_user_id),
    repository: SubscriptionRepository = Depends(get_subscription_repository)
):
    """Deactivate one of the caller's webhook subscriptions."""
    subscription = await repository.deactivate_webhook(user_id, subscription_id)
    return WebhookSubscriptionResponse(**subscription.to_dict())


# ============== Monitoring ==============

@router.post(
    "/analytics/connections/monitor",
    response_model=MonitorStartResponse,
    tags=["Monitoring"]
)
async def start_monitoring(
    request: MonitorStartRequest,
    user_id: str = Depends(get_user_id),
    monitor: ChangeMonitor = Depends(get_monitor)
):
    """Start a background watch on an alert."""
    await monitor.watch(request.alert_id, request.time_window, buffer_events=False)
    baseline = await monitor.baseline_store.get(request.alert_id)

    logger.info("Watch requested", user_id=user_id, alert_id=request.alert_id)
    return MonitorStartResponse(
        alert_id=request.alert_id,
        baseline={
            "cascade_impact": baseline.cascading_impact,
            "risk_score": baseline.overall_risk,
            "total_connections": len(baseline.connected_ids),
        },
        monitoring_config={
            "time_window": request.time_window,
            "interval_seconds": monitor.interval_seconds,
            "check_new_connections": True,
            "check_risk_changes": True,
            "threshold": monitor.detector.delta_threshold,
            "risk_threshold": monitor.detector.risk_threshold,
        },
    )


@router.get(
    "/analytics/connections/monitor",
    response_model=MonitorStatusResponse,
    tags=["Monitoring"]
)
async def get_monitoring_status(
    alert_id: str = Query(..., min_length=1),
    window: int = Query(30, ge=1),
    user_id: str = Depends(get_user_id),
    monitor: ChangeMonitor = Depends(get_monitor),
    engine_factory: EngineFactory = Depends(get_engine_factory)
):
    """Current connection status for an alert, and whether it is being watched."""
    async with engine_factory() as engine:
        snapshot = await engine.analyze(alert_id, window)

    return MonitorStatusResponse(
        alert_id=alert_id,
        status=snapshot.status.value,
        message=STATUS_MESSAGES[snapshot.status],
        monitoring=monitor.get_watch(alert_id) is not None,
        current_state={
            "risk_score": snapshot.risk_assessment.overall_risk,
            "cascade_impact": snapshot.impact_cascade.cascading_impact,
            "total_connections": snapshot.impact_cascade.total_factors,
            "affected_supply_chain": snapshot.impact_cascade.affected_supply_chain,
        },
        recommendations=list(snapshot.recommended_actions),
        timestamp=utcnow().isoformat(),
    )


@router.delete(
    "/analytics/connections/monitor",
    response_model=MonitorStopResponse,
    tags=["Monitoring"]
)
async def stop_monitoring(
    alert_id: str = Query(..., min_length=1),
    user_id: str = Depends(get_user_id),
    monitor: ChangeMonitor = Depends(get_monitor)
):
    """Stop watching an alert."""
    stopped = await monitor.stop(alert_id)
    return MonitorStopResponse(
        message="Monitoring stopped" if stopped else "No active monitoring for this alert",
        alert_id=alert_id,
        timestamp=utcnow().isoformat(),
    )


# ============== Batch ==============

@router.post(
    "/analytics/connections/batch",
    response_model=BatchAnalysisResponse,
    tags=["Connections"]
)
async def analyze_batch(
    request: BatchAnalysisRequest,
    user_id: str = Depends(get_user_id),
    _: None = Depends(enforce_rate_limit),
    service: IntelligenceService = Depends(get_intelligence_service)
):
    """Analyze up to 50 alerts (Professional and Enterprise tiers)."""
    result = await service.analyze_batch(user_id, request.alert_ids, request.time_window)
    return result.to_dict()


# ============== Single Analysis ==============

@router.get(
    "/analytics/connections/{alert_id}",
    response_model=ConnectionAnalysisResponse,
    tags=["Connections"]
)
async def get_connections(
    alert_id: str,
    window: int = Query(30, ge=1, description="Time window in days"),
    user_id: str = Depends(get_user_id),
    _: None = Depends(enforce_rate_limit),
    service: IntelligenceService = Depends(get_intelligence_service)
):
    """Interconnected intelligence for one alert."""
    result = await service.analyze(user_id, alert_id, window)
    return result.to_dict()


# ============== Predictions ==============

@router.get(
    "/analytics/predictions/{alert_id}",
    response_model=PredictionResponse,
    tags=["Predictions"]
)
async def get_predictions(
    alert_id: str,
    window: int = Query(180, ge=1, description="Time window in days"),
    user_id: str = Depends(get_user_id),
    _: None = Depends(enforce_rate_limit),
    service: IntelligenceService = Depends(get_intelligence_service)
):
    """Cascade likelihood, impact and timing (Enterprise tier)."""
    result = await service.predict(user_id, alert_id, window)
    return result.to_dict()
