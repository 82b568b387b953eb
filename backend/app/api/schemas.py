"""API request/response schemas."""
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field
from app.db.models import AnomalyType, Severity


# ============== Snapshot Schemas ==============

class PrimaryAlertResponse(BaseModel):
    """The alert an analysis was run for."""
    id: str
    type: AnomalyType
    severity: Severity
    timestamp: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConnectedFactorResponse(BaseModel):
    id: str
    type: AnomalyType
    severity: Severity
    timestamp: str
    correlation_score: float = Field(..., ge=0, le=1)
    hop: int = Field(1, ge=1)


class ImpactCascadeResponse(BaseModel):
    cascading_impact: float = Field(..., ge=0, le=100)
    total_factors: int = Field(..., ge=0)
    affected_supply_chain: bool


class RiskAssessmentResponse(BaseModel):
    overall_risk: float = Field(..., ge=0, le=100)
    mitigation_priority: str
    risk_factors: List[str] = Field(default_factory=list)


class CorrelationPairResponse(BaseModel):
    factor1: str
    factor2: str
    correlation: float


class CorrelationMatrixResponse(BaseModel):
    factor_pairs: List[CorrelationPairResponse] = Field(default_factory=list)


class UsageResponse(BaseModel):
    current_month_count: int
    monthly_limit: int
    can_use: bool


class ConnectionAnalysisResponse(BaseModel):
    """Snapshot plus tier/window/usage details."""
    primary_alert: PrimaryAlertResponse
    connected_factors: List[ConnectedFactorResponse]
    impact_cascade: ImpactCascadeResponse
    risk_assessment: RiskAssessmentResponse
    recommended_actions: List[str]
    correlation_matrix: CorrelationMatrixResponse
    status: str
    tier: str
    time_window: int
    time_window_clamped: bool
    total_factors_available: int
    usage: UsageResponse
    upgrade_hint: Optional[str] = None


# ============== Batch Schemas ==============

class BatchAnalysisRequest(BaseModel):
    """Request to analyze several alerts at once."""
    alert_ids: List[str] = Field(default_factory=list, description="At most 50 alert ids")
    time_window: int = Field(default=30, ge=1)


class BatchItemResponse(BaseModel):
    alert_id: str
    cascading_impact: float
    total_factors: int
    overall_risk: float
    mitigation_priority: str


class BatchErrorResponse(BaseModel):
    alert_id: str
    error: str


class BatchAnalysisResponse(BaseModel):
    total_alerts: int
    successful: int
    failed: int
    time_window: int
    results: List[BatchItemResponse]
    errors: List[BatchErrorResponse]
    usage: Optional[UsageResponse] = None


# ============== Prediction Schemas ==============

class ConfidenceInterval(BaseModel):
    lower: int
    upper: int


class HistoricalCase(BaseModel):
    similar_types: List[str]
    occurrences: int
    similarity: int
    outcome: str
    recommendations: List[str] = Field(default_factory=list)


class CurrentState(BaseModel):
    cascading_impact: float
    total_connections: int
    overall_risk: float


class PredictionResponse(BaseModel):
    alert_id: str
    analyzed_at: str
    time_window: int
    likelihood: int = Field(..., ge=0, le=100)
    predicted_impact: int = Field(..., ge=0, le=100)
    estimated_time_to_cascade: float
    confidence_interval: ConfidenceInterval
    similar_historical_cases: List[HistoricalCase]
    risk_factors: List[str]
    mitigation_recommendations: List[str]
    current_state: CurrentState


# ============== Webhook Schemas ==============

class WebhookSubscribeRequest(BaseModel):
    """Request to push connection updates for some alerts to a URL."""
    alert_ids: List[str] = Field(default_factory=list)
    webhook_url: str = Field(..., max_length=2048)
    filters: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Optional filters, e.g. {'update_types': ['risk_change']}"
    )
    time_window: int = Field(default=30, ge=1)


class WebhookSubscriptionResponse(BaseModel):
    id: str
    user_id: str
    webhook_url: str
    alert_ids: List[str]
    filters: Dict[str, Any] = Field(default_factory=dict)
    time_window: int
    is_active: bool
    created_at: Optional[str] = None


class WebhookCreatedResponse(BaseModel):
    subscription_id: str
    webhook_url: str
    alert_ids: List[str]
    status: str = "active"
    message: str = "Webhook subscription created successfully"
    webhook_format: Dict[str, str]


class WebhookListResponse(BaseModel):
    subscriptions: List[WebhookSubscriptionResponse]
    total: int


# ============== Monitor Schemas ==============

class MonitorStartRequest(BaseModel):
    alert_id: str = Field(..., min_length=1)
    time_window: int = Field(default=30, ge=1)


class MonitorBaseline(BaseModel):
    cascade_impact: float
    risk_score: float
    total_connections: int


class MonitorStartResponse(BaseModel):
    message: str = "Monitoring started"
    alert_id: str
    baseline: MonitorBaseline
    monitoring_config: Dict[str, Any]


class MonitorStatusResponse(BaseModel):
    alert_id: str
    status: str
    message: str
    monitoring: bool
    current_state: Dict[str, Any]
    recommendations: List[str]
    timestamp: str


class MonitorStopResponse(BaseModel):
    message: str
    alert_id: str
    timestamp: str


# ============== System Schemas ==============

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    database: str = "connected"
    store: str = "connected"


class ErrorResponse(BaseModel):
    error: str
