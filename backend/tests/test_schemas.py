"""Tests for schema validation."""
import pytest
from pydantic import ValidationError

from app.api.schemas import (
    BatchAnalysisRequest,
    BatchAnalysisResponse,
    ConnectedFactorResponse,
    ConnectionAnalysisResponse,
    ImpactCascadeResponse,
    MonitorStartRequest,
    PredictionResponse,
    WebhookSubscribeRequest,
)
from app.services.intelligence.engine import IntelligenceEngine
from app.services.intelligence.predictor import HeuristicCascadePredictor
from app.services.intelligence.service import AnalysisResult, PredictionResult
from app.services.subscription.gate import UsageStatus
from app.db.models import SubscriptionTier

from tests.conftest import NOW


@pytest.fixture
async def abc_snapshot(abc_repository):
    return await IntelligenceEngine(abc_repository).analyze("A", 30, now=NOW)


class TestConnectedFactorSchema:
    """Test ConnectedFactorResponse validation."""

    def test_valid_factor(self):
        factor = ConnectedFactorResponse.model_validate({
            "id": "B",
            "type": "freight_surge",
            "severity": "critical",
            "timestamp": "2025-06-13T12:00:00",
            "correlation_score": 0.9383,
            "hop": 1,
        })
        assert factor.type.value == "freight_surge"

    def test_score_bounds(self):
        """Correlation scores must be in [0, 1]."""
        with pytest.raises(ValidationError):
            ConnectedFactorResponse.model_validate({
                "id": "B",
                "type": "freight_surge",
                "severity": "critical",
                "timestamp": "2025-06-13T12:00:00",
                "correlation_score": 1.2,
            })

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            ConnectedFactorResponse.model_validate({
                "id": "B",
                "type": "earthquake",
                "severity": "critical",
                "timestamp": "2025-06-13T12:00:00",
                "correlation_score": 0.5,
            })


class TestImpactCascadeSchema:
    """Test ImpactCascadeResponse validation."""

    def test_impact_bounds(self):
        with pytest.raises(ValidationError):
            ImpactCascadeResponse(cascading_impact=101, total_factors=1, affected_supply_chain=False)
        with pytest.raises(ValidationError):
            ImpactCascadeResponse(cascading_impact=10, total_factors=-1, affected_supply_chain=False)


class TestServiceResultsValidate:
    """Service results serialize into their response models."""

    async def test_analysis_result(self, abc_snapshot):
        result = AnalysisResult(
            snapshot=abc_snapshot,
            tier=SubscriptionTier.FREE,
            time_window=30,
            time_window_clamped=False,
            usage=UsageStatus(current_month_count=1, monthly_limit=5),
            total_factors_available=1,
        )

        response = ConnectionAnalysisResponse.model_validate(result.to_dict())

        assert response.tier == "free"
        assert response.connected_factors[0].id == "B"
        assert response.correlation_matrix.factor_pairs[0].factor1 == "price_spike"
        assert response.usage.can_use is True

    async def test_prediction_result(self, abc_snapshot):
        result = PredictionResult(
            alert_id="A",
            time_window=180,
            prediction=HeuristicCascadePredictor().predict(abc_snapshot),
            snapshot=abc_snapshot,
        )

        response = PredictionResponse.model_validate(result.to_dict())

        assert response.likelihood == 38
        assert response.current_state.total_connections == 1

    def test_batch_response(self):
        response = BatchAnalysisResponse.model_validate({
            "total_alerts": 2,
            "successful": 1,
            "failed": 1,
            "time_window": 30,
            "results": [{
                "alert_id": "A",
                "cascading_impact": 46.5,
                "total_factors": 1,
                "overall_risk": 46.72,
                "mitigation_priority": "medium",
            }],
            "errors": [{"alert_id": "X", "error": "Alert X not found"}],
            "usage": None,
        })
        assert response.errors[0].alert_id == "X"


class TestRequestSchemas:
    """Test request models."""

    def test_batch_defaults(self):
        request = BatchAnalysisRequest()
        assert request.alert_ids == []
        assert request.time_window == 30

    def test_window_must_be_positive(self):
        with pytest.raises(ValidationError):
            BatchAnalysisRequest(alert_ids=["A"], time_window=0)
        with pytest.raises(ValidationError):
            MonitorStartRequest(alert_id="A", time_window=0)

    def test_webhook_url_required(self):
        with pytest.raises(ValidationError):
            WebhookSubscribeRequest.model_validate({"alert_ids": ["A"]})

    def test_monitor_alert_id_required(self):
        with pytest.raises(ValidationError):
            MonitorStartRequest(alert_id="")
