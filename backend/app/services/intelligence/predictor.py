"""
Cascade Predictor.

Forward-looking estimates over a finished snapshot. This is deterministic
arithmetic, not a trained model; it sits behind ``CascadePredictorProtocol``
so a learned model can replace it without touching graph or synthesis code.

Similar historical cases are synthesized from the snapshot's own connected
factor types rather than looked up in history.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from app.services.intelligence.models import IntelligenceSnapshot, MitigationPriority
from app.services.intelligence.synthesizer import SEVERITY_WEIGHTS

CONFIDENCE_HALF_WIDTH = 10
MAX_TIME_TO_CASCADE_DAYS = 60.0
MIN_TIME_TO_CASCADE_DAYS = 1.0
MAX_SIMILAR_CASES = 3

CASE_OUTCOMES = {
    MitigationPriority.CRITICAL: "Supply chain disruption occurred within 7 days",
    MitigationPriority.HIGH: "Significant cascade, mitigated within 2 weeks",
    MitigationPriority.MEDIUM: "Localized cascade contained within the product line",
    MitigationPriority.LOW: "No material cascade followed",
}


@dataclass
class CascadePrediction:
    likelihood: int
    predicted_impact: int
    estimated_time_to_cascade: float
    confidence_interval: Dict[str, int]
    similar_historical_cases: List[Dict[str, Any]] = field(default_factory=list)
    risk_factors: List[str] = field(default_factory=list)
    mitigation_recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "likelihood": self.likelihood,
            "predicted_impact": self.predicted_impact,
            "estimated_time_to_cascade": self.estimated_time_to_cascade,
            "confidence_interval": dict(self.confidence_interval),
            "similar_historical_cases": [dict(c) for c in self.similar_historical_cases],
            "risk_factors": list(self.risk_factors),
            "mitigation_recommendations": list(self.mitigation_recommendations),
        }


class CascadePredictorProtocol(Protocol):
    def predict(self, snapshot: IntelligenceSnapshot) -> CascadePrediction:
        ...


class HeuristicCascadePredictor:
    """Weighted heuristics over snapshot figures. Pure: same input, same output."""

    def predict(self, snapshot: IntelligenceSnapshot) -> CascadePrediction:
        likelihood = self.likelihood(snapshot)
        predicted_impact = self.predicted_impact(snapshot)

        return CascadePrediction(
            likelihood=likelihood,
            predicted_impact=predicted_impact,
            estimated_time_to_cascade=self.time_to_cascade(likelihood),
            confidence_interval={
                "lower": max(0, likelihood - CONFIDENCE_HALF_WIDTH),
                "upper": min(100, likelihood + CONFIDENCE_HALF_WIDTH),
            },
            similar_historical_cases=self.similar_cases(snapshot),
            risk_factors=list(snapshot.risk_assessment.risk_factors),
            mitigation_recommendations=self.mitigation_recommendations(
                snapshot, likelihood, predicted_impact
            ),
        )

    def likelihood(self, snapshot: IntelligenceSnapshot) -> int:
        overall_risk = snapshot.risk_assessment.overall_risk
        impact = snapshot.impact_cascade.cascading_impact
        total = min(snapshot.impact_cascade.total_factors, 20)
        score = 0.5 * overall_risk + 0.3 * impact + 0.2 * total * 5
        return int(round(max(0.0, min(100.0, score))))

    def predicted_impact(self, snapshot: IntelligenceSnapshot) -> int:
        factors = snapshot.connected_factors
        total = snapshot.impact_cascade.total_factors
        severity_mix = (
            sum(SEVERITY_WEIGHTS[f.severity] for f in factors) / len(factors)
            if factors else 0.0
        )
        score = 50.0 * severity_mix + 2.5 * min(total, 20)
        if snapshot.impact_cascade.affected_supply_chain:
            score += 10.0
        return int(round(max(0.0, min(100.0, score))))

    def time_to_cascade(self, likelihood: int) -> float:
        """Days until a cascade; higher likelihood means sooner."""
        days = MAX_TIME_TO_CASCADE_DAYS * (1.0 - likelihood / 100.0)
        return round(max(MIN_TIME_TO_CASCADE_DAYS, days), 1)

    def similar_cases(self, snapshot: IntelligenceSnapshot) -> List[Dict[str, Any]]:
        # No case history is stored; cases are derived from the factor types
        by_type: "OrderedDict[str, List[float]]" = OrderedDict()
        for factor in snapshot.connected_factors:
            by_type.setdefault(factor.type.value, []).append(factor.correlation_score)

        outcome = CASE_OUTCOMES[snapshot.risk_assessment.mitigation_priority]
        cases = []
        for factor_type, scores in list(by_type.items())[:MAX_SIMILAR_CASES]:
            cases.append({
                "similar_types": [snapshot.primary_alert.type.value, factor_type],
                "occurrences": len(scores),
                "similarity": int(round(max(scores) * 100)),
                "outcome": outcome,
                "recommendations": list(snapshot.recommended_actions[:3]),
            })
        return cases

    def mitigation_recommendations(
        self,
        snapshot: IntelligenceSnapshot,
        likelihood: int,
        predicted_impact: int
    ) -> List[str]:
        recommendations = []
        if likelihood >= 80:
            recommendations.append("Immediate action required - high cascade likelihood")
            recommendations.append("Contact affected suppliers immediately")
        if predicted_impact >= 70:
            recommendations.append("Increase monitoring frequency to daily")
        if snapshot.impact_cascade.total_factors > 10:
            recommendations.append("Investigate all connection points simultaneously")
        if snapshot.impact_cascade.affected_supply_chain:
            recommendations.append("Supply chain continuity plan activation may be needed")
        if not recommendations:
            recommendations.append("Continue monitoring for changes")
        return recommendations
