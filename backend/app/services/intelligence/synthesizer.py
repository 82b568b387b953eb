"""
Risk & Recommendation Synthesizer.

Reduces a list of connected factors into:
- a saturating cascading-impact score in [0, 100]
- an overall risk score in [0, 100] with a mitigation priority bucket
- named risk factors and recommended actions from a fixed catalogue
- a type correlation matrix and a connection status

Everything here is a pure function of its inputs.
"""

import math
from dataclasses import dataclass
from itertools import combinations
from typing import Dict, List, Optional

from app.config import settings
from app.db.models import AnomalyType, Severity
from app.services.intelligence.correlations import type_similarity
from app.services.intelligence.models import (
    AnomalyRecord,
    ConnectedFactor,
    ConnectionStatus,
    CorrelationPair,
    ImpactCascade,
    IntelligenceSnapshot,
    MitigationPriority,
    RiskAssessment,
)


SEVERITY_WEIGHTS: Dict[Severity, float] = {
    Severity.LOW: 0.1,
    Severity.MEDIUM: 0.3,
    Severity.HIGH: 0.6,
    Severity.CRITICAL: 1.0,
}

PRIMARY_SEVERITY_BONUS: Dict[Severity, float] = {
    Severity.LOW: 0.0,
    Severity.MEDIUM: 2.0,
    Severity.HIGH: 5.0,
    Severity.CRITICAL: 10.0,
}

CHAIN_RELEVANT_TYPES = frozenset({AnomalyType.FREIGHT_SURGE, AnomalyType.TARIFF_CHANGE})

RISK_FACTOR_HIGH_IMPACT = "High cascading impact across connected anomalies"
RISK_FACTOR_COMPLEX_NETWORK = "Complex interconnection network detected"
RISK_FACTOR_SUPPLY_CHAIN = "Supply chain vulnerability confirmed"


def critical_factor_message(count: int) -> str:
    return f"Critical-level connected factors detected ({count})"


# Fixed catalogue of recommended actions
ACTION_CRITICAL = "CRITICAL: Immediate supply chain intervention required"
ACTION_ESCALATE = "Escalate to trade compliance management for review"
ACTION_REVIEW_CRITICAL = "Review each critical connected anomaly with its owner"
ACTION_CONTINUITY = "Activate supply chain continuity plan"
ACTION_MAP_NETWORK = "Investigate all connection points simultaneously"
ACTION_SUPPLIER_PRICING = "Review supplier pricing agreements for sudden changes"
ACTION_FREIGHT_ROUTES = "Investigate freight route alternatives to reduce costs"
ACTION_HEDGE_FX = "Consider hedging currency exposure with forward contracts"
ACTION_CUSTOMS_TEMPLATES = "Update customs declaration templates with new rates"
ACTION_NEGOTIATE_TARIFF = "Negotiate price adjustments with suppliers to offset tariff impact"
ACTION_ALT_CARRIERS = "Explore alternative shipping routes and carriers"
ACTION_LOCAL_SOURCING = "Evaluate local sourcing or regional suppliers"
ACTION_FX_EXPOSURE = "Review FX exposure and implement hedging strategy"
ACTION_CONTINUE_MONITORING = "Continue monitoring for changes"

MAX_ACTIONS = 5
MATRIX_FACTOR_LIMIT = 10


@dataclass
class SynthesisConfig:
    """Tunable constants for synthesis."""
    impact_saturation: float = 1.5
    supply_chain_threshold: float = 0.5
    impact_weight: float = 0.65
    critical_factor_points: float = 10.0
    critical_factor_cap: int = 3
    factor_count_points: float = 1.5
    factor_count_cap: int = 10

    @classmethod
    def from_settings(cls) -> "SynthesisConfig":
        return cls(
            impact_saturation=settings.IMPACT_SATURATION,
            supply_chain_threshold=settings.SUPPLY_CHAIN_CORRELATION_THRESHOLD,
        )


def priority_for_risk(overall_risk: float) -> MitigationPriority:
    if overall_risk >= 80:
        return MitigationPriority.CRITICAL
    if overall_risk >= 60:
        return MitigationPriority.HIGH
    if overall_risk >= 40:
        return MitigationPriority.MEDIUM
    return MitigationPriority.LOW


def connection_status(
    overall_risk: float,
    cascading_impact: float,
    total_factors: int
) -> ConnectionStatus:
    if overall_risk >= 80 or cascading_impact >= 80:
        return ConnectionStatus.CRITICAL
    if overall_risk >= 60 or cascading_impact >= 60:
        return ConnectionStatus.WARNING
    if total_factors > 0:
        return ConnectionStatus.MONITORING
    return ConnectionStatus.STABLE


class RiskSynthesizer:
    """Turns connected factors into an ``IntelligenceSnapshot``."""

    def __init__(self, config: Optional[SynthesisConfig] = None):
        self.config = config or SynthesisConfig.from_settings()

    def synthesize(
        self,
        primary: AnomalyRecord,
        factors: List[ConnectedFactor]
    ) -> IntelligenceSnapshot:
        impact = self.cascading_impact(factors)
        impact_cascade = ImpactCascade(
            cascading_impact=impact,
            total_factors=len(factors),
            affected_supply_chain=self.affects_supply_chain(factors),
        )
        risk = self.risk_assessment(primary, factors, impact_cascade)

        return IntelligenceSnapshot(
            primary_alert=primary,
            connected_factors=list(factors),
            impact_cascade=impact_cascade,
            risk_assessment=risk,
            recommended_actions=self.recommended_actions(primary, factors, risk),
            correlation_matrix=self.correlation_matrix(primary, factors),
            status=connection_status(risk.overall_risk, impact, len(factors)),
        )

    def cascading_impact(self, factors: List[ConnectedFactor]) -> float:
        """
        Saturating aggregate of correlation-weighted severities.

        100 * (1 - exp(-sum / K)): more and stronger connections push the
        value up with diminishing returns and never past 100.
        """
        if not factors:
            return 0.0
        weighted = sum(
            f.correlation_score * SEVERITY_WEIGHTS[f.severity] for f in factors
        )
        impact = 100.0 * (1.0 - math.exp(-weighted / self.config.impact_saturation))
        return round(max(0.0, min(100.0, impact)), 2)

    def affects_supply_chain(self, factors: List[ConnectedFactor]) -> bool:
        return any(
            f.type in CHAIN_RELEVANT_TYPES
            and f.correlation_score >= self.config.supply_chain_threshold
            for f in factors
        )

    def risk_assessment(
        self,
        primary: AnomalyRecord,
        factors: List[ConnectedFactor],
        impact_cascade: ImpactCascade
    ) -> RiskAssessment:
        critical_count = sum(1 for f in factors if f.severity == Severity.CRITICAL)
        total = len(factors)

        overall = (
            self.config.impact_weight * impact_cascade.cascading_impact +
            self.config.critical_factor_points * min(critical_count, self.config.critical_factor_cap) +
            self.config.factor_count_points * min(total, self.config.factor_count_cap) +
            PRIMARY_SEVERITY_BONUS[primary.severity]
        )
        overall = round(max(0.0, min(100.0, overall)), 2)

        risk_factors = []
        if impact_cascade.cascading_impact > 70:
            risk_factors.append(RISK_FACTOR_HIGH_IMPACT)
        if total > 10:
            risk_factors.append(RISK_FACTOR_COMPLEX_NETWORK)
        if critical_count > 0:
            risk_factors.append(critical_factor_message(critical_count))
        if impact_cascade.affected_supply_chain:
            risk_factors.append(RISK_FACTOR_SUPPLY_CHAIN)

        return RiskAssessment(
            overall_risk=overall,
            mitigation_priority=priority_for_risk(overall),
            risk_factors=risk_factors,
        )

    def recommended_actions(
        self,
        primary: AnomalyRecord,
        factors: List[ConnectedFactor],
        risk: RiskAssessment
    ) -> List[str]:
        """Select actions from the catalogue by matching rules."""
        connected_types = {f.type for f in factors}
        priority = risk.mitigation_priority
        actions: List[str] = []

        if priority == MitigationPriority.CRITICAL:
            actions.append(ACTION_CRITICAL)
        elif priority == MitigationPriority.HIGH:
            actions.append(ACTION_ESCALATE)

        for risk_factor in risk.risk_factors:
            if risk_factor.startswith("Critical-level"):
                actions.append(ACTION_REVIEW_CRITICAL)
            elif risk_factor == RISK_FACTOR_SUPPLY_CHAIN:
                actions.append(ACTION_CONTINUITY)
            elif risk_factor == RISK_FACTOR_COMPLEX_NETWORK:
                actions.append(ACTION_MAP_NETWORK)

        if primary.type == AnomalyType.PRICE_SPIKE:
            actions.append(ACTION_SUPPLIER_PRICING)
            if AnomalyType.FREIGHT_SURGE in connected_types:
                actions.append(ACTION_FREIGHT_ROUTES)
            if AnomalyType.FX_VOLATILITY in connected_types:
                actions.append(ACTION_HEDGE_FX)
        elif primary.type == AnomalyType.TARIFF_CHANGE:
            actions.append(ACTION_CUSTOMS_TEMPLATES)
            if AnomalyType.PRICE_SPIKE in connected_types:
                actions.append(ACTION_NEGOTIATE_TARIFF)
        elif primary.type == AnomalyType.FREIGHT_SURGE:
            actions.append(ACTION_ALT_CARRIERS)
            if AnomalyType.PRICE_SPIKE in connected_types:
                actions.append(ACTION_LOCAL_SOURCING)
        elif primary.type == AnomalyType.FX_VOLATILITY:
            actions.append(ACTION_FX_EXPOSURE)

        if priority == MitigationPriority.LOW:
            actions.append(ACTION_CONTINUE_MONITORING)

        deduped = list(dict.fromkeys(actions))
        return deduped[:MAX_ACTIONS]

    def correlation_matrix(
        self,
        primary: AnomalyRecord,
        factors: List[ConnectedFactor]
    ) -> List[CorrelationPair]:
        """Type similarity for every pair among the primary and its top factors."""
        types = [primary.type] + [f.type for f in factors[:MATRIX_FACTOR_LIMIT]]
        return [
            CorrelationPair(
                factor1=a.value,
                factor2=b.value,
                correlation=type_similarity(a, b),
            )
            for a, b in combinations(types, 2)
        ]
