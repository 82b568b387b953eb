"""
Data models for the cascade intelligence engine.

Anomalies are represented as a tagged variant keyed by ``AnomalyType``: a
shared base shape plus type-specific optional fields lifted out of the
free-form metadata. Correlation edges, the correlation graph and the
snapshot produced by the synthesizer live here too.

All correlation scores are normalized to [0, 1]; impact and risk scores to
[0, 100].
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Type

from app.db.models import Anomaly, AnomalyType, Severity


# Metadata keys that reference a shared real-world entity
ENTITY_KEYS = (
    "product_id",
    "company_id",
    "hs_code",
    "country",
    "currency_pair",
    "category",
)


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class AnomalyRecord:
    """
    Shared base shape for every anomaly variant.

    Subclasses add the fields their type carries and may contribute extra
    entity references.
    """
    id: str
    type: AnomalyType
    severity: Severity
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def _extract_fields(cls, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    def _extra_refs(self) -> List[Tuple[str, str]]:
        return []

    def entity_refs(self) -> FrozenSet[Tuple[str, str]]:
        """Entity references as (kind, value) pairs."""
        refs = set()
        for key in ENTITY_KEYS:
            value = self.metadata.get(key)
            if value not in (None, ""):
                refs.add((key, str(value)))
        for kind, value in self._extra_refs():
            if value not in (None, ""):
                refs.add((kind, str(value)))
        return frozenset(refs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


@dataclass
class PriceSpikeAnomaly(AnomalyRecord):
    product_id: Optional[str] = None
    hs_code: Optional[str] = None
    percentage_change: Optional[float] = None

    @classmethod
    def _extract_fields(cls, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "product_id": metadata.get("product_id"),
            "hs_code": metadata.get("hs_code"),
            "percentage_change": _as_float(metadata.get("percentage_change")),
        }


@dataclass
class TariffChangeAnomaly(AnomalyRecord):
    hs_code: Optional[str] = None
    country: Optional[str] = None
    old_rate: Optional[float] = None
    new_rate: Optional[float] = None

    @classmethod
    def _extract_fields(cls, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "hs_code": metadata.get("hs_code"),
            "country": metadata.get("country"),
            "old_rate": _as_float(metadata.get("old_rate")),
            "new_rate": _as_float(metadata.get("new_rate")),
        }


@dataclass
class FreightSurgeAnomaly(AnomalyRecord):
    route: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    percentage_change: Optional[float] = None

    @classmethod
    def _extract_fields(cls, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "route": metadata.get("route"),
            "origin": metadata.get("origin"),
            "destination": metadata.get("destination"),
            "percentage_change": _as_float(metadata.get("percentage_change")),
        }

    def _extra_refs(self) -> List[Tuple[str, str]]:
        # A surge on a lane touches the origin country
        return [("country", self.origin), ("route", self.route)]


@dataclass
class FxVolatilityAnomaly(AnomalyRecord):
    currency_pair: Optional[str] = None
    percentage_change: Optional[float] = None

    @classmethod
    def _extract_fields(cls, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "currency_pair": metadata.get("currency_pair"),
            "percentage_change": _as_float(metadata.get("percentage_change")),
        }


@dataclass
class CustomAnomaly(AnomalyRecord):
    rule_id: Optional[str] = None

    @classmethod
    def _extract_fields(cls, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return {"rule_id": metadata.get("rule_id")}


ANOMALY_VARIANTS: Dict[AnomalyType, Type[AnomalyRecord]] = {
    AnomalyType.PRICE_SPIKE: PriceSpikeAnomaly,
    AnomalyType.TARIFF_CHANGE: TariffChangeAnomaly,
    AnomalyType.FREIGHT_SURGE: FreightSurgeAnomaly,
    AnomalyType.FX_VOLATILITY: FxVolatilityAnomaly,
    AnomalyType.CUSTOM: CustomAnomaly,
}


def build_anomaly(
    id: str,
    type: AnomalyType,
    severity: Severity,
    timestamp: datetime,
    metadata: Optional[Dict[str, Any]] = None
) -> AnomalyRecord:
    """Build the variant matching ``type``."""
    anomaly_type = AnomalyType(type)
    metadata = dict(metadata or {})
    variant = ANOMALY_VARIANTS[anomaly_type]
    return variant(
        id=str(id),
        type=anomaly_type,
        severity=Severity(severity),
        timestamp=timestamp,
        metadata=metadata,
        **variant._extract_fields(metadata),
    )


def anomaly_from_row(row: Anomaly) -> AnomalyRecord:
    """Convert an ORM row into its domain variant."""
    return build_anomaly(
        id=row.id,
        type=row.type,
        severity=row.severity,
        timestamp=row.timestamp,
        metadata=row.metadata_json,
    )


@dataclass
class CorrelationWeight:
    """
    Composite weight for a correlation edge.

    - type_similarity: how closely the two anomaly types are related
    - temporal_proximity: 1 at the same instant, 0 at the window edge
    - entity_overlap: share of entity references the two have in common
    """
    type_similarity: float = 0.0
    temporal_proximity: float = 0.0
    entity_overlap: float = 0.0

    def compute_final_weight(
        self,
        type_weight: float = 0.45,
        temporal_weight: float = 0.25,
        entity_weight: float = 0.30
    ) -> float:
        final = (
            type_weight * self.type_similarity +
            temporal_weight * self.temporal_proximity +
            entity_weight * self.entity_overlap
        )
        return max(0.0, min(1.0, final))

    def to_dict(self) -> Dict[str, float]:
        return {
            "type_similarity": self.type_similarity,
            "temporal_proximity": self.temporal_proximity,
            "entity_overlap": self.entity_overlap,
        }


@dataclass
class CorrelationEdge:
    """A scored connection from a discoverer node to a reached node."""
    source_id: str
    target_id: str
    weight: CorrelationWeight
    score: float
    hop: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "weight": self.weight.to_dict(),
            "score": self.score,
            "hop": self.hop,
        }


@dataclass
class CorrelationGraph:
    """
    Correlation graph rooted at the primary alert.

    ``candidates`` is the full pool fetched for the time window; only nodes
    in ``hops`` are connected. ``scores`` holds each connected node's final
    (decayed) score.
    """
    primary: AnomalyRecord
    window_days: int
    candidates: Dict[str, AnomalyRecord] = field(default_factory=dict)
    edges: List[CorrelationEdge] = field(default_factory=list)
    hops: Dict[str, int] = field(default_factory=dict)
    scores: Dict[str, float] = field(default_factory=dict)

    _outgoing: Dict[str, List[CorrelationEdge]] = field(default_factory=dict)

    def add_edge(self, edge: CorrelationEdge) -> None:
        """Connect ``edge.target_id`` at the edge's hop."""
        self.edges.append(edge)
        self._outgoing.setdefault(edge.source_id, []).append(edge)
        self.hops[edge.target_id] = edge.hop
        self.scores[edge.target_id] = edge.score

    def is_visited(self, node_id: str) -> bool:
        return node_id == self.primary.id or node_id in self.hops

    def get_outgoing_edges(self, node_id: str) -> List[CorrelationEdge]:
        return list(self._outgoing.get(node_id, []))

    def nodes_at_hop(self, hop: int) -> List[AnomalyRecord]:
        if hop == 0:
            return [self.primary]
        return [
            self.candidates[node_id]
            for node_id in sorted(self.hops)
            if self.hops[node_id] == hop
        ]

    def unvisited_candidates(self) -> List[AnomalyRecord]:
        return [
            self.candidates[node_id]
            for node_id in sorted(self.candidates)
            if not self.is_visited(node_id)
        ]

    @property
    def max_hop(self) -> int:
        return max(self.hops.values()) if self.hops else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_id": self.primary.id,
            "window_days": self.window_days,
            "candidate_count": len(self.candidates),
            "connected_count": len(self.hops),
            "edges": [e.to_dict() for e in self.edges],
        }


@dataclass
class ConnectedFactor:
    """An anomaly judged connected to the primary alert."""
    id: str
    type: AnomalyType
    severity: Severity
    timestamp: datetime
    correlation_score: float
    hop: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "correlation_score": self.correlation_score,
            "hop": self.hop,
        }


class MitigationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConnectionStatus(str, Enum):
    STABLE = "stable"
    MONITORING = "monitoring"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class ImpactCascade:
    cascading_impact: float = 0.0
    total_factors: int = 0
    affected_supply_chain: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cascading_impact": self.cascading_impact,
            "total_factors": self.total_factors,
            "affected_supply_chain": self.affected_supply_chain,
        }


@dataclass
class RiskAssessment:
    overall_risk: float = 0.0
    mitigation_priority: MitigationPriority = MitigationPriority.LOW
    risk_factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_risk": self.overall_risk,
            "mitigation_priority": self.mitigation_priority.value,
            "risk_factors": list(self.risk_factors),
        }


@dataclass
class CorrelationPair:
    factor1: str
    factor2: str
    correlation: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "factor1": self.factor1,
            "factor2": self.factor2,
            "correlation": self.correlation,
        }


@dataclass
class IntelligenceSnapshot:
    """
    The engine's output for one primary alert.

    Contains no wall-clock fields: two analyses over the same store state
    produce equal snapshots.
    """
    primary_alert: AnomalyRecord
    connected_factors: List[ConnectedFactor]
    impact_cascade: ImpactCascade
    risk_assessment: RiskAssessment
    recommended_actions: List[str]
    correlation_matrix: List[CorrelationPair] = field(default_factory=list)
    status: ConnectionStatus = ConnectionStatus.STABLE

    @property
    def connected_ids(self) -> List[str]:
        return [f.id for f in self.connected_factors]

    def truncated(self, limit: int) -> "IntelligenceSnapshot":
        """
        Copy keeping only the ``limit`` highest-scoring factors.

        Cascade and risk figures are left untouched so they still describe
        the full graph.
        """
        return replace(self, connected_factors=list(self.connected_factors[:limit]))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_alert": self.primary_alert.to_dict(),
            "connected_factors": [f.to_dict() for f in self.connected_factors],
            "impact_cascade": self.impact_cascade.to_dict(),
            "risk_assessment": self.risk_assessment.to_dict(),
            "recommended_actions": list(self.recommended_actions),
            "correlation_matrix": {
                "factor_pairs": [p.to_dict() for p in self.correlation_matrix],
            },
            "status": self.status.value,
        }
