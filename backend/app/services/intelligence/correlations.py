"""
Correlation calculations for anomaly edge weighting.

Implements:
- Type similarity between anomaly types (same, related, unrelated)
- Temporal proximity relative to the analysis window
- Shared-entity overlap from metadata references

All functions are deterministic given the same inputs.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Optional, Tuple

from app.config import settings
from app.db.models import AnomalyType
from app.services.intelligence.models import AnomalyRecord, CorrelationWeight


SAME_TYPE_SIMILARITY = 1.0
UNRELATED_TYPE_SIMILARITY = 0.2

# Symmetric partial credit for related anomaly types
RELATED_TYPE_SIMILARITY: Dict[FrozenSet[AnomalyType], float] = {
    frozenset({AnomalyType.PRICE_SPIKE, AnomalyType.FREIGHT_SURGE}): 0.9,
    frozenset({AnomalyType.PRICE_SPIKE, AnomalyType.TARIFF_CHANGE}): 0.85,
    frozenset({AnomalyType.PRICE_SPIKE, AnomalyType.FX_VOLATILITY}): 0.75,
    frozenset({AnomalyType.FX_VOLATILITY, AnomalyType.FREIGHT_SURGE}): 0.5,
    frozenset({AnomalyType.TARIFF_CHANGE, AnomalyType.FREIGHT_SURGE}): 0.5,
    frozenset({AnomalyType.TARIFF_CHANGE, AnomalyType.FX_VOLATILITY}): 0.4,
}


def type_similarity(type_a: AnomalyType, type_b: AnomalyType) -> float:
    """
    Similarity between two anomaly types.

    Example:
        >>> type_similarity(AnomalyType.PRICE_SPIKE, AnomalyType.FREIGHT_SURGE)
        0.9
    """
    if type_a == type_b:
        return SAME_TYPE_SIMILARITY
    return RELATED_TYPE_SIMILARITY.get(
        frozenset({type_a, type_b}), UNRELATED_TYPE_SIMILARITY
    )


def temporal_proximity_score(
    timestamp_a: Optional[datetime],
    timestamp_b: Optional[datetime],
    window_days: float
) -> float:
    """
    Proximity of two anomalies in time.

    Decays linearly from 1.0 (same instant) to 0.0 at the window length.

    Edge Cases:
        - Returns 0.0 if either timestamp is missing
        - Returns 0.0 for a non-positive window
    """
    if timestamp_a is None or timestamp_b is None or window_days <= 0:
        return 0.0

    gap_seconds = abs((timestamp_b - timestamp_a).total_seconds())
    window_seconds = window_days * 86400.0
    return max(0.0, min(1.0, 1.0 - gap_seconds / window_seconds))


def entity_overlap_score(
    refs_a: FrozenSet[Tuple[str, str]],
    refs_b: FrozenSet[Tuple[str, str]]
) -> float:
    """
    Share of entity references two anomalies have in common.

    Normalized by the smaller reference set, so a lone product reference
    fully shared counts as complete overlap.
    """
    if not refs_a or not refs_b:
        return 0.0
    shared = len(refs_a & refs_b)
    return min(1.0, shared / min(len(refs_a), len(refs_b)))


class CorrelationCalculator:
    """
    Computes pairwise correlation between anomalies.

    Combines type similarity, temporal proximity and shared-entity overlap
    into a single score in [0, 1].
    """

    def __init__(
        self,
        type_weight: Optional[float] = None,
        temporal_weight: Optional[float] = None,
        entity_weight: Optional[float] = None
    ):
        """
        Initialize the correlation calculator.

        Args:
            type_weight: Weight for type similarity in the final score
            temporal_weight: Weight for temporal proximity in the final score
            entity_weight: Weight for shared-entity overlap in the final score
        """
        self.type_weight = settings.TYPE_WEIGHT if type_weight is None else type_weight
        self.temporal_weight = settings.TEMPORAL_WEIGHT if temporal_weight is None else temporal_weight
        self.entity_weight = settings.ENTITY_WEIGHT if entity_weight is None else entity_weight

    def compute_weight(
        self,
        anomaly_a: AnomalyRecord,
        anomaly_b: AnomalyRecord,
        window_days: float
    ) -> CorrelationWeight:
        """Compute the component scores between two anomalies."""
        return CorrelationWeight(
            type_similarity=type_similarity(anomaly_a.type, anomaly_b.type),
            temporal_proximity=temporal_proximity_score(
                anomaly_a.timestamp, anomaly_b.timestamp, window_days
            ),
            entity_overlap=entity_overlap_score(
                anomaly_a.entity_refs(), anomaly_b.entity_refs()
            ),
        )

    def score(self, weight: CorrelationWeight) -> float:
        return weight.compute_final_weight(
            type_weight=self.type_weight,
            temporal_weight=self.temporal_weight,
            entity_weight=self.entity_weight,
        )

    def correlate(
        self,
        anomaly_a: AnomalyRecord,
        anomaly_b: AnomalyRecord,
        window_days: float
    ) -> Tuple[CorrelationWeight, float]:
        """Return the component weight and the combined score."""
        weight = self.compute_weight(anomaly_a, anomaly_b, window_days)
        return weight, self.score(weight)
