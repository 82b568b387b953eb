"""
Cascade intelligence engine.

Given a primary alert, discovers correlated anomalies inside a time window,
expands the correlation graph across decayed hops, and reduces it to a
cascading-impact and risk snapshot with a heuristic forward prediction.
"""

from app.services.intelligence.models import (
    AnomalyRecord,
    ConnectedFactor,
    ConnectionStatus,
    CorrelationEdge,
    CorrelationGraph,
    CorrelationWeight,
    ImpactCascade,
    IntelligenceSnapshot,
    MitigationPriority,
    RiskAssessment,
    anomaly_from_row,
    build_anomaly,
)
from app.services.intelligence.correlations import (
    CorrelationCalculator,
    entity_overlap_score,
    temporal_proximity_score,
    type_similarity,
)
from app.services.intelligence.graph_builder import CorrelationGraphBuilder
from app.services.intelligence.propagator import CascadePropagator
from app.services.intelligence.synthesizer import RiskSynthesizer
from app.services.intelligence.predictor import CascadePrediction, HeuristicCascadePredictor
from app.services.intelligence.engine import (
    IntelligenceEngine,
    analyze_interconnected_intelligence,
    sql_engine_factory,
)
from app.services.intelligence.exporter import export_json, export_text
from app.services.intelligence.service import (
    AnalysisResult,
    BatchResult,
    IntelligenceService,
    PredictionResult,
)

__all__ = [
    # Models
    "AnomalyRecord",
    "ConnectedFactor",
    "ConnectionStatus",
    "CorrelationEdge",
    "CorrelationGraph",
    "CorrelationWeight",
    "ImpactCascade",
    "IntelligenceSnapshot",
    "MitigationPriority",
    "RiskAssessment",
    "anomaly_from_row",
    "build_anomaly",
    # Correlations
    "CorrelationCalculator",
    "entity_overlap_score",
    "temporal_proximity_score",
    "type_similarity",
    # Pipeline
    "CorrelationGraphBuilder",
    "CascadePropagator",
    "RiskSynthesizer",
    "CascadePrediction",
    "HeuristicCascadePredictor",
    "IntelligenceEngine",
    "analyze_interconnected_intelligence",
    "sql_engine_factory",
    # Export
    "export_json",
    "export_text",
    # Service
    "AnalysisResult",
    "BatchResult",
    "IntelligenceService",
    "PredictionResult",
]
