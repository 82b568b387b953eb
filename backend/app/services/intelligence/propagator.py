"""
Cascade Propagator.

Expands the direct correlation graph breadth-first, one hop at a time,
and turns the connected nodes into ``ConnectedFactor``s.

A node first reached at hop h >= 2 scores

    max over discoverers d at hop h-1 of  score(d) * pairwise(d, node) * decay

with decay < 1, so a reached node always scores below the node that
discovered it. Nodes reached at a shallower hop are never revisited.
"""

from typing import Dict, List, Optional

import structlog

from app.config import settings
from app.services.intelligence.correlations import CorrelationCalculator
from app.services.intelligence.models import (
    ConnectedFactor,
    CorrelationEdge,
    CorrelationGraph,
)

logger = structlog.get_logger()


class CascadePropagator:
    """Multi-hop expansion with per-hop decay."""

    def __init__(
        self,
        correlation_calculator: Optional[CorrelationCalculator] = None,
        max_hops: Optional[int] = None,
        hop_decay: Optional[float] = None,
        relevance_floor: Optional[float] = None
    ):
        self.calculator = correlation_calculator or CorrelationCalculator()
        self.max_hops = settings.MAX_HOPS if max_hops is None else max_hops
        self.hop_decay = settings.HOP_DECAY if hop_decay is None else hop_decay
        self.relevance_floor = (
            settings.CORRELATION_RELEVANCE_FLOOR if relevance_floor is None else relevance_floor
        )
        if not 0.0 < self.hop_decay < 1.0:
            raise ValueError("hop_decay must be in (0, 1)")

    def propagate(self, graph: CorrelationGraph) -> CorrelationGraph:
        """
        Expand ``graph`` in place from hop 2 up to ``max_hops``.

        Terminates early when a hop reaches no new node above the floor.
        """
        for hop in range(2, self.max_hops + 1):
            frontier = graph.nodes_at_hop(hop - 1)
            if not frontier:
                break

            best: Dict[str, CorrelationEdge] = {}
            for candidate in graph.unvisited_candidates():
                for discoverer in frontier:
                    weight, pairwise = self.calculator.correlate(
                        discoverer, candidate, graph.window_days
                    )
                    score = graph.scores[discoverer.id] * pairwise * self.hop_decay
                    if score < self.relevance_floor:
                        continue
                    current = best.get(candidate.id)
                    if current is None or score > current.score:
                        best[candidate.id] = CorrelationEdge(
                            source_id=discoverer.id,
                            target_id=candidate.id,
                            weight=weight,
                            score=round(score, 4),
                            hop=hop,
                        )

            if not best:
                break

            for node_id in sorted(best):
                graph.add_edge(best[node_id])

            logger.debug("Cascade hop expanded", hop=hop, new_nodes=len(best))

        return graph

    def connected_factors(self, graph: CorrelationGraph) -> List[ConnectedFactor]:
        """Connected nodes as factors, highest score first (ties by id)."""
        factors = []
        for node_id, hop in graph.hops.items():
            anomaly = graph.candidates[node_id]
            factors.append(ConnectedFactor(
                id=anomaly.id,
                type=anomaly.type,
                severity=anomaly.severity,
                timestamp=anomaly.timestamp,
                correlation_score=graph.scores[node_id],
                hop=hop,
            ))
        factors.sort(key=lambda f: (-f.correlation_score, f.id))
        return factors
