"""
Correlation Graph Builder.

Loads the primary anomaly and every anomaly inside the analysis window,
then scores each candidate against the primary to form the direct (hop 1)
edges of the correlation graph.

Determinism Note:
- Candidates are processed in id order, so edge order is stable
- Scores depend only on anomaly data and the window length, never on the
  wall clock, except for which anomalies fall inside the window
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

import structlog

from app.clock import utcnow
from app.config import settings
from app.errors import AlertNotFoundError
from app.services.intelligence.correlations import CorrelationCalculator
from app.services.intelligence.models import (
    AnomalyRecord,
    CorrelationEdge,
    CorrelationGraph,
)
from app.services.intelligence.repository import AnomalyRepository

logger = structlog.get_logger()


class CorrelationGraphBuilder:
    """
    Builds the direct layer of a correlation graph.

    The builder:
    1. Fetches the primary anomaly (AlertNotFoundError if absent)
    2. Fetches all anomalies in [now - window, now], primary excluded
    3. Scores each candidate against the primary
    4. Keeps candidates at or above the relevance floor as hop-1 edges

    Candidates below the floor stay in the graph's pool so the propagator
    can still reach them through another node.
    """

    def __init__(
        self,
        repository: AnomalyRepository,
        correlation_calculator: Optional[CorrelationCalculator] = None,
        relevance_floor: Optional[float] = None
    ):
        self.repository = repository
        self.calculator = correlation_calculator or CorrelationCalculator()
        self.relevance_floor = (
            settings.CORRELATION_RELEVANCE_FLOOR if relevance_floor is None else relevance_floor
        )

    async def build_for_alert(
        self,
        alert_id: str,
        window_days: int,
        now: Optional[datetime] = None
    ) -> CorrelationGraph:
        """
        Fetch data for ``alert_id`` and build its direct graph.

        Raises:
            AlertNotFoundError: primary alert does not exist
            TransientStoreError: the store could not be reached
        """
        primary = await self.repository.get_anomaly(alert_id)
        if primary is None:
            raise AlertNotFoundError(alert_id)

        end = now or utcnow()
        start = end - timedelta(days=window_days)
        candidates = await self.repository.list_in_window(start, end, exclude_id=alert_id)

        graph = self.build(primary, candidates, window_days)
        logger.info(
            "Correlation graph built",
            alert_id=alert_id,
            window_days=window_days,
            candidates=len(graph.candidates),
            direct_connections=len(graph.hops),
        )
        return graph

    def build(
        self,
        primary: AnomalyRecord,
        candidates: Iterable[AnomalyRecord],
        window_days: int
    ) -> CorrelationGraph:
        """Build the direct graph from already-loaded anomalies."""
        graph = CorrelationGraph(primary=primary, window_days=window_days)
        for candidate in candidates:
            if candidate.id != primary.id:
                graph.candidates[candidate.id] = candidate

        for edge in self._score_direct_edges(graph):
            graph.add_edge(edge)

        return graph

    def _score_direct_edges(self, graph: CorrelationGraph) -> List[CorrelationEdge]:
        edges = []
        for candidate in graph.unvisited_candidates():
            weight, score = self.calculator.correlate(
                graph.primary, candidate, graph.window_days
            )
            if score < self.relevance_floor:
                continue
            edges.append(CorrelationEdge(
                source_id=graph.primary.id,
                target_id=candidate.id,
                weight=weight,
                score=round(score, 4),
                hop=1,
            ))
        return edges
