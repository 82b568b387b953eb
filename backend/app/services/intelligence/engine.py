"""
Intelligence engine: builder -> propagator -> synthesizer.

The pipeline runs sequentially inside one call and holds no state between
calls, so it is a pure function of the store contents.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncContextManager, AsyncIterator, Callable, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.services.intelligence.correlations import CorrelationCalculator
from app.services.intelligence.graph_builder import CorrelationGraphBuilder
from app.services.intelligence.models import CorrelationGraph, IntelligenceSnapshot
from app.services.intelligence.propagator import CascadePropagator
from app.services.intelligence.repository import AnomalyRepository, SqlAnomalyRepository
from app.services.intelligence.synthesizer import RiskSynthesizer

logger = structlog.get_logger()


class IntelligenceEngine:
    """Runs the full correlation pipeline for one primary alert."""

    def __init__(
        self,
        repository: AnomalyRepository,
        calculator: Optional[CorrelationCalculator] = None,
        propagator: Optional[CascadePropagator] = None,
        synthesizer: Optional[RiskSynthesizer] = None
    ):
        self.repository = repository
        calculator = calculator or CorrelationCalculator()
        self.builder = CorrelationGraphBuilder(repository, correlation_calculator=calculator)
        self.propagator = propagator or CascadePropagator(correlation_calculator=calculator)
        self.synthesizer = synthesizer or RiskSynthesizer()

    async def recent_alert_ids(self, limit: int) -> List[str]:
        return await self.repository.list_recent_ids(limit)

    async def build_graph(
        self,
        alert_id: str,
        window_days: int,
        now: Optional[datetime] = None
    ) -> CorrelationGraph:
        graph = await self.builder.build_for_alert(alert_id, window_days, now=now)
        return self.propagator.propagate(graph)

    async def analyze(
        self,
        alert_id: str,
        window_days: int,
        now: Optional[datetime] = None
    ) -> IntelligenceSnapshot:
        """
        Analyze interconnected anomalies for ``alert_id``.

        Raises:
            AlertNotFoundError: primary alert does not exist
            TransientStoreError: the store could not be reached
        """
        graph = await self.build_graph(alert_id, window_days, now=now)
        factors = self.propagator.connected_factors(graph)
        snapshot = self.synthesizer.synthesize(graph.primary, factors)

        logger.info(
            "Intelligence analysis complete",
            alert_id=alert_id,
            window_days=window_days,
            total_factors=snapshot.impact_cascade.total_factors,
            cascading_impact=snapshot.impact_cascade.cascading_impact,
            overall_risk=snapshot.risk_assessment.overall_risk,
        )
        return snapshot


async def analyze_interconnected_intelligence(
    session: AsyncSession,
    alert_id: str,
    window_days: int = 30
) -> IntelligenceSnapshot:
    """
    Convenience function to run the pipeline against a database session.

    Example:
        >>> snapshot = await analyze_interconnected_intelligence(db, "alert-1", 30)
        >>> snapshot.impact_cascade.cascading_impact
        46.5
    """
    engine = IntelligenceEngine(SqlAnomalyRepository(session))
    return await engine.analyze(alert_id, window_days)


EngineFactory = Callable[[], AsyncContextManager[IntelligenceEngine]]


def sql_engine_factory(session_maker: async_sessionmaker) -> EngineFactory:
    """
    Factory opening one session per engine.

    Concurrent analyses (batch, monitor) must not share an AsyncSession.
    """

    @asynccontextmanager
    async def open_engine() -> AsyncIterator[IntelligenceEngine]:
        async with session_maker() as session:
            yield IntelligenceEngine(SqlAnomalyRepository(session))

    return open_engine
