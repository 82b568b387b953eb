"""Read access to the anomaly store."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Anomaly
from app.errors import TransientStoreError
from app.services.intelligence.models import AnomalyRecord, anomaly_from_row

logger = structlog.get_logger()


class AnomalyRepository(ABC):
    """Anomaly lookups the engine depends on."""

    @abstractmethod
    async def get_anomaly(self, anomaly_id: str) -> Optional[AnomalyRecord]:
        """Return the anomaly or None when it does not exist."""

    @abstractmethod
    async def list_in_window(
        self,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None
    ) -> List[AnomalyRecord]:
        """Anomalies with ``start <= timestamp <= end``."""

    @abstractmethod
    async def list_recent_ids(self, limit: int) -> List[str]:
        """Ids of the most recent anomalies, newest first."""


class SqlAnomalyRepository(AnomalyRepository):
    """Anomaly repository backed by an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_anomaly(self, anomaly_id: str) -> Optional[AnomalyRecord]:
        try:
            result = await self.session.execute(
                select(Anomaly).where(Anomaly.id == anomaly_id)
            )
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Anomaly lookup failed", anomaly_id=anomaly_id, error=str(e))
            raise TransientStoreError("Anomaly store unavailable") from e

        return anomaly_from_row(row) if row else None

    async def list_in_window(
        self,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None
    ) -> List[AnomalyRecord]:
        query = (
            select(Anomaly)
            .where(Anomaly.timestamp >= start, Anomaly.timestamp <= end)
            .order_by(Anomaly.timestamp, Anomaly.id)
        )
        if exclude_id is not None:
            query = query.where(Anomaly.id != exclude_id)

        try:
            result = await self.session.execute(query)
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Anomaly window query failed", error=str(e))
            raise TransientStoreError("Anomaly store unavailable") from e

        return [anomaly_from_row(row) for row in rows]

    async def list_recent_ids(self, limit: int) -> List[str]:
        try:
            result = await self.session.execute(
                select(Anomaly.id)
                .order_by(desc(Anomaly.timestamp), Anomaly.id)
                .limit(limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Recent anomaly query failed", error=str(e))
            raise TransientStoreError("Anomaly store unavailable") from e
