"""
Repository for the readings log.

Readings are appended by pollers and only ever read afterwards;
there is no update or delete path.
"""
import logging
from datetime import datetime
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.entities import NewReading, QualityFlags, Reading
from .models import ReadingModel
from .source_repository import as_utc

logger = logging.getLogger(__name__)


class ReadingRepository:
    """Repository for reading append and lookup."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, reading: NewReading) -> Reading:
        """
        Append a reading.

        Args:
            reading: Reading to store.

        Returns:
            Stored Reading entity.
        """
        model = ReadingModel(
            source_id=reading.source_id,
            timestamp=reading.timestamp,
            data=reading.data,
            quality_flags=int(reading.quality_flags),
        )

        self._session.add(model)
        await self._session.flush()

        return self._model_to_entity(model)

    async def get_recent(self, source_id: int, limit: int = 10) -> List[Reading]:
        """
        Get the most recent readings for a source.

        Args:
            source_id: Source ID.
            limit: Maximum readings to return.

        Returns:
            Readings, newest first.
        """
        query = (
            select(ReadingModel)
            .where(ReadingModel.source_id == source_id)
            .order_by(ReadingModel.timestamp.desc(), ReadingModel.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(query)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def get_since(self, source_id: int, since: datetime) -> List[Reading]:
        """
        Get readings for a source taken at or after a point in time.

        Args:
            source_id: Source ID.
            since: Lower bound (inclusive).

        Returns:
            Readings, oldest first.
        """
        query = (
            select(ReadingModel)
            .where(
                ReadingModel.source_id == source_id,
                ReadingModel.timestamp >= since,
            )
            .order_by(ReadingModel.timestamp, ReadingModel.id)
        )
        result = await self._session.execute(query)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def count_for_source(self, source_id: int) -> int:
        query = select(func.count()).select_from(ReadingModel).where(
            ReadingModel.source_id == source_id
        )
        result = await self._session.execute(query)
        return result.scalar_one()

    def _model_to_entity(self, model: ReadingModel) -> Reading:
        """Convert a model to its entity."""
        return Reading(
            id=model.id,
            source_id=model.source_id,
            timestamp=as_utc(model.timestamp),
            data=model.data,
            quality_flags=QualityFlags(model.quality_flags),
        )
