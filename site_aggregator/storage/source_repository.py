"""
Repository for the source registry.

Handles source registration, lookup, activation and the
per-row last_run bookkeeping done by pollers.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.entities import NewSource, Source, SourceUpdate
from .models import SourceModel

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SourceRepository:
    """
    Repository for source registry operations.

    Sources are never hard-deleted; deactivation is the disable
    mechanism.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_sources(self) -> List[Source]:
        """
        Get all sources ordered by id.

        Returns:
            List of Source entities.
        """
        query = select(SourceModel).order_by(SourceModel.id)
        result = await self._session.execute(query)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def list_active(self) -> List[Source]:
        """
        Get sources that should be polled.

        Returns:
            List of active Source entities.
        """
        query = (
            select(SourceModel)
            .where(SourceModel.active.is_(True))
            .order_by(SourceModel.id)
        )
        result = await self._session.execute(query)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def list_by_site(self, site_id: int) -> List[Source]:
        """
        Get all sources linked to a site.

        Args:
            site_id: Site ID.

        Returns:
            List of Source entities.
        """
        query = (
            select(SourceModel)
            .where(SourceModel.site_id == site_id)
            .order_by(SourceModel.id)
        )
        result = await self._session.execute(query)
        return [self._model_to_entity(m) for m in result.scalars().all()]

    async def get_by_id(self, source_id: int) -> Optional[Source]:
        model = await self._session.get(SourceModel, source_id)
        return self._model_to_entity(model) if model else None

    async def get_by_name(self, name: str) -> Optional[Source]:
        """
        Get a source by its unique name.

        Args:
            name: Source name.

        Returns:
            Source if found, None otherwise.
        """
        query = select(SourceModel).where(SourceModel.name == name)
        result = await self._session.execute(query)
        model = result.scalar_one_or_none()

        return self._model_to_entity(model) if model else None

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create(self, source: NewSource) -> Source:
        """
        Register a new source.

        Args:
            source: Fields of the new source.

        Returns:
            Created Source entity.
        """
        model = SourceModel(
            name=source.name,
            description=source.description,
            active=source.active,
            interval_seconds=source.interval_seconds,
            test_type=source.test_type,
            arguments=dict(source.arguments or {}),
            site_id=source.site_id,
            company_id=source.company_id,
        )

        self._session.add(model)
        await self._session.flush()
        await self._session.refresh(model)

        logger.info(f"Created source {model.name} (id={model.id})")
        return self._model_to_entity(model)

    async def ensure(self, source: NewSource) -> Tuple[Source, bool]:
        """
        Create a source unless one with the same name exists.

        Args:
            source: Fields of the source.

        Returns:
            Tuple of (source, created).
        """
        existing = await self.get_by_name(source.name)
        if existing:
            return existing, False

        return await self.create(source), True

    async def update(self, source_id: int, changes: SourceUpdate) -> Optional[Source]:
        """
        Apply a partial update.

        Args:
            source_id: Source ID.
            changes: Fields to change.

        Returns:
            Updated Source, or None if it does not exist.
        """
        model = await self._session.get(SourceModel, source_id)
        if not model:
            return None

        for key, value in changes.changes().items():
            setattr(model, key, value)

        await self._session.flush()
        await self._session.refresh(model)

        return self._model_to_entity(model)

    async def set_active(self, source_id: int, active: bool) -> Optional[Source]:
        return await self.update(source_id, SourceUpdate(active=active))

    async def set_interval(self, source_id: int, interval_seconds: int) -> Optional[Source]:
        return await self.update(source_id, SourceUpdate(interval_seconds=interval_seconds))

    async def mark_run(self, source_id: int, when: Optional[datetime] = None) -> None:
        """
        Record a poll attempt.

        Touches only the last_run column of one row.

        Args:
            source_id: Source ID.
            when: Attempt time (defaults to now).
        """
        stmt = (
            update(SourceModel)
            .where(SourceModel.id == source_id)
            # updated_at tracks administrative edits, not polls
            .values(
                last_run=when or datetime.now(timezone.utc),
                updated_at=SourceModel.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _model_to_entity(self, model: SourceModel) -> Source:
        """Convert a model to its entity."""
        return Source(
            id=model.id,
            name=model.name,
            description=model.description,
            active=bool(model.active),
            interval_seconds=model.interval_seconds,
            last_run=as_utc(model.last_run),
            test_type=model.test_type,
            arguments=dict(model.arguments or {}),
            site_id=model.site_id,
            company_id=model.company_id,
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )
