"""
Site database store.

Wraps the source and reading repositories in short transactions and
translates SQLAlchemy failures into PersistenceError, so pollers and
the supervisor only deal with the aggregator's error taxonomy.
"""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..domain.entities import NewReading, NewSource, Reading, Source, SourceUpdate
from ..exceptions import PersistenceError, SourceNotFoundError
from .database import DatabaseManager
from .reading_repository import ReadingRepository
from .source_repository import SourceRepository

logger = logging.getLogger(__name__)


class SiteStore:
    """
    Source registry accessor and reading store.

    Safe to share between pollers: every call opens its own session,
    and reading appends touch no shared rows.
    """

    def __init__(self, database: DatabaseManager):
        """
        Initialize the store.

        Args:
            database: Database manager owning the engine.
        """
        self.database = database

    @property
    def database_path(self) -> str:
        return self.database.database_path

    async def initialize(self) -> None:
        """Create the schema if it does not exist yet."""
        try:
            await self.database.create_schema()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Cannot initialize site database: {e}", operation="initialize"
            ) from e

    async def close(self) -> None:
        await self.database.close()

    # =========================================================================
    # Source registry
    # =========================================================================

    async def list_sources(self) -> List[Source]:
        try:
            async with self.database.session() as session:
                return await SourceRepository(session).list_sources()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot list sources: {e}", operation="list_sources") from e
        except ValueError as e:
            raise PersistenceError(f"Malformed source registry: {e}", operation="list_sources") from e

    async def list_active_sources(self) -> List[Source]:
        try:
            async with self.database.session() as session:
                return await SourceRepository(session).list_active()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot list active sources: {e}", operation="list_active") from e

    async def list_sources_for_site(self, site_id: int) -> List[Source]:
        try:
            async with self.database.session() as session:
                return await SourceRepository(session).list_by_site(site_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot list sources for site {site_id}: {e}", operation="list_by_site") from e

    async def get_source(self, source_id: int) -> Optional[Source]:
        try:
            async with self.database.session() as session:
                return await SourceRepository(session).get_by_id(source_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot load source: {e}", operation="get_source", source_id=source_id) from e

    async def get_source_by_name(self, name: str) -> Optional[Source]:
        try:
            async with self.database.session() as session:
                return await SourceRepository(session).get_by_name(name)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot load source '{name}': {e}", operation="get_source_by_name") from e

    async def create_source(self, source: NewSource) -> Source:
        try:
            async with self.database.session() as session:
                return await SourceRepository(session).create(source)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot create source '{source.name}': {e}", operation="create_source") from e

    async def ensure_source(self, source: NewSource) -> Tuple[Source, bool]:
        """
        Create a source unless its name is already registered.

        Returns:
            Tuple of (source, created).
        """
        try:
            async with self.database.session() as session:
                return await SourceRepository(session).ensure(source)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot ensure source '{source.name}': {e}", operation="ensure_source") from e

    async def update_source(self, name: str, changes: SourceUpdate) -> Source:
        """
        Apply a partial update to a source found by name.

        Raises:
            SourceNotFoundError: If no source has that name.
        """
        try:
            async with self.database.session() as session:
                repo = SourceRepository(session)
                existing = await repo.get_by_name(name)
                if not existing:
                    raise SourceNotFoundError(name)
                return await repo.update(existing.id, changes)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot update source '{name}': {e}", operation="update_source") from e

    # =========================================================================
    # Readings
    # =========================================================================

    async def record_poll(self, reading: NewReading, attempted_at: datetime) -> Reading:
        """
        Append a reading and update the source's last_run together.

        Args:
            reading: Reading produced by the attempt.
            attempted_at: When the attempt started.

        Returns:
            Stored reading.

        Raises:
            PersistenceError: If the transaction fails; nothing is written.
        """
        try:
            async with self.database.session() as session:
                stored = await ReadingRepository(session).append(reading)
                await SourceRepository(session).mark_run(reading.source_id, attempted_at)
                return stored
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Cannot write reading: {e}",
                operation="record_poll",
                source_id=reading.source_id,
            ) from e

    async def recent_readings(self, source_id: int, limit: int = 10) -> List[Reading]:
        try:
            async with self.database.session() as session:
                return await ReadingRepository(session).get_recent(source_id, limit)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot read readings: {e}", operation="recent_readings", source_id=source_id) from e

    async def readings_since(self, source_id: int, since: datetime) -> List[Reading]:
        try:
            async with self.database.session() as session:
                return await ReadingRepository(session).get_since(source_id, since)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot read readings: {e}", operation="readings_since", source_id=source_id) from e

    async def count_readings(self, source_id: int) -> int:
        try:
            async with self.database.session() as session:
                return await ReadingRepository(session).count_for_source(source_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot count readings: {e}", operation="count_readings", source_id=source_id) from e

    async def recent_readings_by_source(self, limit: int = 10) -> List[Tuple[Source, List[Reading]]]:
        """
        Get every source with its most recent readings.

        Args:
            limit: Readings per source.

        Returns:
            List of (source, readings newest first).
        """
        try:
            async with self.database.session() as session:
                sources = await SourceRepository(session).list_sources()
                readings = ReadingRepository(session)
                return [
                    (source, await readings.get_recent(source.id, limit))
                    for source in sources
                ]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot read aggregated data: {e}", operation="read_aggregated_data") from e
