"""
Tests for the readings repository against a temporary SQLite file.
"""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError

from site_aggregator.domain.entities import QualityFlags
from site_aggregator.storage.reading_repository import ReadingRepository
from site_aggregator.storage.source_repository import SourceRepository
from tests.factories import NewReadingFactory, NewSourceFactory

BASE_TIME = datetime(2025, 8, 4, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def source(database):
    async with database.session() as session:
        return await SourceRepository(session).create(NewSourceFactory())


class TestReadingRepository:
    """Tests for ReadingRepository."""

    @pytest.mark.asyncio
    async def test_append(self, database, source):
        async with database.session() as session:
            stored = await ReadingRepository(session).append(NewReadingFactory(
                source_id=source.id,
                data={"value": 1, "nested": {"ok": True}},
                quality_flags=QualityFlags.STALE,
                timestamp=BASE_TIME,
            ))

        async with database.session() as session:
            recent = await ReadingRepository(session).get_recent(source.id)

        assert stored.id is not None
        assert recent == [stored]
        assert recent[0].data == {"value": 1, "nested": {"ok": True}}
        assert recent[0].quality_flags == QualityFlags.STALE
        assert recent[0].timestamp == BASE_TIME

    @pytest.mark.asyncio
    async def test_recent_is_newest_first_and_limited(self, database, source):
        async with database.session() as session:
            repo = ReadingRepository(session)
            for i in range(15):
                await repo.append(NewReadingFactory(
                    source_id=source.id,
                    data={"i": i},
                    timestamp=BASE_TIME + timedelta(seconds=i),
                ))

        async with database.session() as session:
            repo = ReadingRepository(session)
            recent = await repo.get_recent(source.id, limit=10)
            total = await repo.count_for_source(source.id)

        assert total == 15
        assert [r.data["i"] for r in recent] == list(range(14, 4, -1))

    @pytest.mark.asyncio
    async def test_since_is_oldest_first(self, database, source):
        async with database.session() as session:
            repo = ReadingRepository(session)
            for i in range(5):
                await repo.append(NewReadingFactory(
                    source_id=source.id,
                    data={"i": i},
                    timestamp=BASE_TIME + timedelta(minutes=i),
                ))

        async with database.session() as session:
            readings = await ReadingRepository(session).get_since(
                source.id, BASE_TIME + timedelta(minutes=2)
            )

        assert [r.data["i"] for r in readings] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_readings_require_existing_source(self, database):
        with pytest.raises(IntegrityError):
            async with database.session() as session:
                await ReadingRepository(session).append(NewReadingFactory(source_id=12345))

    @pytest.mark.asyncio
    async def test_sources_do_not_mix(self, database, source):
        async with database.session() as session:
            other = await SourceRepository(session).create(NewSourceFactory())
            repo = ReadingRepository(session)
            await repo.append(NewReadingFactory(source_id=source.id))
            await repo.append(NewReadingFactory(source_id=other.id))
            await repo.append(NewReadingFactory(source_id=other.id))

        async with database.session() as session:
            repo = ReadingRepository(session)
            assert await repo.count_for_source(source.id) == 1
            assert await repo.count_for_source(other.id) == 2
