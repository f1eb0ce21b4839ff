"""
Tests for the site store and its error translation.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from site_aggregator.domain.entities import QualityFlags, SourceUpdate
from site_aggregator.exceptions import PersistenceError, SourceNotFoundError
from site_aggregator.storage.source_repository import SourceRepository
from tests.factories import NewReadingFactory, NewSourceFactory


class TestSiteStore:
    """Tests for SiteStore."""

    @pytest.mark.asyncio
    async def test_initialize_is_repeatable(self, store):
        await store.initialize()
        assert await store.list_sources() == []

    @pytest.mark.asyncio
    async def test_record_poll_writes_reading_and_last_run(self, store):
        source = await store.create_source(NewSourceFactory())
        attempted_at = datetime(2025, 8, 4, 12, 0, tzinfo=timezone.utc)

        stored = await store.record_poll(
            NewReadingFactory(source_id=source.id, data={"v": 1}, timestamp=attempted_at),
            attempted_at,
        )

        reloaded = await store.get_source(source.id)
        assert reloaded.last_run == attempted_at
        assert await store.recent_readings(source.id) == [stored]
        assert await store.count_readings(source.id) == 1

    @pytest.mark.asyncio
    async def test_record_poll_for_missing_source(self, store):
        with pytest.raises(PersistenceError) as exc_info:
            await store.record_poll(
                NewReadingFactory(source_id=999),
                datetime.now(timezone.utc),
            )

        assert exc_info.value.operation == "record_poll"
        assert exc_info.value.source_id == 999

    @pytest.mark.asyncio
    async def test_failed_record_poll_leaves_last_run(self, store):
        source = await store.create_source(NewSourceFactory())

        with patch.object(SourceRepository, "mark_run", side_effect=OperationalError("UPDATE", {}, Exception("locked"))):
            with pytest.raises(PersistenceError):
                await store.record_poll(
                    NewReadingFactory(source_id=source.id),
                    datetime.now(timezone.utc),
                )

        assert await store.count_readings(source.id) == 0
        assert (await store.get_source(source.id)).last_run is None

    @pytest.mark.asyncio
    async def test_duplicate_name(self, store):
        await store.create_source(NewSourceFactory(name="dup"))

        with pytest.raises(PersistenceError) as exc_info:
            await store.create_source(NewSourceFactory(name="dup"))

        assert exc_info.value.operation == "create_source"

    @pytest.mark.asyncio
    async def test_update_source_by_name(self, store):
        await store.create_source(NewSourceFactory(name="probe", interval_seconds=5))

        updated = await store.update_source("probe", SourceUpdate(active=False))

        assert updated.active is False
        assert updated.interval_seconds == 5
        assert await store.list_active_sources() == []

    @pytest.mark.asyncio
    async def test_update_unknown_source(self, store):
        with pytest.raises(SourceNotFoundError) as exc_info:
            await store.update_source("ghost", SourceUpdate(active=True))

        assert exc_info.value.message == "Source 'ghost' not found"

    @pytest.mark.asyncio
    async def test_lookups(self, store):
        created = await store.create_source(NewSourceFactory(name="north", site_id=4))

        assert (await store.get_source_by_name("north")).id == created.id
        assert await store.get_source_by_name("south") is None
        assert [s.name for s in await store.list_sources_for_site(4)] == ["north"]

    @pytest.mark.asyncio
    async def test_readings_since(self, store):
        source = await store.create_source(NewSourceFactory())
        base = datetime(2025, 8, 4, 12, 0, tzinfo=timezone.utc)
        for i in range(3):
            moment = base + timedelta(seconds=i)
            await store.record_poll(
                NewReadingFactory(source_id=source.id, data={"i": i}, timestamp=moment),
                moment,
            )

        readings = await store.readings_since(source.id, base + timedelta(seconds=1))

        assert [r.data["i"] for r in readings] == [1, 2]

    @pytest.mark.asyncio
    async def test_recent_readings_by_source(self, store):
        first = await store.create_source(NewSourceFactory(name="first"))
        second = await store.create_source(NewSourceFactory(name="second", active=False))
        base = datetime(2025, 8, 4, 12, 0, tzinfo=timezone.utc)
        for i in range(4):
            moment = base + timedelta(seconds=i)
            await store.record_poll(
                NewReadingFactory(
                    source_id=first.id,
                    data={"i": i},
                    quality_flags=QualityFlags.COLLECTOR_ERROR if i == 3 else QualityFlags.OK,
                    timestamp=moment,
                ),
                moment,
            )

        data = await store.recent_readings_by_source(limit=2)

        assert [(source.name, len(readings)) for source, readings in data] == [
            ("first", 2),
            ("second", 0),
        ]
        newest = data[0][1][0]
        assert newest.data == {"i": 3}
        assert newest.quality_flags == QualityFlags.COLLECTOR_ERROR
        assert data[1][0].id == second.id
