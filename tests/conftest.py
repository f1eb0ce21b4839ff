"""
Shared pytest fixtures for the aggregator tests.

Provides fixtures for:
- Settings pointing at a per-test SQLite file
- Site store (real aiosqlite database)
- Mock store for failure injection
- A collector registry with deterministic test collectors
"""
import asyncio
import itertools
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from site_aggregator.collectors.builtin import CollectorContext
from site_aggregator.collectors.registry import CollectorRegistry
from site_aggregator.config import (
    AggregatorSettings,
    CollectorSettings,
    DatabaseSettings,
    PollingSettings,
)
from site_aggregator.domain.entities import NewReading, Reading
from site_aggregator.storage.database import DatabaseManager
from site_aggregator.storage.site_store import SiteStore


# ============================================================================
# Settings Fixtures
# ============================================================================

@pytest.fixture
def database_path(tmp_path):
    return str(tmp_path / "site.sqlite")


@pytest.fixture
def polling_settings() -> PollingSettings:
    return PollingSettings(
        collector_timeout=1.0,
        stop_timeout=2.0,
        shutdown_grace_period=2.0,
        min_interval=1,
        recent_readings_limit=10,
    )


@pytest.fixture
def collector_settings() -> CollectorSettings:
    return CollectorSettings(
        ping_count=1,
        ping_wait_seconds=1.0,
        subprocess_timeout=2.0,
        sleep_seconds=0.1,
    )


@pytest.fixture
def settings(database_path, polling_settings, collector_settings) -> AggregatorSettings:
    return AggregatorSettings(
        database=DatabaseSettings(url=database_path),
        polling=polling_settings,
        collectors=collector_settings,
    )


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def database(settings):
    """Database manager with the schema created."""
    manager = DatabaseManager(settings.database)
    await manager.create_schema()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def store(settings):
    """Initialized site store backed by a temporary SQLite file."""
    site_store = SiteStore(DatabaseManager(settings.database))
    await site_store.initialize()

    yield site_store

    await site_store.close()


@pytest.fixture
def mock_store(database_path):
    """
    Mock site store for unit tests.

    record_poll echoes the reading back with an increasing id; override
    side_effect to inject failures.
    """
    ids = itertools.count(1)

    async def record_poll(reading: NewReading, attempted_at) -> Reading:
        return Reading(
            id=next(ids),
            source_id=reading.source_id,
            timestamp=reading.timestamp,
            data=reading.data,
            quality_flags=reading.quality_flags,
        )

    site_store = MagicMock(spec=SiteStore)
    site_store.database_path = database_path
    site_store.record_poll = AsyncMock(side_effect=record_poll)
    site_store.list_sources = AsyncMock(return_value=[])
    site_store.initialize = AsyncMock()
    site_store.close = AsyncMock()

    return site_store


# ============================================================================
# Collector Fixtures
# ============================================================================

class GateCollector:
    """Collector that blocks until released, for in-flight tests."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def __call__(self, ctx: CollectorContext) -> Dict[str, Any]:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return {"source_id": ctx.source_id, "released": True}


async def constant(ctx: CollectorContext) -> Dict[str, Any]:
    return {"source_id": ctx.source_id, "value": 42, **ctx.arguments}


async def boom(ctx: CollectorContext) -> Dict[str, Any]:
    raise RuntimeError("boom")


async def not_a_dict(ctx: CollectorContext):
    return [1, 2, 3]


async def hang(ctx: CollectorContext) -> Dict[str, Any]:
    await asyncio.sleep(60)
    return {}


@pytest.fixture
def gate() -> GateCollector:
    return GateCollector()


@pytest.fixture
def collectors(collector_settings, gate) -> CollectorRegistry:
    """Registry of deterministic test collectors."""
    registry = CollectorRegistry(collector_settings)
    registry.register("constant", constant)
    registry.register("boom", boom)
    registry.register("not_a_dict", not_a_dict)
    registry.register("hang", hang)
    registry.register("gate", gate)
    return registry
