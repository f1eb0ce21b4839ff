"""
Well-known sources.

Seeding is idempotent: sources are matched by their unique name and
existing rows are left untouched.
"""
import logging
from typing import List, Tuple

from .domain.entities import NewSource, Source
from .storage.site_store import SiteStore

logger = logging.getLogger(__name__)


WELL_KNOWN_SOURCES: List[NewSource] = [
    NewSource(
        name="current_time",
        description="Current UTC time",
        interval_seconds=1,
    ),
    NewSource(
        name="ping_localhost",
        description="Round-trip time to localhost",
        interval_seconds=5,
        test_type="ping",
        arguments={"target": "127.0.0.1"},
    ),
    NewSource(
        name="random_digits",
        description="Random numbers",
        interval_seconds=2,
    ),
    NewSource(
        name="database_modtime",
        description="Modification time of the site database",
        interval_seconds=10,
    ),
    NewSource(
        name="database_sha1",
        description="SHA-1 of the site database",
        interval_seconds=30,
    ),
    NewSource(
        name="charging_state",
        description="Simulated battery charging state",
        interval_seconds=60,
        arguments={"battery_id": "default"},
    ),
]


async def seed_sources(store: SiteStore) -> List[Tuple[Source, bool]]:
    """
    Register the well-known sources that are missing.

    Args:
        store: Site store.

    Returns:
        List of (source, created) in declaration order.
    """
    results = []
    for new_source in WELL_KNOWN_SOURCES:
        source, created = await store.ensure_source(new_source)
        if created:
            logger.info(f"Created source: {source.name} (id={source.id})")
        else:
            logger.debug(f"Source already present: {source.name} (id={source.id})")
        results.append((source, created))

    return results
