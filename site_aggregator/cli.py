"""
Command-line interface for the site data aggregator.

Usage:
    site-aggregator run             # Poll active sources until SIGTERM
    site-aggregator setup-sources   # Seed the well-known sources
    site-aggregator read            # Dump recent readings per source
    site-aggregator sources list    # Show the source registry
"""
import asyncio
import json
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

import click

from .config import AggregatorSettings, get_settings
from .domain.entities import NewSource, SourceUpdate
from .exceptions import AggregatorError
from .main import DataAggregator, setup_logging
from .seed import seed_sources
from .storage.database import DatabaseManager
from .storage.site_store import SiteStore

T = TypeVar("T")


def _run_with_store(settings: AggregatorSettings, action: Callable[[SiteStore], Awaitable[T]]) -> T:
    """Open the site store, run an action, and map aggregator errors to exit status 1."""

    async def run() -> T:
        store = SiteStore(DatabaseManager(settings.database))
        try:
            await store.initialize()
            return await action(store)
        finally:
            await store.close()

    try:
        return asyncio.run(run())
    except AggregatorError as e:
        raise click.ClickException(e.message)


def _parse_arguments(pairs: Tuple[str, ...]) -> Dict[str, str]:
    arguments = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--arg")
        arguments[key] = value
    return arguments


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log every poll attempt")
@click.option("--database", "-d", default=None, help="Site database path (overrides SITE_DATABASE_URL)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, database: Optional[str]) -> None:
    """Site Data Aggregator - polls registered sources into the site database."""
    settings = get_settings()
    if database:
        settings = settings.model_copy(
            update={"database": settings.database.model_copy(update={"url": database})}
        )

    setup_logging("DEBUG" if verbose or settings.debug else settings.log_level)
    ctx.obj = settings


@main.command()
@click.pass_obj
def run(settings: AggregatorSettings) -> None:
    """Run the aggregator. SIGHUP reloads sources, SIGTERM stops."""
    click.echo(f"Database path: {settings.database.path}")

    try:
        asyncio.run(DataAggregator(settings).start_aggregation())
    except AggregatorError as e:
        raise click.ClickException(e.message)


@main.command("setup-sources")
@click.pass_obj
def setup_sources(settings: AggregatorSettings) -> None:
    """Register the well-known sources (safe to re-run)."""
    results = _run_with_store(settings, seed_sources)

    for source, created in results:
        status = "created" if created else "exists"
        click.echo(f"{source.name:<20} id={source.id:<4} {status}")

    created_count = sum(1 for _, created in results if created)
    click.echo(f"{created_count} created, {len(results) - created_count} already present")


@main.command()
@click.option("--limit", "-n", default=None, type=int, help="Readings per source")
@click.option("--show", default=3, show_default=True, help="Readings printed per source")
@click.pass_obj
def read(settings: AggregatorSettings, limit: Optional[int], show: int) -> None:
    """Print the most recent readings for every source."""
    limit = limit or settings.polling.recent_readings_limit
    data = _run_with_store(settings, lambda store: store.recent_readings_by_source(limit))

    click.echo(f"Found {len(data)} sources")
    for source, readings in data:
        click.echo("")
        click.echo(f"Source: {source.name} ({source.description or 'No description'})")
        click.echo(f"  Active: {source.active}  Interval: {source.interval_seconds}s")
        click.echo(f"  Last run: {source.last_run.isoformat() if source.last_run else 'never'}")
        click.echo(f"  Recent readings ({len(readings)}):")

        for reading in readings[:show]:
            click.echo(
                f"    {reading.timestamp.isoformat()} "
                f"[flags={int(reading.quality_flags)}] {json.dumps(reading.data)}"
            )

        if len(readings) > show:
            click.echo(f"    ... and {len(readings) - show} more readings")


@main.group()
def sources() -> None:
    """Manage the source registry."""


@sources.command("list")
@click.option("--site", "site_id", default=None, type=int, help="Only sources linked to this site")
@click.pass_obj
def list_sources(settings: AggregatorSettings, site_id: Optional[int]) -> None:
    """List registered sources."""
    if site_id is None:
        rows = _run_with_store(settings, lambda store: store.list_sources())
    else:
        rows = _run_with_store(settings, lambda store: store.list_sources_for_site(site_id))

    for source in rows:
        click.echo(
            f"{source.id:<4} {source.name:<24} "
            f"{'active' if source.active else 'inactive':<9} "
            f"every {source.interval_seconds}s  "
            f"collector={source.collector_key}  args={json.dumps(source.arguments)}"
        )


@sources.command("add")
@click.argument("name")
@click.option("--test-type", default=None, help="Collector to use (defaults to NAME)")
@click.option("--interval", default=1, show_default=True, type=click.IntRange(min=1), help="Poll interval in seconds")
@click.option("--description", default=None)
@click.option("--arg", "args", multiple=True, help="Collector argument KEY=VALUE (repeatable)")
@click.option("--site", "site_id", default=None, type=int)
@click.option("--company", "company_id", default=None, type=int)
@click.option("--inactive", is_flag=True, help="Register without polling")
@click.pass_obj
def add_source(
    settings: AggregatorSettings,
    name: str,
    test_type: Optional[str],
    interval: int,
    description: Optional[str],
    args: Tuple[str, ...],
    site_id: Optional[int],
    company_id: Optional[int],
    inactive: bool,
) -> None:
    """Register a new source."""
    new_source = NewSource(
        name=name,
        description=description,
        active=not inactive,
        interval_seconds=interval,
        test_type=test_type,
        arguments=_parse_arguments(args),
        site_id=site_id,
        company_id=company_id,
    )
    source = _run_with_store(settings, lambda store: store.create_source(new_source))
    click.echo(f"Created source: {source.name} (id={source.id})")


def _update(settings: AggregatorSettings, name: str, changes: SourceUpdate) -> None:
    source = _run_with_store(settings, lambda store: store.update_source(name, changes))
    click.echo(
        f"Updated source: {source.name} "
        f"({'active' if source.active else 'inactive'}, every {source.interval_seconds}s)"
    )


@sources.command("activate")
@click.argument("name")
@click.pass_obj
def activate_source(settings: AggregatorSettings, name: str) -> None:
    """Mark a source active."""
    _update(settings, name, SourceUpdate(active=True))


@sources.command("deactivate")
@click.argument("name")
@click.pass_obj
def deactivate_source(settings: AggregatorSettings, name: str) -> None:
    """Stop polling a source (it is never deleted)."""
    _update(settings, name, SourceUpdate(active=False))


@sources.command("set-interval")
@click.argument("name")
@click.argument("seconds", type=click.IntRange(min=1))
@click.pass_obj
def set_interval(settings: AggregatorSettings, name: str, seconds: int) -> None:
    """Change how often a source is polled."""
    _update(settings, name, SourceUpdate(interval_seconds=seconds))


if __name__ == "__main__":
    main()
