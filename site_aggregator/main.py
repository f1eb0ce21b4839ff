"""
Site Data Aggregator - Main Entry Point.

Starts the aggregation process that:
1. Loads the source registry from the site database
2. Runs one poller per active source
3. Reloads the registry on SIGHUP
4. Lets in-flight polls finish on SIGTERM/SIGINT
"""
import asyncio
import logging
import signal
import sys
from typing import Any, Dict, List, Optional, Tuple

from .collectors.registry import CollectorRegistry, build_default_registry
from .config import AggregatorSettings, get_settings
from .domain.entities import Reading, Source
from .exceptions import ConfigError, PersistenceError
from .polling.supervisor import ReconcileResult, Supervisor
from .reload import ReloadTrigger
from .storage.database import DatabaseManager
from .storage.site_store import SiteStore

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure process-wide logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )


class DataAggregator:
    """
    Aggregator facade.

    Wires the store, collector registry, supervisor and reload trigger,
    and exposes start_aggregation() and read_aggregated_data().
    """

    def __init__(
        self,
        settings: Optional[AggregatorSettings] = None,
        store: Optional[SiteStore] = None,
        collectors: Optional[CollectorRegistry] = None,
    ):
        """
        Initialize the aggregator.

        Args:
            settings: Aggregator settings.
            store: Site store (built from settings when omitted).
            collectors: Collector registry (built-ins when omitted).
        """
        self.settings = settings or get_settings()
        self.store = store or SiteStore(DatabaseManager(self.settings.database))
        self.collectors = collectors or build_default_registry(self.settings.collectors)

        self.supervisor = Supervisor(self.store, self.collectors, self.settings.polling)
        self.reload_trigger = ReloadTrigger(self.supervisor)

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, install_signals: bool = True) -> ReconcileResult:
        """
        Load the registry and start a poller per active source.

        Args:
            install_signals: Install the SIGHUP reload handler.

        Returns:
            Result of the initial reconcile.

        Raises:
            ConfigError: If the registry cannot be opened or read.
        """
        logger.info(f"Starting aggregator (database={self.store.database_path})")

        errors = self.settings.validate_paths()
        if errors:
            raise ConfigError("; ".join(errors))

        try:
            await self.store.initialize()
            sources = await self.store.list_sources()
        except PersistenceError as e:
            await self.store.close()
            raise ConfigError(
                f"Source registry unavailable: {e.message}",
                details={"database": self.store.database_path},
            ) from e

        active = sum(1 for s in sources if s.active)
        logger.info(f"Found {len(sources)} sources ({active} active)")

        result = await self.supervisor.start(sources)
        await self.reload_trigger.start(install_signals=install_signals)

        self._running = True
        self._shutdown_event.clear()
        return result

    async def stop(self, grace_period: Optional[float] = None) -> None:
        """
        Stop aggregation.

        Pollers finish their in-flight attempt within the grace period.
        """
        if not self._running:
            return

        logger.info("Stopping aggregator...")
        self._running = False
        self._shutdown_event.set()

        await self.reload_trigger.stop()
        await self.supervisor.shutdown(grace_period)
        await self.store.close()

        logger.info("Aggregator stopped")

    def request_shutdown(self) -> None:
        """Ask serve_forever() to return. Safe to call from a signal handler."""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    async def serve_forever(self) -> None:
        """Run until shutdown is requested."""
        await self._shutdown_event.wait()

    async def reload(self) -> Optional[ReconcileResult]:
        """Re-read the registry now and reconcile."""
        return await self.supervisor.reload()

    async def start_aggregation(self, install_signals: bool = True) -> None:
        """
        Start aggregation and block until shutdown.

        Args:
            install_signals: Install SIGHUP/SIGTERM/SIGINT handlers.
        """
        await self.start(install_signals=install_signals)

        if install_signals:
            setup_signal_handlers(self, asyncio.get_running_loop())

        try:
            await self.serve_forever()
        finally:
            await self.stop()

    async def read_aggregated_data(
        self,
        limit: Optional[int] = None,
    ) -> List[Tuple[Source, List[Reading]]]:
        """
        Most recent readings for every source.

        Args:
            limit: Readings per source (defaults to settings).

        Returns:
            List of (source, readings newest first).
        """
        if limit is None:
            limit = self.settings.polling.recent_readings_limit
        return await self.store.recent_readings_by_source(limit)

    def get_stats(self) -> Dict[str, Any]:
        """Get aggregator statistics."""
        return {
            "running": self._running,
            "database": self.store.database_path,
            "collectors": self.collectors.keys(),
            "supervisor": self.supervisor.get_stats(),
            "reload": self.reload_trigger.get_stats(),
        }


async def read_aggregated_data(
    database_path: Optional[str] = None,
    limit: int = 10,
) -> List[Tuple[Source, List[Reading]]]:
    """
    Read the most recent readings per source without starting pollers.

    Args:
        database_path: Site database path (defaults to settings).
        limit: Readings per source.

    Returns:
        List of (source, readings newest first).
    """
    settings = get_settings().database
    if database_path:
        settings = settings.model_copy(update={"url": database_path})

    store = SiteStore(DatabaseManager(settings))
    try:
        await store.initialize()
        return await store.recent_readings_by_source(limit)
    finally:
        await store.close()


def setup_signal_handlers(aggregator: DataAggregator, loop: asyncio.AbstractEventLoop):
    """Setup signal handlers for graceful shutdown."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, aggregator.request_shutdown)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: aggregator.request_shutdown())


async def main(settings: Optional[AggregatorSettings] = None):
    """Main entry point."""
    settings = settings or get_settings()
    aggregator = DataAggregator(settings)

    try:
        await aggregator.start_aggregation()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        await aggregator.stop()


if __name__ == "__main__":
    setup_logging(get_settings().log_level)
    asyncio.run(main())
