"""
Poller supervisor.

Owns the live set of pollers and reconciles it against the source
registry: new active sources are started, deactivated or removed
sources are stopped, and changed sources are restarted.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..collectors.registry import CollectorRegistry
from ..config import PollingSettings
from ..domain.entities import Source
from ..exceptions import PersistenceError, ReloadError
from ..storage.site_store import SiteStore
from .poller import Poller

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Source ids affected by one reconcile pass."""
    started: List[int] = field(default_factory=list)
    stopped: List[int] = field(default_factory=list)
    restarted: List[int] = field(default_factory=list)
    unchanged: List[int] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.started or self.stopped or self.restarted)

    def __str__(self) -> str:
        return (
            f"started={self.started} stopped={self.stopped} "
            f"restarted={self.restarted} unchanged={len(self.unchanged)}"
        )


class Supervisor:
    """
    Manages pollers for all active sources.

    Features:
    - Restart-on-change (never two pollers for one source)
    - Idempotent reconcile
    - Graceful shutdown with a bounded grace period

    The poller map is only mutated under the supervisor's lock; the
    pollers themselves run outside it.
    """

    def __init__(
        self,
        store: SiteStore,
        collectors: CollectorRegistry,
        settings: Optional[PollingSettings] = None,
    ):
        """
        Initialize the supervisor.

        Args:
            store: Source registry and reading store.
            collectors: Collector registry handed to every poller.
            settings: Polling settings.
        """
        self.store = store
        self.collectors = collectors
        self.settings = settings or PollingSettings()

        # Live pollers per source id
        self._pollers: Dict[int, Poller] = {}
        self._lock = asyncio.Lock()

        # State
        self._running = False
        self._started_at: Optional[datetime] = None
        self._last_reconcile: Optional[datetime] = None
        self._reconcile_count = 0
        self._failed_reloads = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, sources: Optional[Iterable[Source]] = None) -> ReconcileResult:
        """
        Start supervising.

        Args:
            sources: Initial registry contents.

        Returns:
            Result of the initial reconcile.
        """
        logger.info("Starting supervisor")
        self._running = True
        self._started_at = datetime.now(timezone.utc)
        return await self.reconcile(sources or [])

    async def reconcile(self, desired: Iterable[Source]) -> ReconcileResult:
        """
        Make the live poller set match the desired sources.

        Inactive sources and sources with an invalid interval are
        treated as not desired.

        Args:
            desired: Sources from the registry.

        Returns:
            ReconcileResult describing what changed.
        """
        wanted: Dict[int, Source] = {}
        for source in desired:
            if not source.active:
                continue
            if source.interval_seconds < self.settings.min_interval:
                logger.warning(
                    f"Source {source.id} ({source.name}) has invalid interval "
                    f"{source.interval_seconds}s, not polling"
                )
                continue
            wanted[source.id] = source

        result = ReconcileResult()

        async with self._lock:
            if not self._running:
                logger.warning("Supervisor not running, ignoring reconcile")
                return result

            to_stop: List[int] = []
            for source_id, poller in self._pollers.items():
                source = wanted.get(source_id)
                if source is None:
                    to_stop.append(source_id)
                    result.stopped.append(source_id)
                elif not poller.is_running:
                    logger.warning(f"Poller for source {source_id} exited unexpectedly, restarting")
                    to_stop.append(source_id)
                    result.restarted.append(source_id)
                elif poller.signature != source.config_signature():
                    to_stop.append(source_id)
                    result.restarted.append(source_id)
                else:
                    result.unchanged.append(source_id)

            result.started = [sid for sid in wanted if sid not in self._pollers]

            # Old pollers are fully stopped before replacements start
            await asyncio.gather(*(self._stop_poller(sid) for sid in to_stop))

            for source_id in result.restarted + result.started:
                self._start_poller(wanted[source_id])

            self._reconcile_count += 1
            self._last_reconcile = datetime.now(timezone.utc)

        if result.changed:
            logger.info(f"Reconciled pollers: {result}")
        else:
            logger.debug(f"Reconcile found no changes ({len(result.unchanged)} pollers)")

        return result

    async def load_sources(self) -> List[Source]:
        """
        Read the registry.

        Raises:
            ReloadError: If the registry cannot be read.
        """
        try:
            return await self.store.list_sources()
        except PersistenceError as e:
            raise ReloadError(f"Cannot read source registry: {e.message}") from e

    async def reload(self) -> Optional[ReconcileResult]:
        """
        Re-read the registry and reconcile.

        A registry failure leaves the live pollers untouched.

        Returns:
            ReconcileResult, or None if the registry could not be read.
        """
        logger.info("Reloading sources")
        try:
            sources = await self.load_sources()
        except ReloadError as e:
            self._failed_reloads += 1
            logger.error(f"Reload skipped kind=reload: {e.message}")
            return None

        return await self.reconcile(sources)

    async def shutdown(self, grace_period: Optional[float] = None) -> None:
        """
        Stop every poller.

        Pollers finish their in-flight attempt; any still running after
        the grace period are cancelled.

        Args:
            grace_period: Seconds to wait (defaults to settings).
        """
        if grace_period is None:
            grace_period = self.settings.shutdown_grace_period

        async with self._lock:
            if not self._running:
                return

            logger.info(f"Stopping {len(self._pollers)} pollers (grace={grace_period}s)")
            self._running = False

            pollers = list(self._pollers.values())
            self._pollers.clear()

            for poller in pollers:
                poller.request_stop()

            tasks = [p.task for p in pollers if p.task is not None]
            if tasks:
                _, pending = await asyncio.wait(tasks, timeout=grace_period)
                for task in pending:
                    logger.warning(f"Cancelling {task.get_name()} after grace period")
                    task.cancel()
                if pending:
                    await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Supervisor stopped")

    def _start_poller(self, source: Source) -> None:
        poller = Poller(source, self.collectors, self.store, self.settings)
        poller.start()
        self._pollers[source.id] = poller

        logger.info(
            f"Started poller for source {source.id} ({source.name}, "
            f"collector={source.collector_key}, interval={poller.interval}s)"
        )

    async def _stop_poller(self, source_id: int) -> None:
        # Stays in the map until stopped so shutdown() still sees it if
        # this reconcile is cancelled.
        poller = self._pollers.get(source_id)
        if poller is None:
            return

        graceful = await poller.stop(timeout=self.settings.stop_timeout)
        if self._pollers.get(source_id) is poller:
            del self._pollers[source_id]

        logger.info(
            f"Stopped poller for source {source_id} ({poller.source.name})"
            f"{'' if graceful else ' (cancelled)'}"
        )

    def running_pollers(self) -> Dict[int, Poller]:
        """
        Snapshot of the live poller map.

        Returns:
            Dictionary of source id -> poller.
        """
        return dict(self._pollers)

    def is_polling(self, source_id: int) -> bool:
        poller = self._pollers.get(source_id)
        return poller is not None and poller.is_running

    def get_stats(self) -> Dict[str, Any]:
        """
        Get supervisor statistics.

        Returns:
            Dictionary of supervisor and per-poller stats.
        """
        return {
            "running": self._running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "last_reconcile": self._last_reconcile.isoformat() if self._last_reconcile else None,
            "reconcile_count": self._reconcile_count,
            "failed_reloads": self._failed_reloads,
            "active_pollers": sum(1 for p in self._pollers.values() if p.is_running),
            "pollers": [p.stats() for p in self._pollers.values()],
        }
