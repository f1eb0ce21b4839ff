"""
Poller for a single data source.

Runs the source's collector on a fixed-rate schedule and appends one
reading per attempt. Stopping is cooperative: an attempt in flight
always completes, including its write, before the poller exits.
"""
import asyncio
import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..collectors.registry import CollectorRegistry
from ..config import PollingSettings
from ..domain.entities import NewReading, QualityFlags, Reading, Source
from ..exceptions import CollectorError, PersistenceError
from ..storage.site_store import SiteStore

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    """Poller lifecycle state."""
    STARTING = "starting"
    SLEEPING = "sleeping"
    COLLECTING = "collecting"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Poller:
    """
    Polls one source until asked to stop.

    The source configuration is captured at construction; a changed
    source needs a new poller.
    """

    def __init__(
        self,
        source: Source,
        collectors: CollectorRegistry,
        store: SiteStore,
        settings: Optional[PollingSettings] = None,
    ):
        """
        Initialize the poller.

        Args:
            source: Source to poll.
            collectors: Collector registry.
            store: Store receiving readings.
            settings: Polling settings.
        """
        self.source = source
        self.collectors = collectors
        self.store = store
        self.settings = settings or PollingSettings()

        self.signature = source.config_signature()
        self.interval = max(source.interval_seconds, self.settings.min_interval)

        # State
        self._state = PollerState.STARTING
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._started_at: Optional[datetime] = None

        # Stats
        self._attempts = 0
        self._readings_written = 0
        self._collector_errors = 0
        self._dropped_writes = 0
        self._last_error: Optional[str] = None
        self._last_reading_at: Optional[datetime] = None

    @property
    def source_id(self) -> int:
        return self.source.id

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Spawn the polling task."""
        if self._task is not None:
            raise RuntimeError(f"Poller for source {self.source_id} already started")

        self._started_at = datetime.now(timezone.utc)
        self._task = asyncio.create_task(
            self.run(),
            name=f"poll_{self.source_id}_{self.source.name}",
        )
        return self._task

    def request_stop(self) -> None:
        """Ask the poller to exit after its current attempt."""
        self._stop_event.set()

    async def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop the poller and wait for it to exit.

        Args:
            timeout: Seconds to wait for a graceful exit before cancelling.

        Returns:
            True if the poller exited on its own.
        """
        self.request_stop()

        task = self._task
        if task is None:
            self._state = PollerState.STOPPED
            return True

        if await self.wait_stopped(timeout):
            return True

        logger.warning(
            f"Poller for source {self.source_id} ({self.source.name}) "
            f"did not stop within {timeout}s, cancelling"
        )
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            # Only the poller's cancellation is expected here
            if asyncio.current_task().cancelling():
                raise
        return False

    async def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the polling task to exit without cancelling it.

        Returns:
            True if the task has exited.
        """
        if self._task is None or self._task.done():
            return True

        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        return bool(done)

    async def run(self) -> None:
        """
        Polling loop.

        Collects immediately, then on ticks at start + n * interval.
        Ticks missed while an attempt overran are skipped.
        """
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        logger.debug(
            f"Starting poll loop for source {self.source_id} ({self.source.name}, "
            f"collector={self.source.collector_key}, interval={self.interval}s)"
        )

        try:
            while not self._stop_event.is_set():
                self._state = PollerState.COLLECTING
                try:
                    await self.poll_once(scheduled_at=next_tick)
                except Exception as e:
                    logger.error(f"Unexpected error in poll loop for source {self.source_id}: {e}")

                if self._stop_event.is_set():
                    break

                next_tick += self.interval
                now = loop.time()
                if next_tick <= now:
                    missed = int((now - next_tick) // self.interval) + 1
                    next_tick += missed * self.interval
                    logger.debug(f"Source {self.source_id} overran, skipped {missed} tick(s)")

                self._state = PollerState.SLEEPING
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=next_tick - loop.time(),
                    )
                except asyncio.TimeoutError:
                    # Normal timeout, continue polling
                    continue

            self._state = PollerState.STOPPING

        except asyncio.CancelledError:
            logger.debug(f"Poll loop cancelled for source {self.source_id}")
            raise

        finally:
            self._state = PollerState.STOPPED
            logger.debug(f"Poll loop ended for source {self.source_id}")

    async def poll_once(self, scheduled_at: Optional[float] = None) -> Optional[Reading]:
        """
        Run one attempt: collect, then write one reading and last_run.

        Args:
            scheduled_at: Loop time of the tick this attempt belongs to.

        Returns:
            The stored reading, or None if the write was dropped.
        """
        attempted_at = datetime.now(timezone.utc)
        self._attempts += 1

        try:
            result = await self.collectors.collect(
                self.source,
                database_path=self.store.database_path,
                timeout=self.settings.collector_timeout,
            )
            data, flags = self._encode(result)

        except CollectorError as e:
            self._collector_errors += 1
            self._last_error = e.message
            logger.warning(
                f"Collector failed for source {self.source_id} ({self.source.name}) "
                f"kind={e.kind}: {e.message}"
            )
            data = {
                "error": e.message,
                "kind": e.kind,
                "collector": e.collector or self.source.collector_key,
            }
            flags = QualityFlags.COLLECTOR_ERROR

        if scheduled_at is not None:
            lag = asyncio.get_running_loop().time() - scheduled_at
            if lag > self.interval:
                flags |= QualityFlags.STALE

        reading = NewReading(
            source_id=self.source_id,
            data=data,
            quality_flags=flags,
            timestamp=attempted_at,
        )

        try:
            stored = await self.store.record_poll(reading, attempted_at)
        except PersistenceError as e:
            self._dropped_writes += 1
            self._last_error = e.message
            logger.error(
                f"Dropped reading for source {self.source_id} ({self.source.name}) "
                f"kind=persistence: {e.message}"
            )
            return None

        self._readings_written += 1
        self._last_reading_at = stored.timestamp
        logger.debug(
            f"Source {self.source_id} ({self.source.name}) reading {stored.id} "
            f"flags={int(flags)}"
        )
        return stored

    def _encode(self, result: Any) -> Tuple[Dict[str, Any], QualityFlags]:
        """
        Normalise a collector result into a JSON object.

        Returns:
            Tuple of (data, quality flags).
        """
        if not isinstance(result, Mapping):
            self._last_error = f"Collector returned {type(result).__name__}, expected an object"
            logger.warning(f"Source {self.source_id} kind=parse: {self._last_error}")
            return (
                {"error": self._last_error, "raw": repr(result)[:500]},
                QualityFlags.PARSE_ERROR,
            )

        try:
            return json.loads(json.dumps(dict(result))), QualityFlags.OK
        except (TypeError, ValueError) as e:
            self._last_error = f"Result is not JSON serialisable: {e}"
            logger.warning(f"Source {self.source_id} kind=parse: {self._last_error}")
            return (
                {"error": self._last_error, "raw": repr(result)[:500]},
                QualityFlags.PARSE_ERROR,
            )

    def stats(self) -> Dict[str, Any]:
        """
        Get poller statistics.

        Returns:
            Dictionary of poller stats.
        """
        return {
            "source_id": self.source_id,
            "name": self.source.name,
            "collector": self.source.collector_key,
            "interval_seconds": self.interval,
            "state": self._state.value,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "attempts": self._attempts,
            "readings_written": self._readings_written,
            "collector_errors": self._collector_errors,
            "dropped_writes": self._dropped_writes,
            "last_error": self._last_error,
            "last_reading_at": (
                self._last_reading_at.isoformat() if self._last_reading_at else None
            ),
        }
