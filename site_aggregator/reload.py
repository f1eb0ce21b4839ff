"""
Reload trigger.

Turns a hang-up signal into a message for the reload task, which calls
Supervisor.reload(). The signal handler itself only enqueues.
"""
import asyncio
import logging
import signal
from typing import Any, Dict, List, Optional, Sequence

from .polling.supervisor import Supervisor

logger = logging.getLogger(__name__)


class ReloadTrigger:
    """
    Listens for reload requests and hands them to the supervisor.

    At most one request waits while a reload runs; further requests
    arriving in the meantime are coalesced into it.
    """

    def __init__(
        self,
        supervisor: Supervisor,
        signals: Sequence[signal.Signals] = (signal.SIGHUP,),
    ):
        """
        Initialize the reload trigger.

        Args:
            supervisor: Supervisor to reload.
            signals: Signals that request a reload.
        """
        self.supervisor = supervisor
        self.signals = tuple(signals)

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._installed: List[signal.Signals] = []
        self._closed = False

        # Stats
        self._requested = 0
        self._coalesced = 0
        self._completed = 0

    async def start(self, install_signals: bool = True) -> None:
        """
        Start the reload task and install signal handlers.

        Args:
            install_signals: Install handlers for the configured signals.
        """
        if self._task is not None:
            logger.warning("Reload trigger already running")
            return

        self._closed = False
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._reload_loop(), name="reload_trigger")

        if install_signals:
            for sig in self.signals:
                try:
                    self._loop.add_signal_handler(sig, self.request_reload)
                    self._installed.append(sig)
                except (NotImplementedError, RuntimeError, ValueError) as e:
                    # Platforms without add_signal_handler
                    logger.warning(f"Cannot install handler for {sig.name}: {e}")

        if self._installed:
            names = ", ".join(sig.name for sig in self._installed)
            logger.info(f"Reload trigger listening for {names}")

    async def stop(self) -> None:
        """
        Remove signal handlers and stop the reload task.

        A reload that is already running finishes first, so pollers it is
        stopping are not abandoned mid-attempt. Queued requests are dropped.
        """
        self._closed = True

        if self._loop is not None:
            for sig in self._installed:
                self._loop.remove_signal_handler(sig)
        self._installed.clear()

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

        if self._task:
            await self._queue.join()
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def request_reload(self) -> bool:
        """
        Request a reload. Safe to call from a signal handler.

        Returns:
            True if queued, False if coalesced into a pending request
            or the trigger is stopped.
        """
        if self._closed:
            logger.debug("Reload trigger stopped, ignoring request")
            return False

        self._requested += 1
        try:
            self._queue.put_nowait(self._requested)
        except asyncio.QueueFull:
            self._coalesced += 1
            logger.debug("Reload already pending, coalescing request")
            return False

        logger.info("Reload requested")
        return True

    async def wait_idle(self) -> None:
        """Wait until every queued reload has been processed."""
        await self._queue.join()

    async def _reload_loop(self) -> None:
        """Process reload requests one at a time."""
        while True:
            await self._queue.get()
            try:
                result = await self.supervisor.reload()
                if result is not None:
                    self._completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error during reload: {e}")
            finally:
                self._queue.task_done()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "requested": self._requested,
            "coalesced": self._coalesced,
            "completed": self._completed,
            "pending": self._queue.qsize(),
        }
