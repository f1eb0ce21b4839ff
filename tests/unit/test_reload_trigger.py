"""
Unit tests for the SIGHUP reload trigger.
"""
import asyncio
import os
import signal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from site_aggregator.polling.supervisor import ReconcileResult, Supervisor
from site_aggregator.reload import ReloadTrigger


@pytest.fixture
def mock_supervisor():
    supervisor = MagicMock(spec=Supervisor)
    supervisor.reload = AsyncMock(return_value=ReconcileResult())
    return supervisor


@pytest_asyncio.fixture
async def trigger(mock_supervisor):
    reload_trigger = ReloadTrigger(mock_supervisor)

    yield reload_trigger

    await reload_trigger.stop()


class TestRequestReload:

    def test_second_request_is_coalesced(self, mock_supervisor):
        reload_trigger = ReloadTrigger(mock_supervisor)

        assert reload_trigger.request_reload() is True
        assert reload_trigger.request_reload() is False
        assert reload_trigger.request_reload() is False

        stats = reload_trigger.get_stats()
        assert stats["requested"] == 3
        assert stats["coalesced"] == 2
        assert stats["pending"] == 1


class TestReloadLoop:
    """Tests for the reload task."""

    @pytest.mark.asyncio
    async def test_request_triggers_reload(self, trigger, mock_supervisor):
        await trigger.start(install_signals=False)

        trigger.request_reload()
        await trigger.wait_idle()

        mock_supervisor.reload.assert_awaited_once()
        assert trigger.get_stats()["completed"] == 1

    @pytest.mark.asyncio
    async def test_requests_during_reload_coalesce(self, trigger, mock_supervisor):
        release = asyncio.Event()
        entered = asyncio.Event()

        async def slow_reload():
            entered.set()
            await release.wait()
            return ReconcileResult()

        mock_supervisor.reload.side_effect = slow_reload
        await trigger.start(install_signals=False)

        trigger.request_reload()
        await entered.wait()

        assert trigger.request_reload() is True
        assert trigger.request_reload() is False
        assert trigger.request_reload() is False

        release.set()
        await trigger.wait_idle()

        assert mock_supervisor.reload.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_reload_keeps_listening(self, trigger, mock_supervisor):
        mock_supervisor.reload.side_effect = [RuntimeError("boom"), None, ReconcileResult()]
        await trigger.start(install_signals=False)

        for _ in range(3):
            trigger.request_reload()
            await trigger.wait_idle()

        assert mock_supervisor.reload.await_count == 3
        # Only a reload that returned a result counts as completed
        assert trigger.get_stats()["completed"] == 1

    @pytest.mark.asyncio
    async def test_sighup(self, trigger, mock_supervisor):
        await trigger.start(install_signals=True)

        os.kill(os.getpid(), signal.SIGHUP)

        async def wait_for_request():
            while trigger.get_stats()["requested"] == 0:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(wait_for_request(), timeout=2.0)
        await trigger.wait_idle()

        mock_supervisor.reload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self, trigger):
        await trigger.start(install_signals=False)
        await trigger.start(install_signals=False)

        assert trigger.get_stats()["pending"] == 0


class TestStop:

    @pytest.mark.asyncio
    async def test_running_reload_finishes_before_stop(self, trigger, mock_supervisor):
        release = asyncio.Event()
        entered = asyncio.Event()
        finished = asyncio.Event()

        async def slow_reload():
            entered.set()
            await release.wait()
            finished.set()
            return ReconcileResult()

        mock_supervisor.reload.side_effect = slow_reload
        await trigger.start(install_signals=False)
        trigger.request_reload()
        await entered.wait()
        # Queued behind the running reload; dropped by stop()
        trigger.request_reload()

        stopping = asyncio.create_task(trigger.stop())
        await asyncio.sleep(0.05)
        assert not stopping.done()

        release.set()
        await asyncio.wait_for(stopping, timeout=1.0)

        assert finished.is_set()
        assert mock_supervisor.reload.await_count == 1

    @pytest.mark.asyncio
    async def test_requests_after_stop_are_ignored(self, trigger, mock_supervisor):
        await trigger.start(install_signals=False)
        await trigger.stop()

        assert trigger.request_reload() is False
        assert trigger.get_stats()["pending"] == 0

    @pytest.mark.asyncio
    async def test_stop_without_start_drops_queued_request(self, mock_supervisor):
        reload_trigger = ReloadTrigger(mock_supervisor)
        reload_trigger.request_reload()

        await reload_trigger.stop()

        assert reload_trigger.get_stats()["pending"] == 0
        mock_supervisor.reload.assert_not_awaited()
