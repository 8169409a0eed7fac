"""Tests for the SyncScheduler."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from ensemble.sync.scheduler import SyncScheduler

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class MockService:
    """Mock LibrarySyncService for scheduler tests."""

    def __init__(self):
        self.sync_from_api = AsyncMock()


API = object()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_start_stop():
    """Scheduler should start and stop cleanly."""
    service = MockService()
    sched = SyncScheduler(service, API, interval_minutes=1)

    await sched.start()
    assert sched.is_running

    await sched.stop()
    assert not sched.is_running


@pytest.mark.asyncio
async def test_first_run_is_not_forced():
    """The initial run respects the cache staleness window."""
    service = MockService()
    sched = SyncScheduler(service, API, interval_minutes=60, scoped_providers=["spotify--a"])

    await sched.start()
    await asyncio.sleep(0.05)
    await sched.stop()

    service.sync_from_api.assert_called_once_with(API, force=False, scoped_providers=["spotify--a"])
    assert sched.get_status()["last_sync_at"] is not None


@pytest.mark.asyncio
async def test_trigger_now_forces_sync():
    """trigger_now should cause an immediate, forced sync."""
    service = MockService()
    sched = SyncScheduler(service, API, interval_minutes=60)

    await sched.start()
    await asyncio.sleep(0.05)

    sched.trigger_now()
    await asyncio.sleep(0.1)

    await sched.stop()

    assert service.sync_from_api.call_count == 2
    _, kwargs = service.sync_from_api.call_args
    assert kwargs == {"force": True, "scoped_providers": None}


@pytest.mark.asyncio
async def test_pause_resume():
    """Paused scheduler should skip triggered syncs."""
    service = MockService()
    sched = SyncScheduler(service, API, interval_minutes=60)

    await sched.start()
    await asyncio.sleep(0.1)
    initial_call_count = service.sync_from_api.call_count

    sched.pause()
    assert sched.get_status()["paused"] is True

    sched.trigger_now()
    await asyncio.sleep(0.1)
    assert service.sync_from_api.call_count == initial_call_count

    sched.resume()
    assert sched.get_status()["paused"] is False

    sched.trigger_now()
    await asyncio.sleep(0.1)

    await sched.stop()
    assert service.sync_from_api.call_count > initial_call_count


@pytest.mark.asyncio
async def test_get_status():
    """get_status should reflect scheduler state."""
    sched = SyncScheduler(MockService(), API, interval_minutes=15, scoped_providers=["a", "b"])

    status = sched.get_status()
    assert status["running"] is False
    assert status["paused"] is False
    assert status["interval_minutes"] == 15
    assert status["scoped_providers"] == ["a", "b"]
    assert status["last_sync_at"] is None


@pytest.mark.asyncio
async def test_double_start():
    """Starting an already running scheduler should be a no-op."""
    sched = SyncScheduler(MockService(), API, interval_minutes=60)

    await sched.start()
    task = sched._task
    await sched.start()
    assert sched._task is task

    await sched.stop()


@pytest.mark.asyncio
async def test_sync_error_doesnt_crash_scheduler():
    """Scheduler should survive service errors and keep running."""
    service = MockService()
    service.sync_from_api.side_effect = RuntimeError("Boom")

    sched = SyncScheduler(service, API, interval_minutes=60)
    await sched.start()
    await asyncio.sleep(0.05)

    sched.trigger_now()
    await asyncio.sleep(0.1)

    assert sched.is_running
    assert sched.get_status()["last_sync_at"] is None

    await sched.stop()


@pytest.mark.asyncio
async def test_wait_returns_after_stop():
    sched = SyncScheduler(MockService(), API, interval_minutes=60)
    await sched.start()

    waiter = asyncio.create_task(sched.wait())
    await asyncio.sleep(0.05)
    assert not waiter.done()

    await sched.stop()
    await asyncio.wait_for(waiter, timeout=1)
