"""Sync scheduler: keeps the library cache fresh in the background."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from ensemble.sync.catalog import CatalogAPI
    from ensemble.sync.service import LibrarySyncService

log = structlog.get_logger(__name__)


class SyncScheduler:
    """Runs library syncs on an interval, with pause/resume and manual trigger.

    Scheduled runs are not forced, so they only hit the server once the
    service's staleness window has passed; :meth:`trigger_now` forces one.
    """

    def __init__(
        self,
        service: LibrarySyncService,
        api: CatalogAPI,
        interval_minutes: int = 5,
        scoped_providers: Sequence[str] | None = None,
    ) -> None:
        self._service = service
        self._api = api
        self._interval = interval_minutes * 60  # seconds
        self._scoped_providers = list(scoped_providers or [])
        self._paused = False
        self._stop_event = asyncio.Event()
        self._trigger_event = asyncio.Event()
        self._trigger_force = False
        self._task: asyncio.Task | None = None
        self._last_sync_at: datetime | None = None
        self._next_sync_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        log.info("scheduler_started", interval_minutes=self._interval // 60)

    async def stop(self) -> None:
        """Stop the scheduler, waiting for any in-progress sync to complete."""
        if not self.is_running:
            return
        self._stop_event.set()
        self._trigger_event.set()  # wake up if sleeping
        if self._task:
            await self._task
            self._task = None
        log.info("scheduler_stopped")

    async def wait(self) -> None:
        """Block until the scheduler loop exits."""
        if self._task:
            await self._task

    def trigger_now(self, *, force: bool = True) -> None:
        """Trigger an immediate sync."""
        self._trigger_force = force
        self._trigger_event.set()

    def pause(self) -> None:
        self._paused = True
        log.info("scheduler_paused")

    def resume(self) -> None:
        self._paused = False
        log.info("scheduler_resumed")

    def get_status(self) -> dict:
        return {
            "running": self.is_running,
            "paused": self._paused,
            "interval_minutes": self._interval // 60,
            "scoped_providers": list(self._scoped_providers),
            "last_sync_at": self._last_sync_at.isoformat() if self._last_sync_at else None,
            "next_sync_at": self._next_sync_at.isoformat() if self._next_sync_at else None,
        }

    async def _loop(self) -> None:
        first_run = True
        while not self._stop_event.is_set():
            if first_run:
                first_run = False
                self._next_sync_at = datetime.now(UTC).replace(microsecond=0)
            else:
                self._next_sync_at = datetime.now(UTC).replace(microsecond=0) + timedelta(seconds=self._interval)

                # Interruptible sleep
                self._trigger_event.clear()
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(
                        self._wait_for_trigger_or_stop(),
                        timeout=self._interval,
                    )

            if self._stop_event.is_set():
                break

            if self._paused:
                continue

            force = self._trigger_force
            self._trigger_force = False
            self._trigger_event.clear()

            try:
                await self._service.sync_from_api(
                    self._api,
                    force=force,
                    scoped_providers=self._scoped_providers or None,
                )
                self._last_sync_at = datetime.now(UTC)
            except Exception as exc:
                log.error("scheduled_sync_failed", error=str(exc))

    async def _wait_for_trigger_or_stop(self) -> None:
        """Wait until either trigger or stop event is set."""
        trigger_task = asyncio.create_task(self._trigger_event.wait())
        stop_task = asyncio.create_task(self._stop_event.wait())
        try:
            await asyncio.wait(
                {trigger_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for t in (trigger_task, stop_task):
                if not t.done():
                    t.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await t
