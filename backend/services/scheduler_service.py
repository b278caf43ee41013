"""Periodic trigger: runs a full sync pass once the check interval has elapsed."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from backend.services.datetime_service import is_older_than, now_utc

if TYPE_CHECKING:
    from datetime import datetime

    from backend.services.status_service import StatusService
    from backend.services.sync_service import SyncOrchestrator

logger = logging.getLogger(__name__)

CHECK_JOB_ID = "sync-check"


class SyncScheduler:
    """APScheduler interval job that wakes up every tick and syncs when a check is due.

    The first check runs as soon as the scheduler starts.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        status_service: StatusService | None = None,
        check_interval_seconds: float = 604800,
        tick_seconds: float = 3600,
    ) -> None:
        self._orchestrator = orchestrator
        self._status_service = status_service
        self._check_interval = timedelta(seconds=check_interval_seconds)
        self._tick_seconds = tick_seconds
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def is_due(self, now: datetime | None = None) -> bool:
        last_check = self._orchestrator.last_check
        if last_check is None:
            return True
        return is_older_than(last_check, self._check_interval, now)

    def start(self) -> None:
        """Start the scheduler on the running event loop."""
        if self.running:
            return
        logger.info(
            "Starting sync scheduler (interval %ss, tick %ss)",
            int(self._check_interval.total_seconds()),
            self._tick_seconds,
        )
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self._run_check,
            trigger=IntervalTrigger(seconds=self._tick_seconds, timezone="UTC"),
            id=CHECK_JOB_ID,
            next_run_time=now_utc(),
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Sync scheduler stopped")

    async def tick(self, now: datetime | None = None) -> bool:
        """Run one scheduling step. Returns True when a pass ran.

        Record healing and the pass run under one acquisition of the sync
        guard; a step that finds the guard held is skipped.
        """
        if not self.is_due(now if now is not None else now_utc()):
            return False

        prepare = None
        if self._status_service is not None:
            prepare = self._status_service.heal_all
        result = await self._orchestrator.run_scheduled(prepare=prepare)
        return result is not None

    async def _run_check(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("Scheduled sync check failed")
