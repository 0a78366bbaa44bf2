"""Foreground sync timer.

Runs one full sync on cold start and a smart sync at a fixed interval after
that. The timer is paused and resumed on app lifecycle transitions.
"""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler

from .base import SyncMode, SyncResult
from .engine import SyncEngine

logger = logging.getLogger(__name__)

COLD_START_JOB_ID = "cold-start-full-sync"
SMART_SYNC_JOB_ID = "smart-sync"


class SyncScheduler:
    """Drives SyncEngine.perform_sync from an APScheduler scheduler.

    Example:
        scheduler = SyncScheduler(engine, interval_seconds=900)
        scheduler.start()
        ...
        scheduler.suspend()   # app moved to background
        scheduler.resume()    # app back in foreground
        scheduler.shutdown()
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval_seconds: Optional[int] = None,
        scheduler: Optional[BaseScheduler] = None,
        misfire_grace_time: int = 600,
    ):
        """
        Create a sync scheduler.

        Parameters:
            engine: Engine whose cycles are triggered.
            interval_seconds: Smart sync interval; defaults to the engine's
                `smart_sync_interval_seconds`.
            scheduler: APScheduler instance to use. A BackgroundScheduler is
                created when omitted; pass a BlockingScheduler to run in the
                foreground.
            misfire_grace_time: Seconds a late job may still run.
        """
        self.engine = engine
        self.interval_seconds = interval_seconds or engine.config.smart_sync_interval_seconds
        self.scheduler = scheduler or BackgroundScheduler()
        self.misfire_grace_time = misfire_grace_time
        self._suspended = False

    @property
    def running(self) -> bool:
        return self.scheduler.running

    @property
    def suspended(self) -> bool:
        return self._suspended

    def _run(self, mode: SyncMode) -> SyncResult:
        result = self.engine.perform_sync(mode)
        logger.debug(f"Scheduled {mode.value} sync finished: {result.status.value}")
        return result

    def start(self) -> None:
        """Schedule the cold-start full sync and the smart sync interval, then start.

        With a BlockingScheduler this call blocks until shutdown.
        """
        self.scheduler.add_job(
            self._run,
            "date",
            args=[SyncMode.FULL],
            id=COLD_START_JOB_ID,
            replace_existing=True,
            misfire_grace_time=self.misfire_grace_time,
        )
        self.scheduler.add_job(
            self._run,
            "interval",
            seconds=self.interval_seconds,
            args=[SyncMode.SMART],
            id=SMART_SYNC_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.misfire_grace_time,
        )
        logger.info(
            f"Sync scheduler starting. Full sync now, smart sync every {self.interval_seconds} seconds."
        )
        self.scheduler.start()

    def suspend(self) -> None:
        """Pause the timer and cancel the in-flight cycle."""
        if self._suspended:
            return
        self._suspended = True
        self.scheduler.pause_job(SMART_SYNC_JOB_ID)
        self.engine.cancel()
        logger.info("Sync scheduler suspended")

    def resume(self) -> None:
        """Restart the timer after a suspension."""
        if not self._suspended:
            return
        self._suspended = False
        self.scheduler.resume_job(SMART_SYNC_JOB_ID)
        logger.info("Sync scheduler resumed")

    def trigger(self, mode: SyncMode = SyncMode.SMART) -> None:
        """Queue an immediate cycle, e.g. after the app returns to the foreground."""
        self.scheduler.add_job(
            self._run,
            "date",
            args=[mode],
            misfire_grace_time=self.misfire_grace_time,
        )

    def shutdown(self, wait: bool = True) -> None:
        """Cancel the in-flight cycle and stop the scheduler."""
        self.engine.cancel()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        logger.info("Sync scheduler stopped")
