from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from trendscout.config import settings

logger = logging.getLogger(__name__)

# Module-level reference for access from API routes
_scheduler_manager: SchedulerManager | None = None


def get_scheduler_manager() -> SchedulerManager | None:
    return _scheduler_manager


class SchedulerManager:
    def __init__(self) -> None:
        self.scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )

    async def start(self) -> None:
        global _scheduler_manager
        _scheduler_manager = self

        # Import job functions here to avoid circular imports
        from trendscout.scheduler.jobs import (
            execute_analyze_themes,
            execute_batch_update,
            execute_realtime_sync,
            execute_watchlist_collection,
        )

        self.scheduler.add_job(
            execute_batch_update,
            trigger=IntervalTrigger(minutes=settings.BATCH_INTERVAL_MINUTES),
            id="batch_update",
            replace_existing=True,
            jitter=60,
        )
        self.scheduler.add_job(
            execute_analyze_themes,
            trigger=IntervalTrigger(minutes=settings.ANALYZE_INTERVAL_MINUTES),
            id="analyze_themes",
            replace_existing=True,
            jitter=60,
        )
        self.scheduler.add_job(
            execute_realtime_sync,
            trigger=IntervalTrigger(seconds=settings.REALTIME_INTERVAL_SECONDS),
            id="realtime_sync",
            replace_existing=True,
        )

        watchlist = settings.watchlist_themes
        if watchlist:
            self.scheduler.add_job(
                execute_watchlist_collection,
                trigger=CronTrigger(hour=settings.COLLECTION_CRON_HOUR, minute=0),
                id="watchlist_collection",
                replace_existing=True,
                misfire_grace_time=3600,
            )

        self.scheduler.start()
        logger.info(
            "Scheduler started: batch every %dm, analyze every %dm, realtime every %ds, "
            "watchlist of %d themes at %02d:00 UTC",
            settings.BATCH_INTERVAL_MINUTES,
            settings.ANALYZE_INTERVAL_MINUTES,
            settings.REALTIME_INTERVAL_SECONDS,
            len(watchlist),
            settings.COLLECTION_CRON_HOUR,
        )

    async def stop(self) -> None:
        global _scheduler_manager
        self.scheduler.shutdown(wait=False)
        _scheduler_manager = None
        logger.info("Scheduler stopped")

    async def trigger_job(self, job_id: str) -> None:
        """Run a registered job now."""
        job = self.scheduler.get_job(job_id)
        if job is None:
            raise ValueError(f"Job not found: {job_id}")
        self.scheduler.add_job(job.func, id=f"manual_{job_id}", replace_existing=True)
        logger.info("Manually triggered job: %s", job_id)

    def job_ids(self) -> list[str]:
        return [job.id for job in self.scheduler.get_jobs()]
