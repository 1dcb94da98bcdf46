"""APScheduler setup for background jobs."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from caldesk.config import get_settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def setup_scheduler() -> AsyncIOScheduler | None:
    """Set up and start the background scheduler; None when no job is enabled."""
    global _scheduler

    settings = get_settings()
    if settings.pull_interval_minutes <= 0:
        logger.info("Periodic pull disabled (PULL_INTERVAL_MINUTES=0)")
        return None

    _scheduler = AsyncIOScheduler()

    _scheduler.add_job(
        "caldesk.jobs.sync_job:run_periodic_pull",
        trigger=IntervalTrigger(minutes=settings.pull_interval_minutes),
        id="periodic_pull",
        name="Periodic Remote Pull",
        replace_existing=True,
    )

    _scheduler.start()
    logger.info("Background scheduler started")

    return _scheduler


def shutdown_scheduler() -> None:
    """Shutdown the scheduler."""
    global _scheduler

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")
