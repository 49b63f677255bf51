"""Scheduler for housekeeping jobs (dead-session reaping, notification expiry)."""

import logging
from collections.abc import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.core.config import settings


logger = logging.getLogger(__name__)


def _guarded(job_name: str, func: Callable[[], Awaitable[int]]) -> Callable[[], Awaitable[None]]:
    """Wrap a job so one failed run is logged and the next run still happens."""

    async def _run() -> None:
        try:
            count = await func()
        except Exception:
            logger.exception("scheduled_job_failed", extra={"job": job_name})
            return
        logger.debug("scheduled_job_completed", extra={"job": job_name, "count": count})

    return _run


def create_scheduler(
    *,
    reap_sessions: Callable[[], Awaitable[int]],
    purge_notifications: Callable[[], Awaitable[int]],
) -> AsyncIOScheduler:
    """Build a scheduler with the housekeeping jobs registered (not started)."""
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _guarded("reap_dead_sessions", reap_sessions),
        trigger=IntervalTrigger(seconds=settings.heartbeat_interval_seconds),
        id="reap_dead_sessions",
        name="Reap Dead Realtime Sessions",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Scheduled session reaper: every {settings.heartbeat_interval_seconds}s")

    scheduler.add_job(
        _guarded("purge_expired_notifications", purge_notifications),
        trigger=IntervalTrigger(minutes=settings.notification_purge_interval_minutes),
        id="purge_expired_notifications",
        name="Purge Expired Notifications",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Scheduled notification purge: every {settings.notification_purge_interval_minutes}m")

    return scheduler


def start_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Start the scheduler. Called during FastAPI app startup."""
    logger.info("Starting scheduler")
    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Stop the scheduler. Called during FastAPI app shutdown."""
    logger.info("Stopping scheduler")
    if scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")
