"""Background jobs for the expiry watcher and the cache sweeper.

Both jobs run on an APScheduler AsyncIOScheduler inside the event loop that
serves the API (or the ``workers`` command). Each job catches and logs its
own exceptions so a failing tick never stops the schedule.

Usage:
    from mailgate.engine.scheduler import build_scheduler

    scheduler = build_scheduler(watcher, sweeper, config)
    scheduler.start()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from mailgate.core.logging import get_logger

if TYPE_CHECKING:
    from mailgate.cache.sweeper import CacheSweeper
    from mailgate.config_schema import AppConfig
    from mailgate.safety.expiry import ExpiryWatcher

logger = get_logger(__name__)

EXPIRY_JOB_ID = "expiry_watcher"
SWEEP_JOB_ID = "cache_sweeper"


def build_scheduler(
    watcher: ExpiryWatcher,
    sweeper: CacheSweeper,
    config: AppConfig,
) -> AsyncIOScheduler:
    """Create (but do not start) the scheduler with both interval jobs."""

    async def run_expiry():
        try:
            await watcher.run_once()
        except Exception as e:
            logger.error("scheduled_expiry_failed", error=str(e))

    async def run_sweep():
        try:
            await sweeper.run_once()
        except Exception as e:
            logger.error("scheduled_sweep_failed", error=str(e))

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_expiry,
        "interval",
        seconds=config.safety.expiry_sweep_seconds,
        id=EXPIRY_JOB_ID,
        max_instances=1,
        coalesce=True,
    )

    interval, jitter = sweeper.schedule()
    scheduler.add_job(
        run_sweep,
        "interval",
        seconds=interval,
        jitter=jitter or None,
        id=SWEEP_JOB_ID,
        max_instances=1,
        coalesce=True,
    )

    logger.info(
        "scheduler_configured",
        expiry_seconds=config.safety.expiry_sweep_seconds,
        sweep_seconds=interval,
        sweep_jitter=jitter,
    )
    return scheduler
