"""APScheduler wiring for the synchronization jobs."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from .config import SchedulerSettings, settings
from .pipelines.sync import SystemDataSynchronizer

logger = logging.getLogger(__name__)

STARTUP_JOB_ID = "startup_github_update"
DAILY_JOB_ID = "daily_github_update"


def build_scheduler(
    synchronizer: SystemDataSynchronizer,
    config: SchedulerSettings | None = None,
) -> AsyncIOScheduler:
    """Create a scheduler with a one-off startup run and the daily run.

    The scheduler is returned unstarted.
    """
    config = config or settings.scheduler
    scheduler = AsyncIOScheduler(timezone=timezone.utc)

    scheduler.add_job(
        synchronizer.run_startup,
        DateTrigger(run_date=datetime.now(timezone.utc) + timedelta(seconds=config.startup_delay_seconds)),
        id=STARTUP_JOB_ID,
        name="Startup GitHub update",
        replace_existing=True,
    )
    scheduler.add_job(
        synchronizer.run_daily,
        CronTrigger.from_crontab(config.daily_cron, timezone=timezone.utc),
        id=DAILY_JOB_ID,
        name="Daily GitHub update",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(f"Scheduled startup update in {config.startup_delay_seconds}s and daily update '{config.daily_cron}'")
    return scheduler
