"""
Scheduled maintenance

Periodically deletes expired pending records (signups, reset secrets,
OTPs). Reads already ignore expired rows; this keeps the table small.

Uses APScheduler for in-process scheduling. Run one scheduler per
deployment (disable it with ENABLE_SCHEDULER=false on extra workers).
"""

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from copilot.config import settings
from copilot.db import async_session_maker
from copilot.services.pending_service import purge_expired

logger = logging.getLogger("copilot.scheduler")

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def purge_expired_pending() -> int:
    """Delete expired pending records in a session of its own."""
    async with async_session_maker() as db:
        try:
            removed = await purge_expired(db)
        except Exception as e:
            logger.error(f"Pending record purge failed: {e}")
            return 0
    logger.debug(f"Pending record purge removed {removed} row(s)")
    return removed


def setup_scheduler(purge_interval_minutes: Optional[int] = None) -> AsyncIOScheduler:
    """
    Set up the APScheduler with maintenance tasks.

    Args:
        purge_interval_minutes: How often to purge (default: settings.purge_interval_minutes)
    """
    global scheduler

    interval = purge_interval_minutes or settings.purge_interval_minutes
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        purge_expired_pending,
        trigger=IntervalTrigger(minutes=interval),
        id="pending_purge",
        name="Expired Pending Record Purge",
        replace_existing=True,
    )

    logger.info(f"Scheduler configured: pending purge every {interval}min")
    return scheduler


def start_scheduler():
    """Start the scheduler if not already running."""
    global scheduler

    if scheduler is None:
        scheduler = setup_scheduler()

    if not scheduler.running:
        scheduler.start()
        logger.info("Maintenance scheduler started")


def stop_scheduler():
    """Stop the scheduler if running."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("Maintenance scheduler stopped")
    scheduler = None


# Run the purge once by hand
if __name__ == "__main__":
    async def main():
        print("Purging expired pending records...")
        removed = await purge_expired_pending()
        print(f"Done! Removed {removed}")

    asyncio.run(main())
