"""Scheduler pour le rafraîchissement des statuts de demandes."""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.cron import CronTrigger
from typing import Optional
import logging

from fetcharr.config import Config
from fetcharr.container import Services
from fetcharr.core.workflow import RequestWorkflow
from fetcharr.db.database import get_db_sync
from fetcharr.db.repository import RequestStore

logger = logging.getLogger(__name__)

scheduler: Optional[AsyncIOScheduler] = None


def start_scheduler(config: Config, services: Services) -> None:
    """Démarre le scheduler si configuré."""
    global scheduler

    if not config.scheduler.enabled:
        logger.info("Scheduler is disabled")
        return

    scheduler = AsyncIOScheduler()

    # Parse cadence
    cadence = config.scheduler.cadence.lower()
    timezone = config.scheduler.timezone

    if "day" in cadence or "jour" in cadence:
        trigger = CronTrigger(hour=3, minute=0, timezone=timezone)
        job_id = "daily_status_refresh"
    elif "minute" in cadence:
        trigger = IntervalTrigger(minutes=15)
        job_id = "quarter_hour_status_refresh"
    else:
        # Default: hourly
        trigger = IntervalTrigger(hours=1)
        job_id = "hourly_status_refresh"

    scheduler.add_job(
        run_status_refresh,
        trigger=trigger,
        args=[services],
        id=job_id,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started with cadence: {cadence}, timezone: {timezone}")


async def run_status_refresh(services: Services) -> int:
    """Met à jour les demandes approuvées dont le téléchargement est terminé."""
    logger.info("Running scheduled request status refresh")
    db = get_db_sync()
    try:
        workflow = RequestWorkflow(RequestStore(db), services.executor, services.managers)
        updated = await workflow.refresh_statuses()
        logger.info(f"Status refresh completed, {updated} requests updated")
        return updated
    except Exception as e:
        logger.error(f"Error in scheduled status refresh: {str(e)}")
        return 0
    finally:
        db.close()


def stop_scheduler() -> None:
    """Arrête le scheduler."""
    global scheduler
    if scheduler:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")
