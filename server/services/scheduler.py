"""
Cron scheduling for the reconciliation jobs.

One process-wide AsyncIOScheduler runs each job's ``run`` coroutine on the
expression configured for it. The HTTP trigger in routers/cron.py runs the
same job objects, so a manual run and a scheduled run are indistinguishable.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from typing import Any, Dict, List, Mapping, Optional

from core.logging import get_logger

logger = get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone="UTC")
    return _scheduler


def start_scheduler() -> None:
    scheduler = get_scheduler()
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started", jobs=len(scheduler.get_jobs()))


def shutdown_scheduler() -> None:
    """Stop without waiting for in-flight runs and drop the singleton."""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None


def build_cron_trigger(expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Accepts standard crontab syntax (minute hour day month weekday) or the
    same with a leading seconds field.
    """
    fields = expression.split()
    if len(fields) == 5:
        return CronTrigger.from_crontab(expression, timezone=timezone)

    second, minute, hour, day, month, day_of_week = fields
    return CronTrigger(second=second, minute=minute, hour=hour, day=day,
                       month=month, day_of_week=day_of_week, timezone=timezone)


def register_reconciliation_jobs(jobs: Mapping[str, Any],
                                 schedules: Mapping[str, str]) -> List[str]:
    """
    Schedule every job that has an expression configured.

    Args:
        jobs: job name -> object exposing an async ``run()``
        schedules: job name -> cron expression

    Returns:
        Names of the jobs that were scheduled
    """
    scheduler = get_scheduler()
    registered = []

    for name, job in jobs.items():
        expression = schedules.get(name)
        if not expression:
            logger.warning("Job has no schedule, skipping", job=name)
            continue

        # A slow run never overlaps the next tick; missed ticks collapse into one
        scheduler.add_job(
            job.run,
            trigger=build_cron_trigger(expression),
            id=name,
            name=name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info("Job scheduled", job=name, cron=expression)
        registered.append(name)

    return registered


def get_all_jobs() -> List[Dict[str, Optional[str]]]:
    """Scheduled jobs with their next fire time, for the cron listing endpoint."""
    listing = []
    for job in get_scheduler().get_jobs():
        next_run = getattr(job, "next_run_time", None)
        listing.append({
            "id": job.id,
            "next_run_time": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger),
        })
    return listing
