"""APScheduler integration for per-bot heartbeat jobs.

Price evaluation is push-driven by the price stream; the scheduler only runs
the liveness heartbeat that stamps last_activity_at on each running bot.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")


def heartbeat_job_id(bot_id: int) -> str:
    return f"bot_{bot_id}_heartbeat"


def add_heartbeat_job(bot_id: int, func, seconds: int, sched: AsyncIOScheduler | None = None):
    """Add or replace the heartbeat job for a bot."""
    sched = sched or scheduler
    job_id = heartbeat_job_id(bot_id)

    if sched.get_job(job_id):
        sched.remove_job(job_id)

    sched.add_job(
        func,
        trigger=IntervalTrigger(seconds=seconds),
        id=job_id,
        name=f"Bot {bot_id} heartbeat",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=seconds,
    )
    logger.debug(f"Scheduled heartbeat for bot {bot_id} every {seconds}s")


def remove_heartbeat_job(bot_id: int, sched: AsyncIOScheduler | None = None):
    sched = sched or scheduler
    job_id = heartbeat_job_id(bot_id)
    if sched.get_job(job_id):
        sched.remove_job(job_id)
        logger.debug(f"Removed heartbeat for bot {bot_id}")


def start_scheduler():
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
            }
            for j in jobs
        ],
    }
