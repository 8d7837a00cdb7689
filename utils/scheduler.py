"""Background jobs: the unpaid-booking reaper and the daily birthday bonus."""

import logging

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from services.birthday import allocate_birthday_tickets
from services.reaper import release_unpaid_bookings

logger = logging.getLogger(__name__)

scheduler = None


def _on_job_error(event):
    logger.error("Scheduled job FAILED: job_id=%s error=%s", event.job_id, event.exception)
    if event.traceback:
        logger.error("Traceback for job %s:\n%s", event.job_id, event.traceback)


def _on_job_missed(event):
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s", event.job_id, event.scheduled_run_time,
    )


def _in_app_context(app, fn):
    def run():
        with app.app_context():
            fn()
    return run


def init_scheduler(app):
    """Start the background scheduler once per process, if enabled in config."""
    global scheduler

    if not app.config.get("SCHEDULER_ENABLED"):
        return None
    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return scheduler

    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
    )

    interval = int(app.config.get("REAPER_INTERVAL_SECONDS", 60))
    scheduler.add_job(
        func=_in_app_context(app, release_unpaid_bookings),
        trigger=IntervalTrigger(seconds=interval),
        id="release_unpaid_bookings",
        name="Release Unpaid Bookings",
        replace_existing=True,
    )
    logger.info("Scheduled job: release_unpaid_bookings (every %s seconds)", interval)

    scheduler.add_job(
        func=_in_app_context(app, allocate_birthday_tickets),
        trigger=CronTrigger(hour=0, minute=1),
        id="allocate_birthday_tickets",
        name="Allocate Birthday Bonus Tickets",
        replace_existing=True,
    )
    logger.info("Scheduled job: allocate_birthday_tickets (daily at 00:01 UTC)")

    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)

    scheduler.start()
    logger.info("Background scheduler started")
    return scheduler


def shutdown_scheduler():
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler shutdown complete")
        scheduler = None
