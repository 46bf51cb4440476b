# pensive/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
import pytz

from .config import TIMEZONE, DIGEST_SEND_DAY, DIGEST_SEND_HOUR
from .services import Services
from . import tasks
from .logging_setup import get_logger

logger = get_logger("pensive.scheduler")
scheduler = BackgroundScheduler()

def _job_listener(event):
    if event.exception:
        # APScheduler already captures traceback; this logs it via our logger too.
        logger.error(
            "JOB_ERROR",
            exc_info=(type(event.exception), event.exception, event.exception.__traceback__),
            extra={"handled": False, "job_id": event.job_id, "run_time": str(event.scheduled_run_time)},
        )
    else:
        logger.info(
            "JOB_OK",
            extra={"job_id": event.job_id, "run_time": str(event.scheduled_run_time)}
        )

def add_jobs(services: Services):
    tz = pytz.timezone(TIMEZONE)
    scheduler.add_job(
        tasks.poll_feeds, IntervalTrigger(hours=1, timezone=tz), args=[services],
        id="poll_feeds", replace_existing=True, max_instances=1, coalesce=True,
    )
    scheduler.add_job(
        tasks.process_jobs, IntervalTrigger(minutes=1, timezone=tz), args=[services],
        id="process_jobs", replace_existing=True, max_instances=1, coalesce=True,
    )
    scheduler.add_job(
        tasks.send_digests,
        CronTrigger(day_of_week=DIGEST_SEND_DAY, hour=DIGEST_SEND_HOUR, minute=0, timezone=tz),
        args=[services], id="send_digests", replace_existing=True, coalesce=True,
    )
    scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
    logger.info(
        f"Jobs registered: poll_feeds hourly, process_jobs every minute, "
        f"send_digests {DIGEST_SEND_DAY} {DIGEST_SEND_HOUR:02d}:00 {TIMEZONE}"
    )

def start_scheduler():
    if not scheduler.running:
        scheduler.start()
        logger.info("APScheduler started")

def shutdown_scheduler(wait: bool = False):
    if scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("APScheduler stopped")
