# pensive/tasks.py
"""
The three periodic operations. Both the /cron routes and the in-process
APScheduler jobs call these, so the behaviour is the same whichever one fires.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from .errors import NoContentError
from .logging_setup import get_logger, user_id_var
from .models import JobType
from .services import Services
from .worker import DEFAULT_BATCH

logger = get_logger("pensive.tasks")


def poll_feeds(services: Services, now: Optional[datetime] = None) -> Dict[str, Any]:
    results = services.feeds.poll_due_feeds(now)
    logger.info("POLL_FEEDS_DONE", extra={"feeds": len(results)})
    return {"processed": len(results), "results": results}


def process_jobs(services: Services, max_jobs: int = DEFAULT_BATCH) -> Dict[str, Any]:
    summary = services.worker.run(max_jobs=max_jobs)
    summary["cleaned"] = services.queue.cleanup()
    return summary


def send_digests(services: Services, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Generate each due user's digest and queue its delivery; users with nothing new get status "empty"."""
    results = []
    for user in services.users.digest_recipients():
        timeframe = user.digest_frequency or "weekly"
        if not services.digests.is_due(user.id, timeframe, now):
            results.append({"userId": user.id, "status": "skipped"})
            continue

        token = user_id_var.set(user.id)
        try:
            digest = services.digests.generate_digest(user.id, timeframe, now=now)
            job = services.queue.enqueue(
                JobType.SEND_EMAIL,
                {"digestId": digest.id, "to": user.digest_email},
                user_id=user.id,
            )
        except NoContentError:
            results.append({"userId": user.id, "status": "empty"})
        except Exception as e:
            # one user's failure must not stop the batch
            logger.exception("SEND_DIGEST_FAILED", extra={"uid": user.id})
            results.append({"userId": user.id, "status": "error", "error": str(e)})
        else:
            results.append({"userId": user.id, "status": "queued", "digestId": digest.id, "jobId": job.id})
        finally:
            user_id_var.reset(token)

    logger.info("SEND_DIGESTS_DONE", extra={"users": len(results)})
    return {"processed": len(results), "results": results}
