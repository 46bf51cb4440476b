# pensive/worker.py
from __future__ import annotations

import time
from typing import Any, Callable, Dict, Iterable

from .config import JOB_LEASE_SECONDS, JOB_RETRY_DELAY_SECONDS
from .digest import DigestAggregator
from .emailer import send_email
from .errors import NoContentError, NotFoundError
from .feeds import FeedService
from .jobs import JobQueue
from .logging_setup import get_logger, user_id_var
from .models import Job, JobType
from .pipeline import ContentPipeline
from .users import UserStore

logger = get_logger("pensive.worker")

DEFAULT_BATCH = 50

Mailer = Callable[[str, str, Iterable[str]], bool]


class EmailDeliveryError(RuntimeError):
    pass


class JobWorker:
    """
    Drains the job queue: dequeue -> dispatch by type -> ack, or nack on any
    handler exception (the queue decides between retry and FAILED).
    """

    def __init__(
        self,
        queue: JobQueue,
        pipeline: ContentPipeline,
        feeds: FeedService,
        digests: DigestAggregator,
        users: UserStore,
        mailer: Mailer = send_email,
        lease_seconds: int = JOB_LEASE_SECONDS,
        retry_delay: int = JOB_RETRY_DELAY_SECONDS,
    ):
        self.queue = queue
        self.pipeline = pipeline
        self.feeds = feeds
        self.digests = digests
        self.users = users
        self.mailer = mailer
        self.lease_seconds = lease_seconds
        self.retry_delay = retry_delay
        self.handlers: Dict[JobType, Callable[[Job], Any]] = {
            JobType.ANALYZE_CONTENT: self._analyze_content,
            JobType.FETCH_RSS: self._fetch_rss,
            JobType.GENERATE_DIGEST: self._generate_digest,
            JobType.SEND_EMAIL: self._send_email,
        }

    def run(self, max_jobs: int = DEFAULT_BATCH) -> Dict[str, Any]:
        t0 = time.perf_counter()
        processed = failed = 0

        for _ in range(max_jobs):
            job = self.queue.dequeue(self.lease_seconds)
            if job is None:
                break

            token = user_id_var.set(job.user_id or "-")
            try:
                self.handlers[job.type](job)
            except Exception as e:
                failed += 1
                logger.exception("JOB_HANDLER_ERROR", extra={"job_id": job.id, "type": job.type.value})
                self.queue.nack(job.id, f"{type(e).__name__}: {e}", retry_delay=self.retry_delay)
            else:
                processed += 1
                self.queue.ack(job.id)
            finally:
                user_id_var.reset(token)

        summary = {"processed": processed, "failed": failed, "queueStats": self.queue.stats()}
        logger.info(
            "WORKER_RUN_DONE",
            extra={"processed": processed, "failed": failed, "elapsed_ms": round((time.perf_counter() - t0) * 1000)},
        )
        return summary

    # ---- Handlers ----

    def _analyze_content(self, job: Job) -> None:
        self.pipeline.analyze_stored(job.payload["contentId"])

    def _fetch_rss(self, job: Job) -> None:
        # A failed fetch is already counted on the feed (and retried by the next
        # poll), so the job itself completes.
        try:
            result = self.feeds.poll_feed_by_id(job.payload["feedId"])
        except NotFoundError:
            logger.info("FEED_GONE", extra={"job_id": job.id, "feed_id": job.payload.get("feedId")})
            return
        if result["status"] in ("error", "deactivated"):
            logger.warning(
                "FEED_JOB_FETCH_FAILED",
                extra={"job_id": job.id, "feed_id": result["feedId"], "status": result["status"], "error": result.get("error")},
            )

    def _generate_digest(self, job: Job) -> None:
        timeframe = job.payload.get("timeframe", "weekly")
        try:
            digest = self.digests.generate_digest(job.user_id, timeframe)
        except NoContentError:
            logger.info("DIGEST_SKIPPED_EMPTY", extra={"job_id": job.id, "timeframe": timeframe})
            return

        user = self.users.get_user(job.user_id)
        if user is not None and user.digest_email:
            self.queue.enqueue(
                JobType.SEND_EMAIL,
                {"digestId": digest.id, "to": user.digest_email},
                user_id=job.user_id,
            )

    def _send_email(self, job: Job) -> None:
        digest = self.digests.get_digest(job.user_id, job.payload["digestId"])
        if digest.status == "SENT":
            return
        if not self.mailer(digest.title, digest.html_content, [job.payload["to"]]):
            raise EmailDeliveryError(f"delivery to {job.payload['to']} failed")
        self.digests.mark_sent(digest.id)
