# pensive/jobs.py
"""
Durable work queue on the jobs table.

A job is claimed with a lease: dequeue flips it to RUNNING and stamps
lease_expires_at. If the worker dies before ack/nack, the lease lapses and the
next dequeue redelivers it. Claims are a conditional UPDATE on (status,
attempts), so when two pollers pick the same candidate only one UPDATE matches
a row; the loser moves on to the next candidate.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import and_, delete, func, or_, update
from sqlmodel import col, select

from .config import JOB_LEASE_SECONDS, JOB_MAX_ATTEMPTS, JOB_RETRY_DELAY_SECONDS
from .errors import NotFoundError
from .logging_setup import get_logger
from .models import Job, JobStatus, JobType, as_utc, utcnow
from .store import SessionFactory

logger = get_logger("pensive.jobs")

CLAIM_RETRIES = 5
FINISHED_RETENTION = timedelta(hours=24)


class JobQueue:
    def __init__(self, get_session: SessionFactory):
        self.get_session = get_session

    def enqueue(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        user_id: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
        max_attempts: int = JOB_MAX_ATTEMPTS,
    ) -> Job:
        job = Job(
            type=JobType(job_type),
            payload=dict(payload or {}),
            user_id=user_id,
            scheduled_at=as_utc(scheduled_at or utcnow()),
            max_attempts=max(1, int(max_attempts)),
        )
        with self.get_session() as s:
            s.add(job)
            s.commit()
        logger.info("JOB_ENQUEUED", extra={"job_id": job.id, "type": job.type.value})
        return job

    def get(self, job_id: str) -> Job:
        with self.get_session() as s:
            job = s.get(Job, job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    def dequeue(self, lease_seconds: int = JOB_LEASE_SECONDS, now: Optional[datetime] = None) -> Optional[Job]:
        """Claim the oldest due job, or None when nothing is claimable."""
        now = as_utc(now or utcnow())
        self._fail_exhausted_leases(now)

        claimable = and_(
            Job.scheduled_at <= now,
            or_(
                Job.status == JobStatus.PENDING,
                and_(
                    Job.status == JobStatus.RUNNING,
                    Job.lease_expires_at <= now,
                    Job.attempts < Job.max_attempts,
                ),
            ),
        )

        # only lost races count against the retries
        for _ in range(CLAIM_RETRIES):
            with self.get_session() as s:
                candidate = s.exec(
                    select(Job).where(claimable).order_by(col(Job.scheduled_at), col(Job.created_at)).limit(1)
                ).first()
                if candidate is None:
                    return None

                redelivery = candidate.status == JobStatus.RUNNING
                result = s.connection().execute(
                    update(Job)
                    .where(
                        Job.id == candidate.id,
                        Job.status == candidate.status,
                        Job.attempts == candidate.attempts,
                    )
                    .values(
                        status=JobStatus.RUNNING,
                        started_at=now,
                        lease_expires_at=now + timedelta(seconds=lease_seconds),
                        attempts=candidate.attempts + 1,
                    )
                )
                s.commit()
                if result.rowcount != 1:
                    logger.debug("JOB_CLAIM_LOST", extra={"job_id": candidate.id})
                    continue

                s.refresh(candidate)
                logger.info(
                    "JOB_CLAIMED",
                    extra={
                        "job_id": candidate.id,
                        "type": candidate.type.value,
                        "attempt": candidate.attempts,
                        "redelivery": redelivery,
                    },
                )
                return candidate
        return None

    def _fail_exhausted_leases(self, now: datetime) -> int:
        """A lease that lapsed on the final attempt fails the job instead of redelivering it."""
        with self.get_session() as s:
            result = s.connection().execute(
                update(Job)
                .where(
                    Job.status == JobStatus.RUNNING,
                    Job.lease_expires_at <= now,
                    Job.attempts >= Job.max_attempts,
                )
                .values(
                    status=JobStatus.FAILED,
                    completed_at=now,
                    lease_expires_at=None,
                    error=func.coalesce(Job.error, "lease expired after final attempt"),
                )
            )
            s.commit()
        if result.rowcount:
            logger.warning("JOB_LEASE_EXHAUSTED", extra={"jobs": result.rowcount})
        return result.rowcount

    def ack(self, job_id: str, now: Optional[datetime] = None) -> Job:
        with self.get_session() as s:
            job = s.get(Job, job_id)
            if job is None:
                raise NotFoundError("job", job_id)
            job.status = JobStatus.COMPLETED
            job.completed_at = as_utc(now or utcnow())
            job.lease_expires_at = None
            job.error = None
            s.add(job)
            s.commit()
        logger.info("JOB_COMPLETED", extra={"job_id": job_id})
        return job

    def nack(
        self,
        job_id: str,
        error: str,
        retry_delay: int = JOB_RETRY_DELAY_SECONDS,
        now: Optional[datetime] = None,
    ) -> Job:
        """Record a failed attempt: reschedule after `retry_delay`, or FAIL once attempts are used up."""
        now = as_utc(now or utcnow())
        with self.get_session() as s:
            job = s.get(Job, job_id)
            if job is None:
                raise NotFoundError("job", job_id)
            job.error = error
            job.lease_expires_at = None
            if job.attempts < job.max_attempts:
                job.status = JobStatus.PENDING
                job.scheduled_at = now + timedelta(seconds=retry_delay)
            else:
                job.status = JobStatus.FAILED
                job.completed_at = now
            s.add(job)
            s.commit()

        logger.warning(
            "JOB_RETRY" if job.status == JobStatus.PENDING else "JOB_FAILED",
            extra={"job_id": job_id, "attempts": job.attempts, "error": error},
        )
        return job

    def stats(self) -> Dict[str, int]:
        with self.get_session() as s:
            rows = s.exec(select(Job.status, func.count()).group_by(Job.status)).all()
        out = {status.value.lower(): 0 for status in JobStatus}
        for status, count in rows:
            out[JobStatus(status).value.lower()] = count
        return out

    def cleanup(self, older_than: timedelta = FINISHED_RETENTION, now: Optional[datetime] = None) -> int:
        """Delete COMPLETED/FAILED jobs that finished before now - older_than."""
        cutoff = as_utc(now or utcnow()) - older_than
        with self.get_session() as s:
            result = s.connection().execute(
                delete(Job).where(
                    col(Job.status).in_([JobStatus.COMPLETED, JobStatus.FAILED]),
                    Job.completed_at < cutoff,
                )
            )
            s.commit()
        if result.rowcount:
            logger.info("JOBS_CLEANED", extra={"deleted": result.rowcount})
        return result.rowcount
