# tests/test_jobs.py
from datetime import datetime, timedelta, timezone

from pensive.models import JobStatus, JobType, as_utc

T0 = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

def _enqueue(services, **kw):
    return services.queue.enqueue(JobType.ANALYZE_CONTENT, {"contentId": "c1"}, scheduled_at=T0, **kw)

def test_dequeue_claims_with_a_lease(services):
    job = _enqueue(services)
    claimed = services.queue.dequeue(lease_seconds=300, now=T0)

    assert claimed.id == job.id
    assert claimed.status == JobStatus.RUNNING
    assert claimed.attempts == 1
    assert as_utc(claimed.started_at) == T0
    assert as_utc(claimed.lease_expires_at) == T0 + timedelta(seconds=300)

def test_running_job_is_not_claimed_twice_while_leased(services):
    _enqueue(services)
    assert services.queue.dequeue(300, now=T0) is not None
    assert services.queue.dequeue(300, now=T0 + timedelta(seconds=299)) is None

def test_expired_lease_redelivers(services):
    job = _enqueue(services)
    services.queue.dequeue(300, now=T0)
    # worker died without ack
    again = services.queue.dequeue(300, now=T0 + timedelta(seconds=301))
    assert again.id == job.id
    assert again.attempts == 2

def test_lease_expiry_on_last_attempt_fails_the_job(services):
    job = _enqueue(services, max_attempts=1)
    services.queue.dequeue(300, now=T0)
    assert services.queue.dequeue(300, now=T0 + timedelta(minutes=10)) is None

    failed = services.queue.get(job.id)
    assert failed.status == JobStatus.FAILED
    assert failed.error

def test_future_jobs_wait(services):
    services.queue.enqueue(JobType.FETCH_RSS, {"feedId": "f"}, scheduled_at=T0 + timedelta(hours=1))
    assert services.queue.dequeue(now=T0) is None
    assert services.queue.dequeue(now=T0 + timedelta(hours=1)) is not None

def test_oldest_due_job_first(services):
    later = services.queue.enqueue(JobType.FETCH_RSS, {}, scheduled_at=T0 + timedelta(seconds=5))
    earlier = services.queue.enqueue(JobType.FETCH_RSS, {}, scheduled_at=T0)
    now = T0 + timedelta(seconds=10)
    assert services.queue.dequeue(now=now).id == earlier.id
    assert services.queue.dequeue(now=now).id == later.id

def test_nack_retries_after_delay_then_fails(services):
    job = _enqueue(services, max_attempts=2)
    services.queue.dequeue(now=T0)
    retried = services.queue.nack(job.id, "boom", retry_delay=60, now=T0)
    assert retried.status == JobStatus.PENDING
    assert retried.scheduled_at == T0 + timedelta(seconds=60)
    assert retried.error == "boom"

    assert services.queue.dequeue(now=T0 + timedelta(seconds=30)) is None
    services.queue.dequeue(now=T0 + timedelta(seconds=60))
    final = services.queue.nack(job.id, "boom again", now=T0 + timedelta(seconds=61))
    assert final.status == JobStatus.FAILED
    assert final.error == "boom again"
    assert services.queue.dequeue(now=T0 + timedelta(hours=1)) is None

def test_ack_completes(services):
    job = _enqueue(services)
    services.queue.dequeue(now=T0)
    done = services.queue.ack(job.id, now=T0)
    assert done.status == JobStatus.COMPLETED
    assert done.lease_expires_at is None
    assert services.queue.dequeue(now=T0 + timedelta(hours=1)) is None

def test_stats_and_cleanup(services):
    _enqueue(services)
    _enqueue(services)
    claimed = services.queue.dequeue(now=T0)
    services.queue.ack(claimed.id, now=T0)
    assert services.queue.stats() == {"pending": 1, "running": 0, "completed": 1, "failed": 0}

    assert services.queue.cleanup(now=T0 + timedelta(hours=23)) == 0
    assert services.queue.cleanup(now=T0 + timedelta(hours=25)) == 1
    assert services.queue.stats()["completed"] == 0

def test_many_exhausted_leases_do_not_hide_due_work(services):
    stale = [_enqueue(services, max_attempts=1) for _ in range(6)]
    for _ in stale:
        services.queue.dequeue(300, now=T0)
    fresh = services.queue.enqueue(JobType.FETCH_RSS, {"feedId": "f"}, scheduled_at=T0 + timedelta(minutes=1))

    claimed = services.queue.dequeue(300, now=T0 + timedelta(minutes=10))

    assert claimed is not None and claimed.id == fresh.id
    assert services.queue.stats() == {"pending": 0, "running": 1, "completed": 0, "failed": 6}
    assert all(services.queue.get(j.id).error == "lease expired after final attempt" for j in stale)
