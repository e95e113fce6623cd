"""
JobQueue: durable, retryable background work on top of JobStorePort.

The queue is an explicitly constructed handle. Services and workers receive
it through their constructors; there is no module-level connection.

Retry policy:
    attempt n fails and n < max_attempts  -> back to WAITING, due after
                                             delay_ms * 2**(n-1) (exponential)
                                             or delay_ms (fixed)
    attempt n fails and n == max_attempts -> FAILED (terminal, kept)

A claimed job whose worker stops reporting back for longer than the lease
is claimed again as its next attempt.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from domain.models import BackoffPolicy, BackoffType, Job, JobKind, JobState
from ports.job_store import JobStorePort
from shared_utils.constants import Defaults, LogScope
from shared_utils.logging_utils import get_scoped_logger

logger = get_scoped_logger(LogScope.QUEUE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


DEFAULT_JOB_OPTIONS: Dict[JobKind, Tuple[int, BackoffPolicy]] = {
    JobKind.TRANSCRIBE: (
        Defaults.TRANSCRIBE_ATTEMPTS,
        BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=Defaults.TRANSCRIBE_BACKOFF_MS),
    ),
    JobKind.EXTRACT: (
        Defaults.EXTRACT_ATTEMPTS,
        BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=Defaults.EXTRACT_BACKOFF_MS),
    ),
}


def backoff_delay_ms(backoff: BackoffPolicy, attempts_made: int) -> int:
    """Delay before the next attempt after ``attempts_made`` failures."""
    if backoff.type == BackoffType.FIXED:
        return backoff.delay_ms
    return backoff.delay_ms * (2 ** max(attempts_made - 1, 0))


class JobQueue:
    """Producer and consumer API for named job queues."""

    def __init__(
        self,
        store: JobStorePort,
        clock: Callable[[], datetime] = utc_now,
        lease_seconds: int = Defaults.JOB_LEASE_SECONDS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._lease = timedelta(seconds=lease_seconds)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(
        self,
        kind: JobKind,
        payload: Dict[str, Any],
        attempts: Optional[int] = None,
        backoff: Optional[BackoffPolicy] = None,
    ) -> Job:
        """Persist a WAITING job and return immediately."""
        default_attempts, default_backoff = DEFAULT_JOB_OPTIONS.get(kind, (1, BackoffPolicy()))
        now = self._clock()
        job = Job(
            id=str(uuid.uuid4()),
            kind=kind,
            payload=dict(payload),
            max_attempts=attempts or default_attempts,
            backoff=backoff or default_backoff,
            available_at=now,
            created_at=now,
        )
        self._store.add(job)
        logger.info(
            "job_enqueued",
            job_id=job.id,
            kind=kind.value,
            payload=job.payload,
            max_attempts=job.max_attempts,
        )
        return job

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def reserve(self, kind: JobKind) -> Optional[Job]:
        """Claim the next due job of ``kind``, or None when the queue is idle.

        ACTIVE jobs older than the lease are claimed again as a new attempt.
        One whose worker died on its final attempt is failed instead.
        """
        while True:
            now = self._clock()
            job = self._store.claim_next(kind, now, lease_expired_before=now - self._lease)
            if job is None:
                return None
            if job.lease_expired and job.attempts_made > job.max_attempts:
                self.fail(job, "Lease expired on final attempt")
                continue
            logger.info(
                "job_reserved",
                job_id=job.id,
                kind=kind.value,
                attempt=job.attempts_made,
                max_attempts=job.max_attempts,
                lease_expired=job.lease_expired,
            )
            return job

    def report_progress(self, job: Job, progress: int) -> Job:
        job = job.model_copy(update={"progress": max(0, min(100, int(progress)))})
        self._store.update(job)
        return job

    def complete(self, job: Job, result: Optional[Dict[str, Any]] = None) -> Job:
        job = job.model_copy(
            update={
                "state": JobState.COMPLETED,
                "progress": 100,
                "result": result,
                "last_error": None,
                "finished_at": self._clock(),
            }
        )
        self._store.update(job)
        logger.info("job_completed", job_id=job.id, kind=job.kind.value, attempts=job.attempts_made)
        return job

    def fail(self, job: Job, error: str) -> Job:
        """Record a failed attempt; schedule a retry or fail terminally."""
        now = self._clock()
        if job.attempts_made < job.max_attempts:
            delay = backoff_delay_ms(job.backoff, job.attempts_made)
            job = job.model_copy(
                update={
                    "state": JobState.WAITING,
                    "last_error": error,
                    "available_at": now + timedelta(milliseconds=delay),
                }
            )
            self._store.update(job)
            logger.warning(
                "job_retry_scheduled",
                job_id=job.id,
                kind=job.kind.value,
                attempt=job.attempts_made,
                max_attempts=job.max_attempts,
                delay_ms=delay,
                error=error,
            )
            return job

        job = job.model_copy(
            update={"state": JobState.FAILED, "last_error": error, "finished_at": now}
        )
        self._store.update(job)
        logger.error(
            "job_failed",
            job_id=job.id,
            kind=job.kind.value,
            attempts=job.attempts_made,
            error=error,
        )
        return job

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._store.get(job_id)

    def find_jobs(
        self,
        kind: Optional[JobKind] = None,
        state: Optional[JobState] = None,
        payload_key: Optional[str] = None,
        payload_value: Optional[Any] = None,
    ) -> List[Job]:
        return self._store.find(
            kind=kind, state=state, payload_key=payload_key, payload_value=payload_value
        )

    def latest_job_for(self, kind: JobKind, payload_key: str, payload_value: Any) -> Optional[Job]:
        jobs = self.find_jobs(kind=kind, payload_key=payload_key, payload_value=payload_value)
        return jobs[0] if jobs else None
