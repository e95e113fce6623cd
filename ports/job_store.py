"""
Port interface for durable job persistence backing the JobQueue.

Implementations: SqlJobStoreAdapter (adapters/)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Protocol, runtime_checkable

from domain.models import Job, JobKind, JobState


@runtime_checkable
class JobStorePort(Protocol):
    """Abstract interface for storing and claiming jobs."""

    def add(self, job: Job) -> Job:
        """Persist a new job."""
        ...

    def get(self, job_id: str) -> Optional[Job]:
        ...

    def claim_next(
        self,
        kind: JobKind,
        now: datetime,
        lease_expired_before: Optional[datetime] = None,
    ) -> Optional[Job]:
        """Atomically claim the oldest waiting job of ``kind`` due at ``now``.

        The claimed job is returned already marked ACTIVE with
        ``attempts_made`` incremented. Two concurrent callers never
        receive the same job. When ``lease_expired_before`` is given, ACTIVE
        jobs started before it are claimable too and come back with
        ``lease_expired`` set.
        """
        ...

    def update(self, job: Job) -> Job:
        """Overwrite the mutable fields of an existing job."""
        ...

    def find(
        self,
        kind: Optional[JobKind] = None,
        state: Optional[JobState] = None,
        payload_key: Optional[str] = None,
        payload_value: Optional[Any] = None,
    ) -> List[Job]:
        """List jobs, newest first, filtered by kind/state/payload field."""
        ...
