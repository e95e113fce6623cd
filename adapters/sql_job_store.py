"""
SQLAlchemy-backed durable job store.

Implements JobStorePort. Claiming uses ``SELECT ... FOR UPDATE SKIP LOCKED``
on PostgreSQL and a compare-and-set update on SQLite, so two workers never
run the same job concurrently.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from adapters.sql_record_store import _aware
from core_intelligence.database.manager import DatabaseManager
from core_intelligence.database.tables import JobRow
from domain.models import BackoffPolicy, Job, JobKind, JobState
from shared_utils.constants import LogScope
from shared_utils.error_handler import ExternalServiceError
from shared_utils.logging_utils import get_scoped_logger

logger = get_scoped_logger(LogScope.ADAPTER)


def _to_job(row: JobRow) -> Job:
    return Job(
        id=row.id,
        kind=row.kind,
        payload=row.payload or {},
        state=row.state,
        attempts_made=row.attempts_made,
        max_attempts=row.max_attempts,
        backoff=BackoffPolicy(type=row.backoff_type, delay_ms=row.backoff_delay_ms),
        progress=row.progress,
        available_at=_aware(row.available_at),
        last_error=row.last_error,
        result=row.result,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        finished_at=_aware(row.finished_at),
    )


class SqlJobStoreAdapter:
    """Relational implementation of JobStorePort."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def add(self, job: Job) -> Job:
        try:
            with self._db.session_scope() as session:
                session.add(
                    JobRow(
                        id=job.id,
                        kind=job.kind.value,
                        payload=job.payload,
                        state=job.state.value,
                        attempts_made=job.attempts_made,
                        max_attempts=job.max_attempts,
                        backoff_type=job.backoff.type.value,
                        backoff_delay_ms=job.backoff.delay_ms,
                        progress=job.progress,
                        available_at=job.available_at,
                        created_at=job.created_at,
                    )
                )
        except SQLAlchemyError as exc:
            logger.error("job_add_failed", job_id=job.id, kind=job.kind.value, error=str(exc))
            raise ExternalServiceError("JobStore", f"Failed to enqueue job: {exc}") from exc
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._db.session_scope() as session:
            row = session.get(JobRow, job_id)
            return _to_job(row) if row else None

    def claim_next(
        self,
        kind: JobKind,
        now: datetime,
        lease_expired_before: Optional[datetime] = None,
    ) -> Optional[Job]:
        """Claim the oldest due job of ``kind``; returns None when idle.

        With ``lease_expired_before`` set, an ACTIVE job started before that
        instant is also claimable. Its worker is presumed dead.
        """
        claimable = and_(JobRow.state == JobState.WAITING.value, JobRow.available_at <= now)
        if lease_expired_before is not None:
            claimable = or_(
                claimable,
                and_(
                    JobRow.state == JobState.ACTIVE.value,
                    JobRow.started_at <= lease_expired_before,
                ),
            )
        stmt = (
            select(JobRow)
            .where(JobRow.kind == kind.value, claimable)
            .order_by(JobRow.available_at, JobRow.created_at)
            .limit(1)
        )
        if self._db.dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)

        try:
            with self._db.session_scope() as session:
                row = session.execute(stmt).scalar_one_or_none()
                if row is None:
                    return None
                expired = row.state == JobState.ACTIVE.value
                # Compare-and-set guards dialects without row locks
                claimed = session.execute(
                    update(JobRow)
                    .where(
                        JobRow.id == row.id,
                        JobRow.state == row.state,
                        JobRow.attempts_made == row.attempts_made,
                    )
                    .values(
                        state=JobState.ACTIVE.value,
                        attempts_made=JobRow.attempts_made + 1,
                        started_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount == 0:
                    return None
                session.refresh(row)
                job = _to_job(row)
        except SQLAlchemyError as exc:
            logger.error("job_claim_failed", kind=kind.value, error=str(exc))
            raise ExternalServiceError("JobStore", f"Failed to claim job: {exc}") from exc

        if expired:
            logger.warning("job_lease_reclaimed", job_id=job.id, kind=kind.value, attempt=job.attempts_made)
            job = job.model_copy(update={"lease_expired": True})
        return job

    def update(self, job: Job) -> Job:
        try:
            with self._db.session_scope() as session:
                session.execute(
                    update(JobRow)
                    .where(JobRow.id == job.id)
                    .values(
                        state=job.state.value,
                        attempts_made=job.attempts_made,
                        progress=job.progress,
                        available_at=job.available_at,
                        last_error=job.last_error,
                        result=job.result,
                        started_at=job.started_at,
                        finished_at=job.finished_at,
                    )
                )
        except SQLAlchemyError as exc:
            logger.error("job_update_failed", job_id=job.id, error=str(exc))
            raise ExternalServiceError("JobStore", f"Failed to update job: {exc}") from exc
        return job

    def find(
        self,
        kind: Optional[JobKind] = None,
        state: Optional[JobState] = None,
        payload_key: Optional[str] = None,
        payload_value: Optional[Any] = None,
    ) -> List[Job]:
        stmt = select(JobRow).order_by(JobRow.created_at.desc())
        if kind is not None:
            stmt = stmt.where(JobRow.kind == kind.value)
        if state is not None:
            stmt = stmt.where(JobRow.state == state.value)
        with self._db.session_scope() as session:
            jobs = [_to_job(r) for r in session.execute(stmt).scalars()]
        # Payloads are small JSON documents; filter portably in Python
        if payload_key is not None:
            jobs = [j for j in jobs if j.payload.get(payload_key) == payload_value]
        return jobs
