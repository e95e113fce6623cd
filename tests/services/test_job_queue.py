"""
Tests for JobQueue on the SQLite job store with a controllable clock.
"""

import pytest

from domain.models import BackoffPolicy, BackoffType, JobKind, JobState
from services.job_queue import DEFAULT_JOB_OPTIONS, JobQueue, backoff_delay_ms


# ---------------------------------------------------------------------------
# backoff_delay_ms
# ---------------------------------------------------------------------------


class TestBackoffDelay:
    def test_exponential_doubles(self) -> None:
        policy = BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=5000)
        assert [backoff_delay_ms(policy, n) for n in (1, 2, 3)] == [5000, 10000, 20000]

    def test_fixed_is_constant(self) -> None:
        policy = BackoffPolicy(type=BackoffType.FIXED, delay_ms=250)
        assert backoff_delay_ms(policy, 1) == backoff_delay_ms(policy, 4) == 250


# ---------------------------------------------------------------------------
# Enqueue / reserve
# ---------------------------------------------------------------------------


class TestEnqueue:
    def test_defaults_per_kind(self, job_queue) -> None:
        transcribe = job_queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": "r1"})
        extract = job_queue.enqueue(JobKind.EXTRACT, {"message_id": "m1"})

        assert transcribe.state == JobState.WAITING
        assert transcribe.max_attempts == 3
        assert transcribe.backoff.delay_ms == 5000
        assert extract.max_attempts == 2
        assert extract.backoff.delay_ms == 3000
        assert DEFAULT_JOB_OPTIONS[JobKind.EXTRACT][1].type == BackoffType.EXPONENTIAL

    def test_explicit_options_override_defaults(self, job_queue) -> None:
        job = job_queue.enqueue(
            JobKind.EXTRACT,
            {"message_id": "m1"},
            attempts=5,
            backoff=BackoffPolicy(type=BackoffType.FIXED, delay_ms=10),
        )
        stored = job_queue.get_job(job.id)
        assert stored.max_attempts == 5
        assert stored.backoff.type == BackoffType.FIXED


class TestReserve:
    def test_claims_once_and_counts_attempt(self, job_queue) -> None:
        job = job_queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": "r1"})

        claimed = job_queue.reserve(JobKind.TRANSCRIBE)

        assert claimed.id == job.id
        assert claimed.state == JobState.ACTIVE
        assert claimed.attempts_made == 1
        assert job_queue.reserve(JobKind.TRANSCRIBE) is None

    def test_kinds_are_independent(self, job_queue) -> None:
        job_queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": "r1"})

        assert job_queue.reserve(JobKind.EXTRACT) is None
        assert job_queue.reserve(JobKind.TRANSCRIBE) is not None

    def test_oldest_first(self, job_queue, clock) -> None:
        first = job_queue.enqueue(JobKind.EXTRACT, {"message_id": "m1"})
        clock.advance(seconds=1)
        job_queue.enqueue(JobKind.EXTRACT, {"message_id": "m2"})

        assert job_queue.reserve(JobKind.EXTRACT).id == first.id


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestOutcomes:
    def test_complete(self, job_queue) -> None:
        job_queue.enqueue(JobKind.EXTRACT, {"message_id": "m1"})
        job = job_queue.reserve(JobKind.EXTRACT)

        done = job_queue.complete(job, {"tasks": 1})

        stored = job_queue.get_job(done.id)
        assert stored.state == JobState.COMPLETED
        assert stored.progress == 100
        assert stored.result == {"tasks": 1}
        assert stored.finished_at is not None

    @pytest.mark.parametrize("reported,expected", [(-5, 0), (42, 42), (250, 100)])
    def test_progress_clamped(self, job_queue, reported, expected) -> None:
        job_queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": "r1"})
        job = job_queue.reserve(JobKind.TRANSCRIBE)

        job_queue.report_progress(job, reported)

        assert job_queue.get_job(job.id).progress == expected

    def test_failed_attempt_is_delayed_with_exponential_backoff(self, job_queue, clock) -> None:
        job_queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": "r1"})
        job = job_queue.reserve(JobKind.TRANSCRIBE)

        retried = job_queue.fail(job, "speech timeout")

        assert retried.state == JobState.WAITING
        assert retried.last_error == "speech timeout"
        assert job_queue.reserve(JobKind.TRANSCRIBE) is None

        clock.advance(milliseconds=4999)
        assert job_queue.reserve(JobKind.TRANSCRIBE) is None
        clock.advance(milliseconds=1)
        second = job_queue.reserve(JobKind.TRANSCRIBE)
        assert second.attempts_made == 2

        job_queue.fail(second, "again")
        clock.advance(milliseconds=9999)
        assert job_queue.reserve(JobKind.TRANSCRIBE) is None
        clock.advance(milliseconds=1)
        assert job_queue.reserve(JobKind.TRANSCRIBE).attempts_made == 3

    def test_exhausted_job_is_kept_as_failed(self, job_queue, clock) -> None:
        job = job_queue.enqueue(JobKind.EXTRACT, {"message_id": "m1"})
        for _ in range(2):
            claimed = job_queue.reserve(JobKind.EXTRACT)
            job_queue.fail(claimed, "bad json")
            clock.advance(seconds=60)

        stored = job_queue.get_job(job.id)
        assert stored.state == JobState.FAILED
        assert stored.attempts_made == 2
        assert job_queue.reserve(JobKind.EXTRACT) is None
        assert job_queue.find_jobs(kind=JobKind.EXTRACT, state=JobState.FAILED)[0].id == job.id


class TestLookup:
    def test_latest_job_for_payload(self, job_queue, clock) -> None:
        job_queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": "r1"})
        clock.advance(seconds=1)
        newest = job_queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": "r1"})
        job_queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": "r2"})

        assert job_queue.latest_job_for(JobKind.TRANSCRIBE, "recording_id", "r1").id == newest.id
        assert job_queue.latest_job_for(JobKind.TRANSCRIBE, "recording_id", "zzz") is None

    def test_separate_handles_share_durable_state(self, job_store, clock) -> None:
        producer = JobQueue(job_store, clock=clock)
        consumer = JobQueue(job_store, clock=clock)

        job = producer.enqueue(JobKind.EXTRACT, {"message_id": "m1"})

        assert consumer.reserve(JobKind.EXTRACT).id == job.id


class TestLease:
    def test_abandoned_job_is_claimed_again_after_lease(self, job_store, clock) -> None:
        queue = JobQueue(job_store, clock=clock, lease_seconds=60)
        queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": "r1"})
        first = queue.reserve(JobKind.TRANSCRIBE)

        clock.advance(seconds=59)
        assert queue.reserve(JobKind.TRANSCRIBE) is None

        clock.advance(seconds=1)
        again = queue.reserve(JobKind.TRANSCRIBE)
        assert again.id == first.id
        assert again.lease_expired is True
        assert again.attempts_made == 2

    def test_abandoned_final_attempt_fails_terminally(self, job_store, clock) -> None:
        queue = JobQueue(job_store, clock=clock, lease_seconds=60)
        job = queue.enqueue(JobKind.EXTRACT, {"message_id": "m1"}, attempts=1)
        queue.reserve(JobKind.EXTRACT)

        clock.advance(seconds=61)

        assert queue.reserve(JobKind.EXTRACT) is None
        stored = queue.get_job(job.id)
        assert stored.state == JobState.FAILED
        assert stored.last_error == "Lease expired on final attempt"
