"""
Tests for TranscriptionService: intake, the status machine, and accumulation.

Storage is real (SQLite in-memory + in-memory blobs); speech is mocked.
"""

import io
import wave
from unittest.mock import MagicMock

import pytest

from conftest import FakePlatformClient
from domain.models import (
    JobKind,
    JobState,
    Source,
    SpeechRecognition,
    SpeechSegment,
    TranscriptionStatus,
)
from services.job_queue import JobQueue
from services.transcription_service import (
    TranscriptionService,
    accumulate_segments,
    check_transition,
    content_type_for_key,
    recording_storage_key,
)
from shared_utils.error_handler import (
    CollaboratorError,
    ExternalServiceError,
    InvalidStateError,
    NotConfiguredError,
    NotFoundError,
    ValidationError,
)


def _silent_wav(seconds: float = 1.0, rate: int = 16000) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(rate)
        wav.writeframes(b"\x00\x00" * int(seconds * rate))
    return buffer.getvalue()


def _speech(segments=None, language="en") -> MagicMock:
    mock = MagicMock()
    mock.recognize.return_value = SpeechRecognition(segments=segments or [], language=language)
    return mock


@pytest.fixture()
def make_service(record_store, blob_store, job_queue, clock):
    def _make(speech=..., auto_extract=True, queue=None) -> TranscriptionService:
        return TranscriptionService(
            recording_store=record_store,
            blob_store=blob_store,
            job_queue=queue or job_queue,
            speech_provider=_speech() if speech is ... else speech,
            message_store=record_store,
            auto_extract=auto_extract,
            clock=clock,
        )
    return _make


def _upload(service, content=None, content_type="audio/wav"):
    return service.upload_and_process(
        source="slack",
        source_id="F123",
        title="Standup",
        content=_silent_wav() if content is None else content,
        content_type=content_type,
    )


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestAccumulateSegments:
    def test_no_segments_is_empty_with_default_confidence(self) -> None:
        assert accumulate_segments([]) == ("", 0.5)

    def test_mean_with_missing_confidence_substituted(self) -> None:
        text, confidence = accumulate_segments(
            [
                SpeechSegment(text=" Hello ", confidence=0.9),
                SpeechSegment(text="world", confidence=None),
                SpeechSegment(text="again", confidence=0.7),
            ]
        )
        assert text == "Hello world again"
        assert confidence == pytest.approx((0.9 + 0.5 + 0.7) / 3)


class TestHelpers:
    def test_storage_key_layout(self, clock) -> None:
        key = recording_storage_key(Source.TEAMS, "abc", "audio/mpeg", clock())
        assert key == "recordings/teams/2025/01/15/abc.mp3"

    def test_unknown_audio_type_uses_fallback_extension(self, clock) -> None:
        key = recording_storage_key(Source.SLACK, "abc", "audio/x-custom", clock())
        assert key.endswith("abc.bin")

    def test_content_type_from_key(self) -> None:
        assert content_type_for_key("recordings/slack/x.wav") == "audio/wav"
        assert content_type_for_key("recordings/slack/x.bin") == "application/octet-stream"

    @pytest.mark.parametrize(
        "current,target",
        [
            (TranscriptionStatus.COMPLETED, TranscriptionStatus.PROCESSING),
            (TranscriptionStatus.PENDING, TranscriptionStatus.COMPLETED),
            (TranscriptionStatus.FAILED, TranscriptionStatus.COMPLETED),
        ],
    )
    def test_illegal_transitions(self, current, target) -> None:
        with pytest.raises(InvalidStateError):
            check_transition(current, target)


# ---------------------------------------------------------------------------
# upload_and_process
# ---------------------------------------------------------------------------


class TestUpload:
    def test_returns_pending_and_queues_job(self, make_service, blob_store, job_queue) -> None:
        recording = _upload(make_service())

        assert recording.transcription_status == TranscriptionStatus.PENDING
        assert recording.storage_path == f"recordings/slack/2025/01/15/{recording.id}.wav"
        assert blob_store.get(recording.storage_path).startswith(b"RIFF")
        job = job_queue.latest_job_for(JobKind.TRANSCRIBE, "recording_id", recording.id)
        assert job.state == JobState.WAITING

    def test_reuploads_never_collide(self, make_service) -> None:
        service = make_service()
        a = _upload(service)
        b = _upload(service)
        assert a.storage_path != b.storage_path

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"source": "discord"},
            {"content": b""},
            {"content_type": "text/plain"},
        ],
    )
    def test_invalid_input_rejected(self, make_service, record_store, kwargs) -> None:
        params = {
            "source": "slack",
            "source_id": "F1",
            "title": "t",
            "content": b"RIFF....",
            "content_type": "audio/wav",
            **kwargs,
        }
        with pytest.raises(ValidationError):
            make_service().upload_and_process(**params)
        assert record_store.list_recordings() == []

    def test_import_downloads_from_platform(self, make_service) -> None:
        client = FakePlatformClient(Source.TEAMS, [], {})
        client.files["https://files/rec.mp3"] = b"ID3audio"

        recording = make_service().import_recording(
            client, "teams", "call-1", "Sprint review", "https://files/rec.mp3", "audio/mpeg"
        )

        assert recording.source == Source.TEAMS
        assert recording.storage_path.endswith(".mp3")


# ---------------------------------------------------------------------------
# process
# ---------------------------------------------------------------------------


class TestProcess:
    def test_silent_audio_completes_with_empty_transcript(self, make_service, record_store, job_queue) -> None:
        service = make_service(speech=_speech(segments=[]))
        recording = _upload(service)

        transcription = service.process(recording.id)

        assert transcription.content == ""
        assert transcription.confidence_score == 0.5
        assert record_store.get_recording(recording.id).transcription_status == TranscriptionStatus.COMPLETED
        assert job_queue.find_jobs(kind=JobKind.EXTRACT) == []

    def test_speech_creates_transcript_message_and_extract_job(self, make_service, record_store, job_queue) -> None:
        speech = _speech(
            segments=[
                SpeechSegment(text="We ship on Friday.", confidence=0.8),
                SpeechSegment(text="Dana owns the rollout.", confidence=0.6),
            ]
        )
        service = make_service(speech=speech)
        recording = _upload(service)
        progress = MagicMock()

        transcription = service.process(recording.id, progress=progress)

        assert transcription.content == "We ship on Friday. Dana owns the rollout."
        assert transcription.confidence_score == pytest.approx(0.7)
        assert transcription.language == "en"
        speech.recognize.assert_called_once()
        assert speech.recognize.call_args[0][1] == "audio/wav"
        assert progress.call_count >= 2
        assert record_store.count_messages() == 1
        assert len(job_queue.find_jobs(kind=JobKind.EXTRACT)) == 1

    def test_transcript_not_published_when_disabled(self, make_service, record_store) -> None:
        service = make_service(speech=_speech([SpeechSegment(text="hi", confidence=1.0)]), auto_extract=False)
        recording = _upload(service)

        service.process(recording.id)

        assert record_store.count_messages() == 0

    def test_completed_recording_is_skipped(self, make_service) -> None:
        speech = _speech()
        service = make_service(speech=speech)
        recording = _upload(service)
        service.process(recording.id)

        assert service.process(recording.id) is None
        assert speech.recognize.call_count == 1

    def test_missing_recording(self, make_service) -> None:
        with pytest.raises(NotFoundError):
            make_service().process("missing")

    def test_speech_failure_marks_failed_and_reraises(self, make_service, record_store) -> None:
        speech = MagicMock()
        speech.recognize.side_effect = CollaboratorError("OpenAI", "recognition canceled")
        service = make_service(speech=speech)
        recording = _upload(service)

        with pytest.raises(CollaboratorError):
            service.process(recording.id)

        assert record_store.get_recording(recording.id).transcription_status == TranscriptionStatus.FAILED
        assert record_store.latest_transcription(recording.id) is None

    def test_missing_speech_config_fails(self, make_service, record_store) -> None:
        service = make_service(speech=None)
        recording = _upload(service)

        with pytest.raises(NotConfiguredError):
            service.process(recording.id)
        assert record_store.get_recording(recording.id).transcription_status == TranscriptionStatus.FAILED

    def test_failed_recording_is_reset_by_queue_retry(self, make_service, record_store) -> None:
        speech = MagicMock()
        speech.recognize.side_effect = [
            CollaboratorError("OpenAI", "timeout"),
            SpeechRecognition(segments=[SpeechSegment(text="ok", confidence=0.9)]),
        ]
        service = make_service(speech=speech)
        recording = _upload(service)

        with pytest.raises(CollaboratorError):
            service.process(recording.id)
        transcription = service.process(recording.id)

        assert transcription.content == "ok"
        assert record_store.get_recording(recording.id).transcription_status == TranscriptionStatus.COMPLETED

    def test_duration_is_stored_on_completion(self, make_service, record_store) -> None:
        speech = MagicMock()
        speech.recognize.return_value = SpeechRecognition(
            segments=[SpeechSegment(text="hello", confidence=0.9)], duration_seconds=12.5
        )
        service = make_service(speech=speech)
        recording = _upload(service)

        service.process(recording.id)

        assert record_store.get_recording(recording.id).duration_seconds == 12.5


class TestAbandonedWork:
    @pytest.fixture()
    def leased_queue(self, job_store, clock) -> JobQueue:
        return JobQueue(job_store, clock=clock, lease_seconds=60)

    def _crashed_upload(self, service, record_store, leased_queue):
        # Worker claimed the job and moved the recording, then died
        recording = _upload(service)
        leased_queue.reserve(JobKind.TRANSCRIBE)
        record_store.update_recording_status(recording.id, TranscriptionStatus.PROCESSING)
        return recording

    def test_processing_recording_rejected_without_reclaim(self, make_service, record_store, leased_queue) -> None:
        service = make_service(queue=leased_queue)
        recording = self._crashed_upload(service, record_store, leased_queue)

        with pytest.raises(InvalidStateError):
            service.process(recording.id)

    def test_reclaimed_job_completes_stuck_recording(self, make_service, record_store, leased_queue, clock) -> None:
        service = make_service(speech=_speech([SpeechSegment(text="ok", confidence=0.9)]), queue=leased_queue)
        recording = self._crashed_upload(service, record_store, leased_queue)

        clock.advance(seconds=61)
        job = leased_queue.reserve(JobKind.TRANSCRIBE)
        transcription = service.process(recording.id, reclaim=job.lease_expired)

        assert transcription.content == "ok"
        assert record_store.get_recording(recording.id).transcription_status == TranscriptionStatus.COMPLETED

    def test_retry_refused_while_job_is_live(self, make_service, record_store, leased_queue) -> None:
        service = make_service(queue=leased_queue)
        recording = self._crashed_upload(service, record_store, leased_queue)

        with pytest.raises(InvalidStateError):
            service.retry(recording.id)

    def test_abandoned_recording_can_be_retried(self, make_service, record_store, leased_queue, clock) -> None:
        service = make_service(queue=leased_queue)
        recording = self._crashed_upload(service, record_store, leased_queue)
        # Every reclaimed attempt dies too until the job runs out of attempts
        for _ in range(3):
            clock.advance(seconds=61)
            leased_queue.reserve(JobKind.TRANSCRIBE)
        job = leased_queue.latest_job_for(JobKind.TRANSCRIBE, "recording_id", recording.id)
        assert job.state == JobState.FAILED

        result = service.retry(recording.id)

        assert result.transcription_status == TranscriptionStatus.PENDING
        assert record_store.get_recording(recording.id).transcription_status == TranscriptionStatus.PENDING
        assert leased_queue.latest_job_for(JobKind.TRANSCRIBE, "recording_id", recording.id).state == JobState.WAITING


# ---------------------------------------------------------------------------
# retry
# ---------------------------------------------------------------------------


class TestRetry:
    def _failed_recording(self, service):
        recording = _upload(service)
        with pytest.raises(NotConfiguredError):
            service.process(recording.id)
        return recording

    def test_retry_non_failed_raises_invalid_state(self, make_service) -> None:
        recording = _upload(make_service())
        with pytest.raises(InvalidStateError):
            make_service().retry(recording.id)

    def test_retry_missing_raises_not_found(self, make_service) -> None:
        with pytest.raises(NotFoundError):
            make_service().retry("missing")

    def test_retry_sets_pending_then_queues(self, make_service, record_store, job_queue) -> None:
        service = make_service(speech=None)
        recording = self._failed_recording(service)
        before = len(job_queue.find_jobs(kind=JobKind.TRANSCRIBE))

        result = service.retry(recording.id)

        assert result.transcription_status == TranscriptionStatus.PENDING
        assert record_store.get_recording(recording.id).transcription_status == TranscriptionStatus.PENDING
        assert len(job_queue.find_jobs(kind=JobKind.TRANSCRIBE)) == before + 1

    def test_status_committed_before_enqueue_and_restored_on_failure(self, make_service, record_store) -> None:
        service = make_service(speech=None)
        recording = self._failed_recording(service)
        seen = {}

        def enqueue(kind, payload, **kwargs):
            seen["status"] = record_store.get_recording(recording.id).transcription_status
            raise ExternalServiceError("JobStore", "down")

        broken_queue = MagicMock()
        broken_queue.enqueue.side_effect = enqueue
        retrying = make_service(speech=None, queue=broken_queue)

        with pytest.raises(ExternalServiceError):
            retrying.retry(recording.id)

        assert seen["status"] == TranscriptionStatus.PENDING
        assert record_store.get_recording(recording.id).transcription_status == TranscriptionStatus.FAILED


class TestQueries:
    def test_job_status(self, make_service, job_queue) -> None:
        service = make_service()
        recording = _upload(service)

        status = service.get_job_status(recording.id)

        assert status == {
            "recording_id": recording.id,
            "status": "pending",
            "job_state": "waiting",
            "progress": 0,
            "attempts": 0,
        }

    def test_list_recordings_by_status(self, make_service) -> None:
        service = make_service()
        recording = _upload(service)
        service.process(recording.id)
        _upload(service)

        assert [r.id for r in service.list_recordings(TranscriptionStatus.COMPLETED)] == [recording.id]
        assert len(service.list_recordings()) == 2
