"""
Transcription service: audio recordings -> transcripts.

State machine on ``transcription_status``::

    pending ──> processing ──> completed
       │             │
       └──────> failed <┘
                 │
                 └──> pending   (explicit or queue-driven retry)

Upload returns as soon as the bytes are stored and the ``transcribe`` job is
queued. ``process`` is the worker entry point.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from domain.models import (
    AudioRecording,
    JobKind,
    JobState,
    MessageType,
    PlatformMessage,
    Source,
    SpeechSegment,
    Transcription,
    TranscriptionStatus,
)
from ports.blob_store import BlobStorePort
from ports.llm_provider import SpeechToTextPort
from ports.platform_client import PlatformClientPort
from ports.record_store import MessageStorePort, RecordingStorePort
from services.job_queue import JobQueue, utc_now
from shared_utils.constants import (
    AUDIO_EXTENSIONS,
    FALLBACK_EXTENSION,
    Defaults,
    LogScope,
    Sentinels,
)
from shared_utils.error_handler import (
    ExternalServiceError,
    InvalidStateError,
    NotConfiguredError,
    NotFoundError,
)
from shared_utils.logging_utils import get_scoped_logger, log_execution
from shared_utils.validation import InputValidator

logger = get_scoped_logger(LogScope.TRANSCRIPTION)

ProgressCallback = Callable[[int], None]

ALLOWED_TRANSITIONS: Dict[TranscriptionStatus, FrozenSet[TranscriptionStatus]] = {
    TranscriptionStatus.PENDING: frozenset({TranscriptionStatus.PROCESSING, TranscriptionStatus.FAILED}),
    TranscriptionStatus.PROCESSING: frozenset({TranscriptionStatus.COMPLETED, TranscriptionStatus.FAILED}),
    TranscriptionStatus.FAILED: frozenset({TranscriptionStatus.PENDING}),
    TranscriptionStatus.COMPLETED: frozenset(),
}

_EXTENSION_CONTENT_TYPES = {ext: mime for mime, ext in reversed(list(AUDIO_EXTENSIONS.items()))}


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def extension_for(content_type: str) -> str:
    return AUDIO_EXTENSIONS.get(content_type, FALLBACK_EXTENSION)


def content_type_for_key(key: str) -> str:
    ext = key.rsplit(".", 1)[-1].lower() if "." in key else ""
    return _EXTENSION_CONTENT_TYPES.get(ext, "application/octet-stream")


def recording_storage_key(source: Source, recording_id: str, content_type: str, when: datetime) -> str:
    """``recordings/{source}/{yyyy}/{mm}/{dd}/{id}.{ext}``"""
    return (
        f"recordings/{source.value}/{when:%Y}/{when:%m}/{when:%d}/"
        f"{recording_id}.{extension_for(content_type)}"
    )


def accumulate_segments(segments: List[SpeechSegment]) -> Tuple[str, float]:
    """Join recognized text and average the per-segment confidences.

    Missing confidences count as the default; no segments yields ("", default).
    """
    default = Defaults.DEFAULT_SEGMENT_CONFIDENCE
    texts = [s.text.strip() for s in segments if s.text and s.text.strip()]
    if not segments:
        return "", default
    scores = [default if s.confidence is None else s.confidence for s in segments]
    return " ".join(texts).strip(), sum(scores) / len(scores)


def check_transition(current: TranscriptionStatus, target: TranscriptionStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStateError(
            f"Cannot move recording from {current.value} to {target.value}",
            current=current.value,
            requested=target.value,
        )


# ---------------------------------------------------------------------------
# TranscriptionService
# ---------------------------------------------------------------------------


class TranscriptionService:
    """Stores uploads, drives the status machine, and persists transcripts."""

    def __init__(
        self,
        *,
        recording_store: RecordingStorePort,
        blob_store: BlobStorePort,
        job_queue: JobQueue,
        speech_provider: Optional[SpeechToTextPort] = None,
        message_store: Optional[MessageStorePort] = None,
        auto_extract: bool = False,
        language: str = Defaults.TRANSCRIPTION_LANGUAGE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._recordings = recording_store
        self._blobs = blob_store
        self._queue = job_queue
        self._speech = speech_provider
        self._messages = message_store
        self._auto_extract = auto_extract
        self._language = language
        self._clock = clock

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    @log_execution(scope=LogScope.TRANSCRIPTION)
    def upload_and_process(
        self,
        source: str,
        source_id: str,
        title: str,
        content: bytes,
        content_type: str,
    ) -> AudioRecording:
        """Store audio, create a ``pending`` recording and queue transcription.

        Raises:
            ValidationError: Bad source, content type, or empty content.
            ExternalServiceError: Blob or record store unavailable.
        """
        platform = Source(InputValidator.validate_choice(source, "source", [s.value for s in Source]))
        source_id = InputValidator.validate_non_empty_string(source_id, "source_id")
        content_type = InputValidator.validate_audio_content_type(content_type)
        InputValidator.validate_non_empty_bytes(content, "content")

        recording_id = str(uuid.uuid4())
        now = self._clock()
        key = recording_storage_key(platform, recording_id, content_type, now)
        file_url = self._blobs.put(key, content, content_type)

        recording = self._recordings.create_recording(
            AudioRecording(
                id=recording_id,
                source=platform,
                source_id=source_id,
                meeting_title=title or "",
                file_url=file_url,
                storage_path=key,
                transcription_status=TranscriptionStatus.PENDING,
                timestamp=now,
            )
        )
        job = self._queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": recording_id})
        logger.info(
            "recording_uploaded",
            recording_id=recording_id,
            source=platform.value,
            size_bytes=len(content),
            storage_path=key,
            job_id=job.id,
        )
        return recording

    def import_recording(
        self,
        client: PlatformClientPort,
        source: str,
        source_id: str,
        title: str,
        file_url: str,
        content_type: str,
    ) -> AudioRecording:
        """Download a platform-hosted recording, then upload it like any other."""
        content = client.download_file(file_url)
        return self.upload_and_process(source, source_id, title, content, content_type)

    # ------------------------------------------------------------------
    # Worker entry
    # ------------------------------------------------------------------

    @log_execution(scope=LogScope.TRANSCRIPTION)
    def process(
        self,
        recording_id: str,
        progress: Optional[ProgressCallback] = None,
        reclaim: bool = False,
    ) -> Optional[Transcription]:
        """Transcribe one recording.

        With ``reclaim`` set, a recording left ``processing`` by a worker whose
        job lease expired is taken over instead of rejected.

        Returns:
            The new Transcription, or None if the recording was already completed.

        Raises:
            NotFoundError: Recording does not exist.
            InvalidStateError: Recording is mid-flight in another worker.
            NotConfiguredError: No speech provider configured.
            CollaboratorError: Speech recognition failed.
        """
        recording = self._get_recording(recording_id)
        status = recording.transcription_status

        if status == TranscriptionStatus.COMPLETED:
            logger.info("transcription_already_completed", recording_id=recording_id)
            return None
        if status == TranscriptionStatus.FAILED:
            self._transition(recording_id, status, TranscriptionStatus.PENDING)
            status = TranscriptionStatus.PENDING

        if status == TranscriptionStatus.PROCESSING and reclaim:
            logger.warning("transcription_reclaimed", recording_id=recording_id)
        else:
            self._transition(recording_id, status, TranscriptionStatus.PROCESSING)
        report = progress or (lambda pct: None)

        try:
            if self._speech is None:
                raise NotConfiguredError("Speech-to-text", context={"recording_id": recording_id})

            audio = self._blobs.get(recording.storage_path)
            report(25)
            recognition = self._speech.recognize(audio, content_type_for_key(recording.storage_path))
            report(75)

            text, confidence = accumulate_segments(recognition.segments)
            transcription = self._recordings.add_transcription(
                Transcription(
                    id=str(uuid.uuid4()),
                    audio_recording_id=recording_id,
                    content=text,
                    language=recognition.language or self._language,
                    confidence_score=confidence,
                    created_at=self._clock(),
                )
            )
            self._transition(
                recording_id,
                TranscriptionStatus.PROCESSING,
                TranscriptionStatus.COMPLETED,
                duration_seconds=recognition.duration_seconds,
            )
        except Exception as exc:
            self._mark_failed(recording_id, exc)
            raise

        report(90)
        logger.info(
            "transcription_completed",
            recording_id=recording_id,
            transcription_id=transcription.id,
            characters=len(transcription.content),
            segments=len(recognition.segments),
            confidence=round(confidence, 3),
            duration_seconds=recognition.duration_seconds,
        )
        if transcription.content:
            self._publish_transcript(recording, transcription)
        return transcription

    def retry(self, recording_id: str) -> AudioRecording:
        """Move a ``failed`` recording back to ``pending`` and queue it again.

        A ``processing`` recording with no waiting or active transcribe job has
        lost its worker; it is failed first and then retried the same way.

        The status change is committed before the job is queued; if queueing
        fails the recording goes back to ``failed``.

        Raises:
            NotFoundError: Recording does not exist.
            InvalidStateError: Recording is not ``failed`` or abandoned.
        """
        recording = self._get_recording(recording_id)
        status = recording.transcription_status
        if status == TranscriptionStatus.PROCESSING and not self._has_live_job(recording_id):
            logger.warning("transcription_abandoned", recording_id=recording_id)
            self._transition(recording_id, status, TranscriptionStatus.FAILED)
            status = TranscriptionStatus.FAILED
        if status != TranscriptionStatus.FAILED:
            raise InvalidStateError(
                "Only failed recordings can be retried",
                current=status.value,
                requested=TranscriptionStatus.PENDING.value,
                context={"recording_id": recording_id},
            )

        self._transition(recording_id, TranscriptionStatus.FAILED, TranscriptionStatus.PENDING)
        try:
            job = self._queue.enqueue(JobKind.TRANSCRIBE, {"recording_id": recording_id})
        except Exception:
            self._recordings.update_recording_status(
                recording_id, TranscriptionStatus.FAILED, expected=TranscriptionStatus.PENDING
            )
            logger.error("transcription_retry_enqueue_failed", recording_id=recording_id)
            raise

        logger.info("transcription_retry_queued", recording_id=recording_id, job_id=job.id)
        return recording.model_copy(update={"transcription_status": TranscriptionStatus.PENDING})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_recording(self, recording_id: str) -> AudioRecording:
        return self._get_recording(recording_id)

    def get_transcription(self, recording_id: str) -> Optional[Transcription]:
        self._get_recording(recording_id)
        return self._recordings.latest_transcription(recording_id)

    def list_recordings(self, status: Optional[TranscriptionStatus] = None) -> List[AudioRecording]:
        return self._recordings.list_recordings(status)

    def get_job_status(self, recording_id: str) -> Dict[str, object]:
        recording = self._get_recording(recording_id)
        job = self._queue.latest_job_for(JobKind.TRANSCRIBE, "recording_id", recording_id)
        return {
            "recording_id": recording_id,
            "status": recording.transcription_status.value,
            "job_state": job.state.value if job else None,
            "progress": job.progress if job else 0,
            "attempts": job.attempts_made if job else 0,
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _get_recording(self, recording_id: str) -> AudioRecording:
        recording = self._recordings.get_recording(recording_id)
        if recording is None:
            raise NotFoundError("Recording", recording_id)
        return recording

    def _transition(
        self,
        recording_id: str,
        current: TranscriptionStatus,
        target: TranscriptionStatus,
        duration_seconds: Optional[float] = None,
    ) -> None:
        check_transition(current, target)
        if not self._recordings.update_recording_status(
            recording_id, target, expected=current, duration_seconds=duration_seconds
        ):
            # Someone else moved it between our read and write
            raise InvalidStateError(
                "Recording status changed concurrently",
                current=current.value,
                requested=target.value,
                context={"recording_id": recording_id},
            )

    def _has_live_job(self, recording_id: str) -> bool:
        jobs = self._queue.find_jobs(
            kind=JobKind.TRANSCRIBE, payload_key="recording_id", payload_value=recording_id
        )
        return any(job.state in (JobState.WAITING, JobState.ACTIVE) for job in jobs)

    def _mark_failed(self, recording_id: str, exc: Exception) -> None:
        logger.error(
            "transcription_failed",
            recording_id=recording_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        try:
            self._recordings.update_recording_status(
                recording_id, TranscriptionStatus.FAILED, expected=TranscriptionStatus.PROCESSING
            )
        except ExternalServiceError as store_exc:
            logger.error("transcription_status_write_failed", recording_id=recording_id, error=store_exc.message)

    def _publish_transcript(self, recording: AudioRecording, transcription: Transcription) -> None:
        if not (self._auto_extract and self._messages is not None):
            return
        try:
            message, created = self._messages.upsert_message(
                PlatformMessage(
                    source=recording.source,
                    source_id=f"recording:{recording.id}",
                    channel_id=recording.source_id,
                    channel_name=recording.meeting_title,
                    author_id=Sentinels.UNKNOWN_AUTHOR_ID,
                    content=transcription.content,
                    timestamp=recording.timestamp,
                ),
                message_type=MessageType.TRANSCRIPT.value,
            )
            self._queue.enqueue(JobKind.EXTRACT, {"message_id": message.id})
        except ExternalServiceError as exc:
            logger.error("transcript_publish_failed", recording_id=recording.id, error=exc.message)
            return
        logger.info(
            "transcript_published",
            recording_id=recording.id,
            message_id=message.id,
            created=created,
        )
