"""
OpenAI Whisper speech-to-text provider implementation.
"""

import math
from typing import Any, List, Optional

from openai import OpenAI as OpenAIClient
from openai import OpenAIError

from core_intelligence.providers import SpeechProviderBase
from domain.models import SpeechRecognition, SpeechSegment
from shared_utils.constants import AUDIO_EXTENSIONS, FALLBACK_EXTENSION, Defaults, LogScope, ModelIDs
from shared_utils.error_handler import CollaboratorError

# Whisper's own silence heuristic: a segment is dropped when the model is
# confident there is no speech and the decode itself is low-probability.
NO_SPEECH_THRESHOLD = 0.6
LOGPROB_THRESHOLD = -1.0


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def segment_confidence(avg_logprob: Optional[float]) -> Optional[float]:
    """Map Whisper's mean token log-probability onto a 0-1 confidence."""
    if avg_logprob is None:
        return None
    return max(0.0, min(1.0, math.exp(avg_logprob)))


class OpenAISpeechProvider(SpeechProviderBase):
    """Whisper transcription via the OpenAI audio API."""

    def __init__(
        self,
        api_key: str,
        model_id: str = ModelIDs.OPENAI_WHISPER,
        language: str = Defaults.TRANSCRIPTION_LANGUAGE,
        client: Optional[Any] = None,
    ):
        super().__init__(name=f"OpenAISpeech({model_id})")
        self.api_key = api_key
        self.model_id = model_id
        self.language = language
        self._client = client

    def initialize(self) -> None:
        """Initialize OpenAI audio client."""
        if self._client is None:
            self._client = OpenAIClient(api_key=self.api_key)
        self.logger.info(
            "Initialized OpenAI speech provider",
            extra={"scope": LogScope.PROVIDER, "model_id": self.model_id}
        )

    def is_available(self) -> bool:
        return self._client is not None

    def recognize(self, audio: bytes, content_type: str) -> SpeechRecognition:
        """Transcribe ``audio``; silence yields no segments."""
        if not self.is_available():
            raise RuntimeError("OpenAI speech provider not initialized")

        extension = AUDIO_EXTENSIONS.get(content_type, FALLBACK_EXTENSION)
        try:
            response = self._client.audio.transcriptions.create(
                model=self.model_id,
                file=(f"recording.{extension}", audio, content_type),
                response_format="verbose_json",
                language=self.language.split("-", 1)[0],
            )
        except OpenAIError as e:
            self.logger.error(
                "Speech recognition failed",
                extra={"scope": LogScope.PROVIDER, "error": str(e)}
            )
            raise CollaboratorError("OpenAISpeech", str(e), context={"model_id": self.model_id}) from e

        segments: List[SpeechSegment] = []
        for raw in _field(response, "segments") or []:
            text = (_field(raw, "text") or "").strip()
            if not text:
                continue
            avg_logprob = _field(raw, "avg_logprob")
            no_speech = _field(raw, "no_speech_prob") or 0.0
            if no_speech > NO_SPEECH_THRESHOLD and (avg_logprob is None or avg_logprob < LOGPROB_THRESHOLD):
                continue
            segments.append(
                SpeechSegment(
                    text=text,
                    confidence=segment_confidence(avg_logprob),
                    start_seconds=_field(raw, "start"),
                    end_seconds=_field(raw, "end"),
                )
            )

        return SpeechRecognition(
            segments=segments,
            language=self.language,
            duration_seconds=_field(response, "duration"),
        )
