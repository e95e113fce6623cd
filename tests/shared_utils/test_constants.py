"""
Tests for shared_utils.constants.

Pins the values other components depend on (queue retry policy, sentinels,
route templates) so accidental edits are caught.
"""

import pytest

from shared_utils.constants import (
    AUDIO_EXTENSIONS,
    APIEndpoints,
    BlobBackend,
    Defaults,
    ErrorCode,
    LLMProvider,
    Sentinels,
    SpeechProvider,
)


class TestProviderEnums:
    def test_llm_values(self) -> None:
        assert {p.value for p in LLMProvider} == {"bedrock", "openai", "none"}

    def test_speech_values(self) -> None:
        assert {p.value for p in SpeechProvider} == {"openai", "none"}

    def test_blob_values(self) -> None:
        assert {b.value for b in BlobBackend} == {"s3", "memory"}


class TestDefaults:
    def test_transcribe_retry_policy(self) -> None:
        assert Defaults.TRANSCRIBE_ATTEMPTS == 3
        assert Defaults.TRANSCRIBE_BACKOFF_MS == 5000

    def test_extract_retry_policy(self) -> None:
        assert Defaults.EXTRACT_ATTEMPTS == 2
        assert Defaults.EXTRACT_BACKOFF_MS == 3000

    def test_default_segment_confidence(self) -> None:
        assert Defaults.DEFAULT_SEGMENT_CONFIDENCE == 0.5


class TestSentinels:
    def test_fallback_project_names(self) -> None:
        assert Sentinels.UNCATEGORIZED_TASKS == "Uncategorized Tasks"
        assert Sentinels.UNCATEGORIZED_REQUIREMENTS == "Uncategorized Requirements"

    def test_unknown_author(self) -> None:
        assert Sentinels.UNKNOWN_AUTHOR_NAME == "Unknown"


class TestAudioExtensions:
    @pytest.mark.parametrize(
        "content_type,extension",
        [("audio/mpeg", "mp3"), ("audio/wav", "wav"), ("audio/x-m4a", "m4a"), ("audio/webm", "webm")],
    )
    def test_known_types(self, content_type: str, extension: str) -> None:
        assert AUDIO_EXTENSIONS[content_type] == extension


class TestAPIEndpoints:
    def test_templates_format(self) -> None:
        assert APIEndpoints.SYNC.format(integration_id="i1") == "/api/sync/i1"
        assert APIEndpoints.RECORDING_RETRY.format(recording_id="r1") == "/api/recordings/r1/retry"

    def test_all_routes_under_api_prefix(self) -> None:
        routes = [v for k, v in vars(APIEndpoints).items() if k.isupper()]
        assert all(r.startswith("/api/") for r in routes if r != APIEndpoints.HEALTH)


class TestErrorCode:
    def test_values_match_names(self) -> None:
        for code in ErrorCode:
            assert code.value == code.name

    def test_pipeline_codes_present(self) -> None:
        for name in ("AUTH_EXPIRED", "SIGNATURE_INVALID", "COLLABORATOR_FAILED", "INVALID_STATE"):
            assert name in ErrorCode.__members__
