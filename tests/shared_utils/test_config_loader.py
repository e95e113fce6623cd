"""
Tests for shared_utils.config_loader.

Covers the field validators, get_settings() caching and secret lookup, and
get_secret_from_aws().
"""

import os
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from conftest import BASE_SETTINGS_KWARGS
from shared_utils.config_loader import Settings, get_secret_from_aws, get_settings


def _settings(**overrides) -> Settings:
    return Settings(**{**BASE_SETTINGS_KWARGS, **overrides})


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


class TestProviderValidators:
    @pytest.mark.parametrize("value", ["openai", "bedrock", "none", "OpenAI"])
    def test_llm_provider_valid(self, value: str) -> None:
        assert _settings(llm_provider=value).llm_provider == value.lower()

    def test_llm_provider_invalid(self) -> None:
        with pytest.raises(ValueError, match="llm_provider"):
            _settings(llm_provider="google")

    def test_speech_provider_case_insensitive(self) -> None:
        assert _settings(speech_provider="OPENAI").speech_provider == "openai"

    def test_speech_provider_invalid(self) -> None:
        with pytest.raises(ValueError, match="speech_provider"):
            _settings(speech_provider="bedrock")

    def test_blob_backend_invalid(self) -> None:
        with pytest.raises(ValueError, match="blob_backend"):
            _settings(blob_backend="gcs")


class TestEnvironmentAndWorkers:
    @pytest.mark.parametrize("value", ["development", "staging", "PRODUCTION"])
    def test_valid_environments(self, value: str) -> None:
        assert _settings(environment=value).environment == value.lower()

    def test_invalid_environment(self) -> None:
        with pytest.raises(ValueError, match="environment"):
            _settings(environment="alpha")

    @pytest.mark.parametrize("value", [1, 3])
    def test_concurrency_bounds(self, value: int) -> None:
        assert _settings(transcribe_concurrency=value).transcribe_concurrency == value

    @pytest.mark.parametrize("value", [0, 4])
    def test_concurrency_out_of_range(self, value: int) -> None:
        with pytest.raises(ValueError, match="concurrency"):
            _settings(extract_concurrency=value)

    def test_pipeline_chaining_defaults(self) -> None:
        s = _settings()
        assert s.auto_extract_messages is False
        assert s.auto_extract_transcripts is True


class TestNeedsOpenAIKey:
    def test_none_providers(self) -> None:
        assert _settings().needs_openai_key() is False

    def test_speech_only(self) -> None:
        assert _settings(speech_provider="openai").needs_openai_key() is True


# ---------------------------------------------------------------------------
# get_secret_from_aws
# ---------------------------------------------------------------------------


class TestGetSecretFromAWS:
    @patch("shared_utils.config_loader.boto3.client")
    def test_success(self, mock_client_ctor) -> None:
        mock_client_ctor.return_value.get_secret_value.return_value = {
            "SecretString": '{"openai_api_key": "sk-test123"}'
        }

        assert get_secret_from_aws("my-secret", "eu-west-2") == "sk-test123"
        mock_client_ctor.assert_called_once_with("secretsmanager", region_name="eu-west-2")

    @patch("shared_utils.config_loader.boto3.client")
    def test_binary_secret_returns_empty(self, mock_client_ctor) -> None:
        mock_client_ctor.return_value.get_secret_value.return_value = {"SecretBinary": b"binary"}
        assert get_secret_from_aws("my-secret") == ""

    @patch("shared_utils.config_loader.boto3.client")
    def test_client_error_returns_empty(self, mock_client_ctor) -> None:
        mock_client_ctor.return_value.get_secret_value.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "GetSecretValue"
        )
        assert get_secret_from_aws("my-secret") == ""

    @patch("shared_utils.config_loader.boto3.client")
    def test_malformed_json_returns_empty(self, mock_client_ctor) -> None:
        mock_client_ctor.return_value.get_secret_value.return_value = {"SecretString": "not json"}
        assert get_secret_from_aws("my-secret") == ""


# ---------------------------------------------------------------------------
# get_settings
# ---------------------------------------------------------------------------


class TestGetSettings:
    ENV = {
        "LLM_PROVIDER": "openai",
        "SPEECH_PROVIDER": "none",
        "BLOB_BACKEND": "memory",
        "DATABASE_URI": "sqlite:///:memory:",
        "ENVIRONMENT": "staging",
        "OPENAI_API_KEY": "",
        "OPENAI_SECRET_NAME": "prod/openai",
    }

    def setup_method(self) -> None:
        get_settings.cache_clear()

    def teardown_method(self) -> None:
        get_settings.cache_clear()

    def test_cached(self) -> None:
        with patch.dict(os.environ, {**self.ENV, "OPENAI_SECRET_NAME": ""}):
            assert get_settings() is get_settings()

    @patch("shared_utils.config_loader.get_secret_from_aws", return_value="sk-from-secrets")
    def test_fetches_missing_openai_key(self, mock_secret) -> None:
        with patch.dict(os.environ, self.ENV):
            settings = get_settings()

        assert settings.openai_api_key == "sk-from-secrets"
        assert settings.environment == "staging"
        mock_secret.assert_called_once_with("prod/openai", settings.aws_region)

    @patch("shared_utils.config_loader.get_secret_from_aws")
    def test_explicit_key_skips_secret_lookup(self, mock_secret) -> None:
        with patch.dict(os.environ, {**self.ENV, "OPENAI_API_KEY": "sk-env"}):
            assert get_settings().openai_api_key == "sk-env"
        mock_secret.assert_not_called()
