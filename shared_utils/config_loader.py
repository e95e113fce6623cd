from pydantic_settings import BaseSettings
from pydantic import field_validator, ConfigDict
from functools import lru_cache
from typing import Optional
import json

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared_utils.constants import Defaults, Environment, LogScope, ModelIDs
from shared_utils.logging_utils import get_scoped_logger

logger = get_scoped_logger(LogScope.CONFIG)


def get_secret_from_aws(secret_name: str, region: str = Defaults.AWS_REGION, key: str = "openai_api_key") -> str:
    """Fetch a single key from a JSON secret in AWS Secrets Manager.

    Args:
        secret_name: Name of the secret in Secrets Manager
        region: AWS region
        key: JSON key inside the secret

    Returns:
        Secret value or empty string if fetch fails
    """
    try:
        client = boto3.client("secretsmanager", region_name=region)
        response = client.get_secret_value(SecretId=secret_name)
        if "SecretString" in response:
            secret = json.loads(response["SecretString"])
            return secret.get(key, "")
        return ""
    except (BotoCoreError, ClientError, ValueError) as e:
        logger.warning("secret_fetch_failed", secret_name=secret_name, error=str(e))
        return ""


class Settings(BaseSettings):
    """Application configuration with environment variable precedence.

    Precedence: 1) Environment Variables > 2) .env file > 3) Class defaults.
    """
    # Application metadata
    app_name: str = "Collaboration Intelligence Pipeline"
    app_version: str = "1.0.0"
    app_description: str = "Chat sync, audio transcription and LLM extraction pipeline"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    environment: str = "development"
    log_level: str = Defaults.LOG_LEVEL

    # Relational store
    database_uri: str = "sqlite:///./collab_intelligence.db"
    database_echo: bool = False

    # Audio blob store
    blob_backend: str = "s3"
    s3_bucket: str = ""
    s3_prefix: str = ""
    aws_region: str = Defaults.AWS_REGION
    aws_endpoint_url: str = ""

    # LLM
    llm_provider: str = "openai"
    openai_llm_model_id: str = ModelIDs.OPENAI_CHAT_MODEL
    bedrock_region: str = Defaults.AWS_REGION
    bedrock_llm_model_id: str = ModelIDs.BEDROCK_CLAUDE_3_HAIKU
    llm_temperature: float = Defaults.LLM_TEMPERATURE

    # Speech-to-text
    speech_provider: str = "openai"
    speech_model_id: str = ModelIDs.OPENAI_WHISPER
    transcription_language: str = Defaults.TRANSCRIPTION_LANGUAGE

    openai_api_key: Optional[str] = None
    openai_secret_name: Optional[str] = None

    # Platform credentials
    slack_signing_secret: str = ""
    teams_webhook_secret: str = ""
    teams_client_id: str = ""
    teams_client_secret: str = ""
    teams_tenant_id: str = "common"
    platform_request_timeout: float = Defaults.REQUEST_TIMEOUT

    # Workers
    transcribe_concurrency: int = Defaults.WORKER_CONCURRENCY
    extract_concurrency: int = Defaults.WORKER_CONCURRENCY
    worker_poll_interval: float = Defaults.WORKER_POLL_INTERVAL
    job_lease_seconds: int = Defaults.JOB_LEASE_SECONDS

    # Pipeline chaining
    auto_extract_messages: bool = False
    auto_extract_transcripts: bool = True

    model_config = ConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator('llm_provider')
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Validate LLM provider is supported."""
        valid_providers = {"openai", "bedrock", "none"}
        if v.lower() not in valid_providers:
            raise ValueError(f"llm_provider must be one of {valid_providers}, got {v}")
        return v.lower()

    @field_validator('speech_provider')
    @classmethod
    def validate_speech_provider(cls, v: str) -> str:
        """Validate speech provider is supported."""
        valid_providers = {"openai", "none"}
        if v.lower() not in valid_providers:
            raise ValueError(f"speech_provider must be one of {valid_providers}, got {v}")
        return v.lower()

    @field_validator('blob_backend')
    @classmethod
    def validate_blob_backend(cls, v: str) -> str:
        """Validate blob backend is supported."""
        valid_backends = {"s3", "memory"}
        if v.lower() not in valid_backends:
            raise ValueError(f"blob_backend must be one of {valid_backends}, got {v}")
        return v.lower()

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is recognized."""
        valid_envs = {e.value for e in Environment}
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of {valid_envs}, got {v}")
        return v.lower()

    @field_validator('transcribe_concurrency', 'extract_concurrency')
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Worker pools run between 1 and 3 threads per job kind."""
        if not 1 <= v <= 3:
            raise ValueError(f"worker concurrency must be between 1 and 3, got {v}")
        return v

    def needs_openai_key(self) -> bool:
        return self.llm_provider == "openai" or self.speech_provider == "openai"


@lru_cache()
def get_settings() -> Settings:
    """Load and cache application settings.

    If an OpenAI-backed provider is configured and OPENAI_SECRET_NAME is
    provided, fetches the API key from AWS Secrets Manager.

    Returns:
        Validated Settings instance

    Raises:
        ValueError: If settings are invalid
    """
    settings = Settings()

    if settings.needs_openai_key() and not settings.openai_api_key and settings.openai_secret_name:
        secret_key = get_secret_from_aws(settings.openai_secret_name, settings.aws_region)
        if secret_key:
            settings.openai_api_key = secret_key
            logger.debug("fetched_openai_key_from_secrets_manager")

    # Sensitive values are never logged
    logger.info(
        "configuration_loaded",
        environment=settings.environment,
        llm_provider=settings.llm_provider,
        speech_provider=settings.speech_provider,
        blob_backend=settings.blob_backend,
        database_dialect=settings.database_uri.split(":", 1)[0],
    )

    return settings
