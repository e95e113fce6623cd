"""
Constants management.
Centralized configuration for all magic values, model IDs, and defaults.
"""

from enum import Enum
from typing import Dict, Final


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    BEDROCK = "bedrock"
    OPENAI = "openai"
    NONE = "none"


class SpeechProvider(str, Enum):
    """Supported speech-to-text providers."""
    OPENAI = "openai"
    NONE = "none"


class BlobBackend(str, Enum):
    """Supported audio blob backends."""
    S3 = "s3"
    MEMORY = "memory"


# Model IDs
class ModelIDs:
    """Centralized model identifiers."""
    BEDROCK_CLAUDE_3_HAIKU: Final[str] = "anthropic.claude-3-haiku-20240307-v1:0"
    OPENAI_CHAT_MODEL: Final[str] = "gpt-4o-mini"
    OPENAI_WHISPER: Final[str] = "whisper-1"


# Default values
class Defaults:
    """Pipeline defaults."""
    REQUEST_TIMEOUT: Final[float] = 30.0
    LOG_LEVEL: Final[str] = "INFO"
    AWS_REGION: Final[str] = "eu-west-2"

    # Queue retry policy per job kind
    TRANSCRIBE_ATTEMPTS: Final[int] = 3
    TRANSCRIBE_BACKOFF_MS: Final[int] = 5000
    EXTRACT_ATTEMPTS: Final[int] = 2
    EXTRACT_BACKOFF_MS: Final[int] = 3000

    WORKER_CONCURRENCY: Final[int] = 2
    WORKER_POLL_INTERVAL: Final[float] = 1.0
    JOB_LEASE_SECONDS: Final[int] = 900

    TRANSCRIPTION_LANGUAGE: Final[str] = "en-US"
    DEFAULT_SEGMENT_CONFIDENCE: Final[float] = 0.5

    SLACK_PAGE_LIMIT: Final[int] = 100
    TEAMS_PAGE_SIZE: Final[int] = 50
    TOKEN_REFRESH_WINDOW_SECONDS: Final[int] = 300
    SLACK_SIGNATURE_MAX_AGE_SECONDS: Final[int] = 300

    SUMMARY_MESSAGE_WINDOW: Final[int] = 50
    LLM_TEMPERATURE: Final[float] = 0.3
    DEADLINE_WINDOW_DAYS: Final[int] = 30
    ANALYTICS_RECENT_MESSAGES: Final[int] = 10
    ANALYTICS_TOP_CONTRIBUTORS: Final[int] = 10


class Sentinels:
    """Placeholder values stored when the platform omits data."""
    UNKNOWN_AUTHOR_NAME: Final[str] = "Unknown"
    UNKNOWN_AUTHOR_ID: Final[str] = "unknown"
    UNCATEGORIZED_TASKS: Final[str] = "Uncategorized Tasks"
    UNCATEGORIZED_REQUIREMENTS: Final[str] = "Uncategorized Requirements"
    NEW_PROJECT_STATUS: Final[str] = "in-progress"


# Audio MIME type -> storage file extension
AUDIO_EXTENSIONS: Final[Dict[str, str]] = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/wave": "wav",
    "audio/x-wav": "wav",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "video/mp4": "mp4",
    "audio/ogg": "ogg",
    "audio/webm": "webm",
}
FALLBACK_EXTENSION: Final[str] = "bin"


# Logging scopes
class LogScope:
    """Standardized logging scope names."""
    CONFIG = "config_loader"
    API = "api"
    VALIDATION = "validation"
    ERROR_HANDLER = "error_handler"
    PROVIDER = "provider"
    PARSER = "message_normalizer"
    EXTRACTOR = "llm_extractor"
    SYNC = "sync"
    WEBHOOK = "webhook"
    QUEUE = "job_queue"
    TRANSCRIPTION = "transcription"
    EXTRACTION = "extraction"
    ANALYTICS = "analytics"
    WORKER = "worker"
    ADAPTER = "adapter"
    DATABASE = "database"


# API endpoints and paths
class APIEndpoints:
    """API route definitions."""
    HEALTH = "/health"
    SLACK_WEBHOOK = "/api/webhooks/slack"
    TEAMS_WEBHOOK = "/api/webhooks/teams"
    SYNC = "/api/sync/{integration_id}"
    RECORDINGS = "/api/recordings"
    RECORDING_RETRY = "/api/recordings/{recording_id}/retry"
    RECORDING_STATUS = "/api/recordings/{recording_id}/status"
    MESSAGE_EXTRACT = "/api/messages/{message_id}/extract"
    MESSAGE_EXTRACT_BATCH = "/api/messages/extract"
    MESSAGE_ARTIFACTS = "/api/messages/{message_id}/artifacts"
    PROJECT_ANALYTICS = "/api/projects/{project_id}/analytics"
    PROJECT_SUMMARY = "/api/projects/{project_id}/summary"
    PROJECT_ENTITIES = "/api/projects/{project_id}/entities"
    DEADLINES = "/api/deadlines"
    SENTIMENT = "/api/sentiment"
    RECORDING_IMPORT = "/api/recordings/import"
    ADMIN_SYNC_ALL = "/api/admin/sync"
    ADMIN_STATS = "/api/admin/stats"
    ADMIN_INTEGRATIONS = "/api/admin/integrations"


# Error codes
class ErrorCode(str, Enum):
    """Standardized error codes for consistency."""
    INVALID_CONFIG = "INVALID_CONFIG"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    AUTH_EXPIRED = "AUTH_EXPIRED"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    COLLABORATOR_FAILED = "COLLABORATOR_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    WORKER_ERROR = "WORKER_ERROR"
