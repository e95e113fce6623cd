"""
Pure domain models for the Collaboration Intelligence Pipeline.

These models contain NO vendor dependencies (no SQLAlchemy rows, no Slack or
Graph payloads). They are what flows through ports and services.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Source(str, Enum):
    """Collaboration platform a record originated from."""

    SLACK = "slack"
    TEAMS = "teams"


class MessageType(str, Enum):
    CHAT = "chat"
    TRANSCRIPT = "transcript"


class TranscriptionStatus(str, Enum):
    """Audio recording transcription state."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RequirementCategory(str, Enum):
    FUNCTIONAL = "functional"
    NON_FUNCTIONAL = "non-functional"
    CONSTRAINT = "constraint"


class JobKind(str, Enum):
    """Queue names; each kind has its own worker pool."""

    TRANSCRIBE = "transcribe"
    EXTRACT = "extract"


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


# ---------------------------------------------------------------------------
# Platform-facing DTOs
# ---------------------------------------------------------------------------


class Container(BaseModel):
    """A message container on a platform (Slack conversation, Teams channel)."""

    id: str
    name: str = ""
    parent_id: Optional[str] = None


class PlatformMessage(BaseModel):
    """A platform message normalized into source-agnostic shape."""

    source: Source
    source_id: str
    channel_id: str
    channel_name: str = ""
    author_id: str
    author_name: Optional[str] = None
    content: str
    timestamp: datetime
    is_system: bool = False


class MessagePage(BaseModel):
    """One page of raw platform messages plus the cursor for the next page."""

    messages: List[Dict[str, Any]] = []
    next_cursor: Optional[str] = None


class SyncReport(BaseModel):
    """Outcome of one synchronization run."""

    success: bool
    integration_id: str
    source: Optional[Source] = None
    total_messages_stored: int = 0
    messages_created: int = 0
    messages_updated: int = 0
    messages_skipped: int = 0
    containers_synced: int = 0
    containers_failed: int = 0
    error: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Persistent records
# ---------------------------------------------------------------------------


class Message(BaseModel):
    id: str
    source: Source
    source_id: str
    channel_id: str
    channel_name: str = ""
    author_id: str
    author_name: str
    content: str
    message_type: MessageType = MessageType.CHAT
    timestamp: datetime
    project_id: Optional[str] = None
    created_at: Optional[datetime] = None


class AudioRecording(BaseModel):
    id: str
    source: Source
    source_id: str
    meeting_title: str = ""
    file_url: str
    storage_path: str
    duration_seconds: Optional[float] = None
    transcription_status: TranscriptionStatus = TranscriptionStatus.PENDING
    timestamp: datetime


class Transcription(BaseModel):
    """One successful transcription attempt (append-only)."""

    id: str
    audio_recording_id: str
    content: str
    speakers: Optional[List[str]] = None
    language: str
    confidence_score: float
    created_at: Optional[datetime] = None


class Entity(BaseModel):
    id: str
    message_id: str
    entity_type: str
    entity_value: str
    confidence_score: float = 0.0
    metadata: Dict[str, Any] = {}


class Task(BaseModel):
    id: str
    project_id: str
    title: str
    description: Optional[str] = None
    assignee: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    due_date: Optional[date] = None
    source_message_id: Optional[str] = None


class Requirement(BaseModel):
    id: str
    project_id: str
    description: str
    category: RequirementCategory = RequirementCategory.FUNCTIONAL
    priority: Priority = Priority.MEDIUM
    status: str = "proposed"
    source_message_id: Optional[str] = None


class Project(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    status: str = "active"
    deadline: Optional[date] = None


class Integration(BaseModel):
    """Stored platform credentials for one workspace/tenant."""

    id: str
    platform: Source
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None
    is_active: bool = True


# ---------------------------------------------------------------------------
# Job queue
# ---------------------------------------------------------------------------


class BackoffPolicy(BaseModel):
    type: BackoffType = BackoffType.EXPONENTIAL
    delay_ms: int = Field(default=1000, ge=0)


class Job(BaseModel):
    """A durable unit of background work."""

    id: str
    kind: JobKind
    payload: Dict[str, Any]
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    max_attempts: int = Field(default=1, ge=1)
    backoff: BackoffPolicy = BackoffPolicy()
    progress: int = 0
    available_at: datetime
    last_error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    # Set on the copy returned by a claim that took over an expired lease; not stored
    lease_expired: bool = False


# ---------------------------------------------------------------------------
# Collaborator results
# ---------------------------------------------------------------------------


class SpeechSegment(BaseModel):
    """A recognized span of speech. ``confidence`` is absent when the engine omits it."""

    text: str
    confidence: Optional[float] = None
    start_seconds: Optional[float] = None
    end_seconds: Optional[float] = None


class SpeechRecognition(BaseModel):
    segments: List[SpeechSegment] = []
    language: Optional[str] = None
    duration_seconds: Optional[float] = None


class SentimentResult(BaseModel):
    label: str
    score: float = Field(ge=0.0, le=1.0)
