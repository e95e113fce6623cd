"""
Relational schema for the pipeline.

Row classes stay inside the store adapters; services only ever see the
pydantic models in ``domain.models``.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class ProjectRow(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(50), nullable=False, default="active")
    deadline = Column(Date)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    tasks = relationship("TaskRow", back_populates="project", cascade="all, delete-orphan")
    requirements = relationship("RequirementRow", back_populates="project", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_projects_name", "name"),)


class MessageRow(Base):
    """Chat or transcript message. ``(source, source_id)`` is the dedup key."""

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True)
    source = Column(String(20), nullable=False)
    source_id = Column(String(255), nullable=False)
    channel_id = Column(String(255), nullable=False)
    channel_name = Column(String(255), nullable=False, default="")
    author_id = Column(String(255), nullable=False)
    author_name = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String(20), nullable=False, default="chat")
    timestamp = Column(DateTime(timezone=True), nullable=False)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    entities = relationship("EntityRow", back_populates="message", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("source", "source_id", name="uq_messages_source_source_id"),
        Index("idx_messages_project_id", "project_id"),
        Index("idx_messages_timestamp", "timestamp"),
    )


class AudioRecordingRow(Base):
    __tablename__ = "audio_recordings"

    id = Column(String(36), primary_key=True)
    source = Column(String(20), nullable=False)
    source_id = Column(String(255), nullable=False)
    meeting_title = Column(String(500), nullable=False, default="")
    file_url = Column(Text, nullable=False)
    storage_path = Column(Text, nullable=False)
    duration_seconds = Column(Float)
    transcription_status = Column(String(20), nullable=False, default="pending")
    timestamp = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    transcriptions = relationship(
        "TranscriptionRow", back_populates="recording", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (Index("idx_audio_recordings_status", "transcription_status"),)


class TranscriptionRow(Base):
    __tablename__ = "transcriptions"

    id = Column(String(36), primary_key=True)
    audio_recording_id = Column(
        String(36), ForeignKey("audio_recordings.id", ondelete="CASCADE"), nullable=False
    )
    content = Column(Text, nullable=False, default="")
    speakers = Column(JSON)
    language = Column(String(20), nullable=False)
    confidence_score = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    recording = relationship("AudioRecordingRow", back_populates="transcriptions")


class EntityRow(Base):
    __tablename__ = "entities"

    id = Column(String(36), primary_key=True)
    message_id = Column(String(36), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_value = Column(Text, nullable=False)
    confidence_score = Column(Float, nullable=False, default=0.0)
    entity_metadata = Column("metadata", JSON)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    message = relationship("MessageRow", back_populates="entities")

    __table_args__ = (Index("idx_entities_message_id", "message_id"),)


class TaskRow(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    assignee = Column(String(255))
    status = Column(String(50), nullable=False, default="todo")
    priority = Column(String(20), nullable=False, default="medium")
    due_date = Column(Date)
    # Weak reference: deleting a message leaves the task in place
    source_message_id = Column(String(36))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    project = relationship("ProjectRow", back_populates="tasks")

    __table_args__ = (
        Index("idx_tasks_project_id", "project_id"),
        Index("idx_tasks_due_date", "due_date"),
    )


class RequirementRow(Base):
    __tablename__ = "requirements"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), nullable=False, default="functional")
    priority = Column(String(20), nullable=False, default="medium")
    status = Column(String(50), nullable=False, default="proposed")
    source_message_id = Column(String(36))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    project = relationship("ProjectRow", back_populates="requirements")

    __table_args__ = (Index("idx_requirements_project_id", "project_id"),)


class IntegrationRow(Base):
    __tablename__ = "integrations"

    id = Column(String(36), primary_key=True)
    platform = Column(String(20), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    expires_at = Column(DateTime(timezone=True))
    workspace_id = Column(String(255))
    workspace_name = Column(String(255))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class JobRow(Base):
    """
    Durable queue entry.

    Lifecycle: waiting -> active -> completed, or active -> waiting again
    (retry with backoff) until attempts are exhausted, then failed.
    """

    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True)
    kind = Column(String(20), nullable=False)
    payload = Column(JSON, nullable=False)
    state = Column(String(20), nullable=False, default="waiting")
    attempts_made = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=1)
    backoff_type = Column(String(20), nullable=False, default="exponential")
    backoff_delay_ms = Column(Integer, nullable=False, default=1000)
    progress = Column(Integer, nullable=False, default=0)
    available_at = Column(DateTime(timezone=True), nullable=False)
    last_error = Column(Text)
    result = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))

    __table_args__ = (Index("idx_jobs_claim", "kind", "state", "available_at"),)


REQUIRED_TABLES = {
    "projects": {"id", "name", "status", "deadline"},
    "messages": {"id", "source", "source_id", "content", "timestamp", "project_id"},
    "audio_recordings": {"id", "storage_path", "transcription_status"},
    "transcriptions": {"id", "audio_recording_id", "content", "confidence_score"},
    "entities": {"id", "message_id", "entity_type", "entity_value"},
    "tasks": {"id", "project_id", "title", "source_message_id"},
    "requirements": {"id", "project_id", "description", "source_message_id"},
    "integrations": {"id", "platform", "access_token", "expires_at", "is_active"},
    "jobs": {"id", "kind", "state", "attempts_made", "available_at"},
}
