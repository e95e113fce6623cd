"""
Port interfaces for the relational record store.

Implementations: SqlRecordStoreAdapter (adapters/) implements all of them.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from domain.models import (
    AudioRecording,
    Entity,
    Integration,
    Message,
    PlatformMessage,
    Project,
    Requirement,
    Task,
    Transcription,
    TranscriptionStatus,
)


@runtime_checkable
class MessageStorePort(Protocol):
    """Messages keyed by ``(source, source_id)``."""

    def upsert_message(self, message: PlatformMessage, message_type: str = "chat") -> Tuple[Message, bool]:
        """Create the message on first sight, otherwise refresh content/timestamp.

        Returns:
            ``(message, created)`` where ``created`` is False on replay.
        """
        ...

    def get_message(self, message_id: str) -> Optional[Message]:
        ...

    def set_message_project(self, message_id: str, project_id: str) -> None:
        ...

    def list_project_messages(self, project_id: str, limit: Optional[int] = None) -> List[Message]:
        """Messages attached to a project, newest first."""
        ...

    def count_messages(self, source: Optional[str] = None) -> int:
        ...


@runtime_checkable
class RecordingStorePort(Protocol):
    """Audio recordings and their append-only transcriptions."""

    def create_recording(self, recording: AudioRecording) -> AudioRecording:
        ...

    def get_recording(self, recording_id: str) -> Optional[AudioRecording]:
        ...

    def list_recordings(self, status: Optional[TranscriptionStatus] = None) -> List[AudioRecording]:
        ...

    def update_recording_status(
        self,
        recording_id: str,
        status: TranscriptionStatus,
        expected: Optional[TranscriptionStatus] = None,
        duration_seconds: Optional[float] = None,
    ) -> bool:
        """Set the status, optionally only if the current value equals ``expected``.

        ``duration_seconds`` is written alongside the status when given.

        Returns:
            True if a row was updated.
        """
        ...

    def add_transcription(self, transcription: Transcription) -> Transcription:
        ...

    def latest_transcription(self, recording_id: str) -> Optional[Transcription]:
        ...


@runtime_checkable
class ProjectStorePort(Protocol):
    """Projects and the artifacts extracted into them."""

    def find_project_by_name(self, name: str) -> Optional[Project]:
        """Case-insensitive exact name lookup."""
        ...

    def create_project(self, project: Project) -> Project:
        ...

    def get_project(self, project_id: str) -> Optional[Project]:
        ...

    def add_entities(self, entities: List[Entity]) -> None:
        ...

    def add_task(self, task: Task) -> Task:
        ...

    def add_requirement(self, requirement: Requirement) -> Requirement:
        ...

    def list_entities(
        self,
        message_id: Optional[str] = None,
        project_id: Optional[str] = None,
        entity_type: Optional[str] = None,
    ) -> List[Entity]:
        ...

    def list_tasks(
        self,
        project_id: Optional[str] = None,
        source_message_id: Optional[str] = None,
    ) -> List[Task]:
        ...

    def list_requirements(
        self,
        project_id: Optional[str] = None,
        source_message_id: Optional[str] = None,
    ) -> List[Requirement]:
        ...

    def list_projects_with_deadline_before(self, cutoff: date) -> List[Project]:
        ...

    def list_open_tasks_due_between(self, start: date, end: date) -> List[Task]:
        ...

    def project_stats(self, project_id: str) -> Dict[str, Any]:
        """Aggregate counts: messages by source, tasks by status, contributors."""
        ...

    def system_counts(self) -> Dict[str, int]:
        """Row totals for projects, recordings, transcriptions, tasks and requirements."""
        ...


@runtime_checkable
class IntegrationStorePort(Protocol):
    def get_integration(self, integration_id: str) -> Optional[Integration]:
        ...

    def save_integration(self, integration: Integration) -> Integration:
        """Insert or replace an integration by id."""
        ...

    def list_integrations(self, active_only: bool = True) -> List[Integration]:
        ...
