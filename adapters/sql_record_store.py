"""
SQLAlchemy-backed record store adapter.

Implements MessageStorePort, RecordingStorePort, ProjectStorePort and
IntegrationStorePort on top of one relational database (PostgreSQL in
production, SQLite for local dev and tests).
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core_intelligence.database.manager import DatabaseManager
from core_intelligence.database.tables import (
    AudioRecordingRow,
    EntityRow,
    IntegrationRow,
    MessageRow,
    ProjectRow,
    RequirementRow,
    TaskRow,
    TranscriptionRow,
)
from domain.models import (
    AudioRecording,
    Entity,
    Integration,
    Message,
    PlatformMessage,
    Project,
    Requirement,
    Task,
    TaskStatus,
    Transcription,
    TranscriptionStatus,
)
from shared_utils.constants import LogScope
from shared_utils.error_handler import ExternalServiceError
from shared_utils.logging_utils import get_scoped_logger

logger = get_scoped_logger(LogScope.ADAPTER)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Row -> domain converters
# ---------------------------------------------------------------------------


def _to_message(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        source=row.source,
        source_id=row.source_id,
        channel_id=row.channel_id,
        channel_name=row.channel_name or "",
        author_id=row.author_id,
        author_name=row.author_name,
        content=row.content,
        message_type=row.message_type,
        timestamp=_aware(row.timestamp),
        project_id=row.project_id,
        created_at=_aware(row.created_at),
    )


def _to_recording(row: AudioRecordingRow) -> AudioRecording:
    return AudioRecording(
        id=row.id,
        source=row.source,
        source_id=row.source_id,
        meeting_title=row.meeting_title or "",
        file_url=row.file_url,
        storage_path=row.storage_path,
        duration_seconds=row.duration_seconds,
        transcription_status=row.transcription_status,
        timestamp=_aware(row.timestamp),
    )


def _to_transcription(row: TranscriptionRow) -> Transcription:
    return Transcription(
        id=row.id,
        audio_recording_id=row.audio_recording_id,
        content=row.content,
        speakers=row.speakers,
        language=row.language,
        confidence_score=row.confidence_score,
        created_at=_aware(row.created_at),
    )


def _to_project(row: ProjectRow) -> Project:
    return Project(
        id=row.id,
        name=row.name,
        description=row.description,
        status=row.status,
        deadline=row.deadline,
    )


def _to_entity(row: EntityRow) -> Entity:
    return Entity(
        id=row.id,
        message_id=row.message_id,
        entity_type=row.entity_type,
        entity_value=row.entity_value,
        confidence_score=row.confidence_score,
        metadata=row.entity_metadata or {},
    )


def _to_task(row: TaskRow) -> Task:
    return Task(
        id=row.id,
        project_id=row.project_id,
        title=row.title,
        description=row.description,
        assignee=row.assignee,
        status=row.status,
        priority=row.priority,
        due_date=row.due_date,
        source_message_id=row.source_message_id,
    )


def _to_requirement(row: RequirementRow) -> Requirement:
    return Requirement(
        id=row.id,
        project_id=row.project_id,
        description=row.description,
        category=row.category,
        priority=row.priority,
        status=row.status,
        source_message_id=row.source_message_id,
    )


def _to_integration(row: IntegrationRow) -> Integration:
    return Integration(
        id=row.id,
        platform=row.platform,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=_aware(row.expires_at),
        workspace_id=row.workspace_id,
        workspace_name=row.workspace_name,
        is_active=row.is_active,
    )


class SqlRecordStoreAdapter:
    """SQLAlchemy implementation of the record store ports.

    Each public method runs in its own transaction. Database errors other
    than the dedup-key race are wrapped in ``ExternalServiceError``.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # MessageStorePort
    # ------------------------------------------------------------------

    def upsert_message(
        self, message: PlatformMessage, message_type: str = "chat"
    ) -> Tuple[Message, bool]:
        """Insert or refresh a message keyed on ``(source, source_id)``."""
        try:
            return self._upsert_message_once(message, message_type)
        except IntegrityError:
            # A concurrent writer inserted the same key first; replay as update.
            logger.info(
                "message_upsert_race",
                source=message.source.value,
                source_id=message.source_id,
            )
            try:
                return self._upsert_message_once(message, message_type)
            except SQLAlchemyError as exc:
                raise ExternalServiceError("Database", f"Failed to upsert message: {exc}") from exc
        except SQLAlchemyError as exc:
            logger.error(
                "message_upsert_failed",
                source=message.source.value,
                source_id=message.source_id,
                error=str(exc),
            )
            raise ExternalServiceError("Database", f"Failed to upsert message: {exc}") from exc

    def _upsert_message_once(
        self, message: PlatformMessage, message_type: str
    ) -> Tuple[Message, bool]:
        with self._db.session_scope() as session:
            row = session.execute(
                select(MessageRow).where(
                    MessageRow.source == message.source.value,
                    MessageRow.source_id == message.source_id,
                )
            ).scalar_one_or_none()
            created = row is None
            if created:
                row = MessageRow(
                    id=str(uuid.uuid4()),
                    source=message.source.value,
                    source_id=message.source_id,
                    channel_id=message.channel_id,
                    channel_name=message.channel_name,
                    author_id=message.author_id,
                    author_name=message.author_name or "Unknown",
                    content=message.content,
                    message_type=message_type,
                    timestamp=message.timestamp,
                    created_at=datetime.now(timezone.utc),
                )
                session.add(row)
            else:
                row.content = message.content
                row.timestamp = message.timestamp
            session.flush()
            result = _to_message(row)
        return result, created

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._db.session_scope() as session:
            row = session.get(MessageRow, message_id)
            return _to_message(row) if row else None

    def set_message_project(self, message_id: str, project_id: str) -> None:
        with self._db.session_scope() as session:
            session.execute(
                update(MessageRow).where(MessageRow.id == message_id).values(project_id=project_id)
            )

    def list_project_messages(self, project_id: str, limit: Optional[int] = None) -> List[Message]:
        with self._db.session_scope() as session:
            stmt = (
                select(MessageRow)
                .where(MessageRow.project_id == project_id)
                .order_by(MessageRow.timestamp.desc())
            )
            if limit:
                stmt = stmt.limit(limit)
            return [_to_message(r) for r in session.execute(stmt).scalars()]

    def count_messages(self, source: Optional[str] = None) -> int:
        with self._db.session_scope() as session:
            stmt = select(func.count(MessageRow.id))
            if source:
                stmt = stmt.where(MessageRow.source == source)
            return int(session.execute(stmt).scalar_one())

    # ------------------------------------------------------------------
    # RecordingStorePort
    # ------------------------------------------------------------------

    def create_recording(self, recording: AudioRecording) -> AudioRecording:
        try:
            with self._db.session_scope() as session:
                session.add(
                    AudioRecordingRow(
                        id=recording.id,
                        source=recording.source.value,
                        source_id=recording.source_id,
                        meeting_title=recording.meeting_title,
                        file_url=recording.file_url,
                        storage_path=recording.storage_path,
                        duration_seconds=recording.duration_seconds,
                        transcription_status=recording.transcription_status.value,
                        timestamp=recording.timestamp,
                    )
                )
        except SQLAlchemyError as exc:
            logger.error("recording_create_failed", recording_id=recording.id, error=str(exc))
            raise ExternalServiceError("Database", f"Failed to create recording: {exc}") from exc
        return recording

    def get_recording(self, recording_id: str) -> Optional[AudioRecording]:
        with self._db.session_scope() as session:
            row = session.get(AudioRecordingRow, recording_id)
            return _to_recording(row) if row else None

    def list_recordings(self, status: Optional[TranscriptionStatus] = None) -> List[AudioRecording]:
        with self._db.session_scope() as session:
            stmt = select(AudioRecordingRow).order_by(AudioRecordingRow.timestamp.desc())
            if status is not None:
                stmt = stmt.where(AudioRecordingRow.transcription_status == status.value)
            return [_to_recording(r) for r in session.execute(stmt).scalars()]

    def update_recording_status(
        self,
        recording_id: str,
        status: TranscriptionStatus,
        expected: Optional[TranscriptionStatus] = None,
        duration_seconds: Optional[float] = None,
    ) -> bool:
        stmt = update(AudioRecordingRow).where(AudioRecordingRow.id == recording_id)
        if expected is not None:
            stmt = stmt.where(AudioRecordingRow.transcription_status == expected.value)
        values = {"transcription_status": status.value}
        if duration_seconds is not None:
            values["duration_seconds"] = duration_seconds
        try:
            with self._db.session_scope() as session:
                result = session.execute(stmt.values(**values))
                updated = result.rowcount > 0
        except SQLAlchemyError as exc:
            raise ExternalServiceError("Database", f"Failed to update recording status: {exc}") from exc
        logger.info(
            "recording_status_updated",
            recording_id=recording_id,
            status=status.value,
            expected=expected.value if expected else None,
            updated=updated,
        )
        return updated

    def add_transcription(self, transcription: Transcription) -> Transcription:
        created_at = transcription.created_at or datetime.now(timezone.utc)
        with self._db.session_scope() as session:
            session.add(
                TranscriptionRow(
                    id=transcription.id,
                    audio_recording_id=transcription.audio_recording_id,
                    content=transcription.content,
                    speakers=transcription.speakers,
                    language=transcription.language,
                    confidence_score=transcription.confidence_score,
                    created_at=created_at,
                )
            )
        return transcription.model_copy(update={"created_at": created_at})

    def latest_transcription(self, recording_id: str) -> Optional[Transcription]:
        with self._db.session_scope() as session:
            row = session.execute(
                select(TranscriptionRow)
                .where(TranscriptionRow.audio_recording_id == recording_id)
                .order_by(TranscriptionRow.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _to_transcription(row) if row else None

    # ------------------------------------------------------------------
    # ProjectStorePort
    # ------------------------------------------------------------------

    def find_project_by_name(self, name: str) -> Optional[Project]:
        with self._db.session_scope() as session:
            row = session.execute(
                select(ProjectRow)
                .where(func.lower(ProjectRow.name) == name.strip().lower())
                .order_by(ProjectRow.created_at)
                .limit(1)
            ).scalar_one_or_none()
            return _to_project(row) if row else None

    def create_project(self, project: Project) -> Project:
        with self._db.session_scope() as session:
            session.add(
                ProjectRow(
                    id=project.id,
                    name=project.name,
                    description=project.description,
                    status=project.status,
                    deadline=project.deadline,
                )
            )
        logger.info("project_created", project_id=project.id, name=project.name)
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._db.session_scope() as session:
            row = session.get(ProjectRow, project_id)
            return _to_project(row) if row else None

    def add_entities(self, entities: List[Entity]) -> None:
        if not entities:
            return
        with self._db.session_scope() as session:
            session.add_all(
                EntityRow(
                    id=e.id,
                    message_id=e.message_id,
                    entity_type=e.entity_type,
                    entity_value=e.entity_value,
                    confidence_score=e.confidence_score,
                    entity_metadata=e.metadata,
                )
                for e in entities
            )

    def add_task(self, task: Task) -> Task:
        with self._db.session_scope() as session:
            session.add(
                TaskRow(
                    id=task.id,
                    project_id=task.project_id,
                    title=task.title,
                    description=task.description,
                    assignee=task.assignee,
                    status=task.status.value,
                    priority=task.priority.value,
                    due_date=task.due_date,
                    source_message_id=task.source_message_id,
                )
            )
        return task

    def add_requirement(self, requirement: Requirement) -> Requirement:
        with self._db.session_scope() as session:
            session.add(
                RequirementRow(
                    id=requirement.id,
                    project_id=requirement.project_id,
                    description=requirement.description,
                    category=requirement.category.value,
                    priority=requirement.priority.value,
                    status=requirement.status,
                    source_message_id=requirement.source_message_id,
                )
            )
        return requirement

    def list_entities(
        self,
        message_id: Optional[str] = None,
        project_id: Optional[str] = None,
        entity_type: Optional[str] = None,
    ) -> List[Entity]:
        with self._db.session_scope() as session:
            stmt = select(EntityRow).order_by(EntityRow.confidence_score.desc())
            if message_id:
                stmt = stmt.where(EntityRow.message_id == message_id)
            if project_id:
                stmt = stmt.join(MessageRow, MessageRow.id == EntityRow.message_id).where(
                    MessageRow.project_id == project_id
                )
            if entity_type:
                stmt = stmt.where(EntityRow.entity_type == entity_type)
            return [_to_entity(r) for r in session.execute(stmt).scalars()]

    def list_tasks(
        self,
        project_id: Optional[str] = None,
        source_message_id: Optional[str] = None,
    ) -> List[Task]:
        with self._db.session_scope() as session:
            stmt = select(TaskRow).order_by(TaskRow.created_at.desc())
            if project_id:
                stmt = stmt.where(TaskRow.project_id == project_id)
            if source_message_id:
                stmt = stmt.where(TaskRow.source_message_id == source_message_id)
            return [_to_task(r) for r in session.execute(stmt).scalars()]

    def list_requirements(
        self,
        project_id: Optional[str] = None,
        source_message_id: Optional[str] = None,
    ) -> List[Requirement]:
        with self._db.session_scope() as session:
            stmt = select(RequirementRow).order_by(RequirementRow.created_at.desc())
            if project_id:
                stmt = stmt.where(RequirementRow.project_id == project_id)
            if source_message_id:
                stmt = stmt.where(RequirementRow.source_message_id == source_message_id)
            return [_to_requirement(r) for r in session.execute(stmt).scalars()]

    def list_projects_with_deadline_before(self, cutoff: date) -> List[Project]:
        with self._db.session_scope() as session:
            stmt = (
                select(ProjectRow)
                .where(ProjectRow.deadline.is_not(None), ProjectRow.deadline <= cutoff)
                .order_by(ProjectRow.deadline)
            )
            return [_to_project(r) for r in session.execute(stmt).scalars()]

    def list_open_tasks_due_between(self, start: date, end: date) -> List[Task]:
        with self._db.session_scope() as session:
            stmt = (
                select(TaskRow)
                .where(
                    TaskRow.due_date.is_not(None),
                    TaskRow.due_date >= start,
                    TaskRow.due_date <= end,
                    TaskRow.status != TaskStatus.COMPLETED.value,
                )
                .order_by(TaskRow.due_date)
            )
            return [_to_task(r) for r in session.execute(stmt).scalars()]

    def project_stats(self, project_id: str) -> Dict[str, Any]:
        with self._db.session_scope() as session:
            messages_by_source = dict(
                session.execute(
                    select(MessageRow.source, func.count(MessageRow.id))
                    .where(MessageRow.project_id == project_id)
                    .group_by(MessageRow.source)
                ).all()
            )
            tasks_by_status = dict(
                session.execute(
                    select(TaskRow.status, func.count(TaskRow.id))
                    .where(TaskRow.project_id == project_id)
                    .group_by(TaskRow.status)
                ).all()
            )
            total_requirements = session.execute(
                select(func.count(RequirementRow.id)).where(RequirementRow.project_id == project_id)
            ).scalar_one()
            contributors = session.execute(
                select(MessageRow.author_name, func.count(MessageRow.id).label("n"))
                .where(MessageRow.project_id == project_id)
                .group_by(MessageRow.author_name)
                .order_by(func.count(MessageRow.id).desc(), MessageRow.author_name)
            ).all()

        return {
            "messages_by_source": messages_by_source,
            "tasks_by_status": tasks_by_status,
            "total_messages": sum(messages_by_source.values()),
            "total_tasks": sum(tasks_by_status.values()),
            "total_requirements": int(total_requirements),
            "contributors": [{"author": name, "message_count": n} for name, n in contributors],
        }

    def system_counts(self) -> Dict[str, int]:
        counted = {
            "projects": ProjectRow.id,
            "recordings": AudioRecordingRow.id,
            "transcriptions": TranscriptionRow.id,
            "tasks": TaskRow.id,
            "requirements": RequirementRow.id,
        }
        with self._db.session_scope() as session:
            return {
                name: int(session.execute(select(func.count(column))).scalar_one())
                for name, column in counted.items()
            }

    # ------------------------------------------------------------------
    # IntegrationStorePort
    # ------------------------------------------------------------------

    def get_integration(self, integration_id: str) -> Optional[Integration]:
        with self._db.session_scope() as session:
            row = session.get(IntegrationRow, integration_id)
            return _to_integration(row) if row else None

    def save_integration(self, integration: Integration) -> Integration:
        with self._db.session_scope() as session:
            session.merge(
                IntegrationRow(
                    id=integration.id,
                    platform=integration.platform.value,
                    access_token=integration.access_token,
                    refresh_token=integration.refresh_token,
                    expires_at=integration.expires_at,
                    workspace_id=integration.workspace_id,
                    workspace_name=integration.workspace_name,
                    is_active=integration.is_active,
                )
            )
        return integration

    def list_integrations(self, active_only: bool = True) -> List[Integration]:
        with self._db.session_scope() as session:
            stmt = select(IntegrationRow)
            if active_only:
                stmt = stmt.where(IntegrationRow.is_active.is_(True))
            return [_to_integration(r) for r in session.execute(stmt).scalars()]
