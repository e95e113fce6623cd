"""
Extraction service: messages -> entities, projects, tasks, requirements.

Flow:  message -> LLMExtractor (validated JSON) -> project linkage -> rows.

Extraction is append-only: processing the same message twice stores its
entities, tasks and requirements twice.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, List, Optional

from core_intelligence.engine.extractor import LLMExtractor
from core_intelligence.schemas.extraction import ExtractionResult
from domain.models import (
    Entity,
    Job,
    JobKind,
    Message,
    Project,
    Requirement,
    SentimentResult,
    Task,
)
from ports.record_store import MessageStorePort, ProjectStorePort
from services.job_queue import JobQueue
from shared_utils.constants import Defaults, LogScope, Sentinels
from shared_utils.error_handler import (
    AppException,
    NotConfiguredError,
    NotFoundError,
    ValidationError,
)
from shared_utils.logging_utils import get_scoped_logger, log_execution

logger = get_scoped_logger(LogScope.EXTRACTION)


class ExtractionService:
    """Turns stored messages into project-management artifacts."""

    def __init__(
        self,
        *,
        message_store: MessageStorePort,
        project_store: ProjectStorePort,
        job_queue: JobQueue,
        extractor: Optional[LLMExtractor] = None,
    ) -> None:
        self._messages = message_store
        self._projects = project_store
        self._queue = job_queue
        self._extractor = extractor

    # ------------------------------------------------------------------
    # Worker entry
    # ------------------------------------------------------------------

    @log_execution(scope=LogScope.EXTRACTION)
    def process_message(self, message_id: str) -> ExtractionResult:
        """Extract and persist artifacts for one message.

        Raises:
            NotFoundError: Message does not exist.
            NotConfiguredError: No LLM provider configured.
            CollaboratorError: The model failed or returned an invalid payload.
        """
        message = self._messages.get_message(message_id)
        if message is None:
            raise NotFoundError("Message", message_id)
        extractor = self._require_extractor()

        result = extractor.extract(message.content, reference_date=message.timestamp.date())

        project_id = self._link_projects(message, result.projects)
        self._store_entities(message, result)

        if result.tasks:
            task_project = project_id or self._fallback_project(message, Sentinels.UNCATEGORIZED_TASKS)
            project_id = project_id or task_project
            for item in result.tasks:
                self._projects.add_task(
                    Task(
                        id=str(uuid.uuid4()),
                        project_id=task_project,
                        title=item.title,
                        description=item.description,
                        assignee=item.assignee,
                        priority=item.priority,
                        due_date=item.due_date,
                        source_message_id=message.id,
                    )
                )

        if result.requirements:
            requirement_project = project_id or self._fallback_project(
                message, Sentinels.UNCATEGORIZED_REQUIREMENTS
            )
            for item in result.requirements:
                self._projects.add_requirement(
                    Requirement(
                        id=str(uuid.uuid4()),
                        project_id=requirement_project,
                        description=item.description,
                        category=item.category,
                        priority=item.priority,
                        source_message_id=message.id,
                    )
                )

        logger.info(
            "message_extracted",
            message_id=message.id,
            project_id=project_id,
            entities=len(result.entities),
            projects=len(result.projects),
            tasks=len(result.tasks),
            requirements=len(result.requirements),
            deadlines=len(result.deadlines),
        )
        return result

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def queue_message(self, message_id: str) -> Job:
        return self._queue.enqueue(JobKind.EXTRACT, {"message_id": message_id})

    def batch_queue(self, message_ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Queue several messages; one failure never blocks the rest."""
        results: List[Dict[str, Any]] = []
        for message_id in message_ids:
            try:
                job = self.queue_message(message_id)
                results.append({"message_id": message_id, "success": True, "job_id": job.id})
            except AppException as exc:
                logger.error("extraction_queue_failed", message_id=message_id, error=exc.message)
                results.append({"message_id": message_id, "success": False, "error": exc.message})
        return results

    # ------------------------------------------------------------------
    # Synchronous LLM operations
    # ------------------------------------------------------------------

    def generate_project_summary(self, project_id: str) -> str:
        """Summarize a project from its most recent messages.

        Raises:
            NotFoundError: Project does not exist.
            NotConfiguredError: No LLM provider configured.
            CollaboratorError: Empty or failed model response.
        """
        project = self._projects.get_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        extractor = self._require_extractor()

        messages = self._messages.list_project_messages(project_id, limit=Defaults.SUMMARY_MESSAGE_WINDOW)
        # Oldest first reads as a conversation
        messages = list(reversed(messages))
        summary = extractor.summarize_project(
            project,
            messages,
            task_count=len(self._projects.list_tasks(project_id=project_id)),
            requirement_count=len(self._projects.list_requirements(project_id=project_id)),
        )
        logger.info("project_summary_generated", project_id=project_id, messages=len(messages))
        return summary

    def analyze_sentiment(self, text: str) -> SentimentResult:
        if not text or not text.strip():
            raise ValidationError("text cannot be empty")
        return self._require_extractor().sentiment(text.strip())

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_extractor(self) -> LLMExtractor:
        if self._extractor is None:
            raise NotConfiguredError("LLM")
        return self._extractor

    def _resolve_project(self, name: str) -> Project:
        project = self._projects.find_project_by_name(name)
        if project is not None:
            return project
        project = self._projects.create_project(
            Project(id=str(uuid.uuid4()), name=name.strip(), status=Sentinels.NEW_PROJECT_STATUS)
        )
        logger.info("project_created", project_id=project.id, name=project.name)
        return project

    def _link_projects(self, message: Message, names: List[str]) -> Optional[str]:
        """Resolve every candidate name; attach the message to the first."""
        resolved = [self._resolve_project(name) for name in names]
        if not resolved:
            return message.project_id
        first = resolved[0].id
        if message.project_id != first:
            self._messages.set_message_project(message.id, first)
        return first

    def _fallback_project(self, message: Message, name: str) -> str:
        project = self._resolve_project(name)
        self._messages.set_message_project(message.id, project.id)
        return project.id

    def _store_entities(self, message: Message, result: ExtractionResult) -> None:
        if not result.entities:
            return
        self._projects.add_entities(
            [
                Entity(
                    id=str(uuid.uuid4()),
                    message_id=message.id,
                    entity_type=item.type,
                    entity_value=item.value,
                    confidence_score=item.confidence,
                    metadata={"summary": result.summary} if result.summary else {},
                )
                for item in result.entities
            ]
        )
