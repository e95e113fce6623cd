"""
Read-side queries over extracted project data.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

from domain.models import Source
from ports.record_store import IntegrationStorePort, MessageStorePort, ProjectStorePort
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import NotFoundError
from shared_utils.logging_utils import get_scoped_logger

logger = get_scoped_logger(LogScope.ANALYTICS)


class AnalyticsService:
    """Project dashboards, deadline windows, per-message artifacts and system totals."""

    def __init__(
        self,
        *,
        message_store: MessageStorePort,
        project_store: ProjectStorePort,
        integration_store: Optional[IntegrationStorePort] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._messages = message_store
        self._projects = project_store
        self._integrations = integration_store
        self._today = today

    def project_analytics(self, project_id: str) -> Dict[str, Any]:
        project = self._projects.get_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)

        stats = self._projects.project_stats(project_id)
        total_tasks = stats["total_tasks"]
        completed = stats["tasks_by_status"].get("completed", 0)
        recent = self._messages.list_project_messages(project_id, limit=Defaults.ANALYTICS_RECENT_MESSAGES)

        return {
            "project": project.model_dump(mode="json"),
            "summary": {
                "total_messages": stats["total_messages"],
                "total_tasks": total_tasks,
                "total_requirements": stats["total_requirements"],
                "completed_tasks": completed,
                "task_completion_rate": round(completed / total_tasks * 100, 2) if total_tasks else 0.0,
            },
            "messages_by_source": stats["messages_by_source"],
            "tasks_by_status": stats["tasks_by_status"],
            "recent_activity": [
                {
                    "id": m.id,
                    "content": m.content,
                    "author_name": m.author_name,
                    "timestamp": m.timestamp.isoformat(),
                    "source": m.source.value,
                }
                for m in recent
            ],
            "top_contributors": stats["contributors"][: Defaults.ANALYTICS_TOP_CONTRIBUTORS],
        }

    def upcoming_deadlines(self, days_ahead: int = Defaults.DEADLINE_WINDOW_DAYS) -> Dict[str, Any]:
        """Projects and open tasks due between today and ``days_ahead`` days out."""
        start = self._today()
        end = start + timedelta(days=days_ahead)

        projects = [
            p for p in self._projects.list_projects_with_deadline_before(end)
            if p.deadline is not None and p.deadline >= start
        ]
        tasks = self._projects.list_open_tasks_due_between(start, end)
        logger.info("deadlines_queried", days_ahead=days_ahead, projects=len(projects), tasks=len(tasks))

        return {
            "days_ahead": days_ahead,
            "project_deadlines": [p.model_dump(mode="json") for p in projects],
            "task_deadlines": [t.model_dump(mode="json") for t in tasks],
            "summary": {"upcoming_projects": len(projects), "upcoming_tasks": len(tasks)},
        }

    def message_artifacts(self, message_id: str) -> Dict[str, Any]:
        message = self._messages.get_message(message_id)
        if message is None:
            raise NotFoundError("Message", message_id)
        return {
            "message_id": message_id,
            "project_id": message.project_id,
            "entities": [e.model_dump(mode="json") for e in self._projects.list_entities(message_id=message_id)],
            "tasks": [t.model_dump(mode="json") for t in self._projects.list_tasks(source_message_id=message_id)],
            "requirements": [
                r.model_dump(mode="json") for r in self._projects.list_requirements(source_message_id=message_id)
            ],
        }

    def project_entities(self, project_id: str, entity_type: Optional[str] = None) -> Dict[str, Any]:
        if self._projects.get_project(project_id) is None:
            raise NotFoundError("Project", project_id)
        entities = self._projects.list_entities(project_id=project_id, entity_type=entity_type)
        return {
            "project_id": project_id,
            "entity_type": entity_type,
            "entities": [e.model_dump(mode="json") for e in entities],
        }

    def list_integrations(self) -> List[Dict[str, Any]]:
        """Every stored integration grouped by platform, without tokens."""
        integrations = self._integrations.list_integrations(active_only=False) if self._integrations else []
        return [
            i.model_dump(mode="json", exclude={"access_token", "refresh_token"})
            for i in sorted(integrations, key=lambda i: (i.platform.value, i.id))
        ]

    def system_stats(self) -> Dict[str, Any]:
        counts = self._projects.system_counts()
        integrations = self._integrations.list_integrations(active_only=False) if self._integrations else []
        return {
            "projects": counts["projects"],
            "messages": {
                "total": self._messages.count_messages(),
                **{s.value: self._messages.count_messages(s.value) for s in Source},
            },
            "recordings": counts["recordings"],
            "transcriptions": counts["transcriptions"],
            "tasks": counts["tasks"],
            "requirements": counts["requirements"],
            "integrations": {
                "total": len(integrations),
                "active": sum(1 for i in integrations if i.is_active),
                "by_platform": {s.value: sum(1 for i in integrations if i.platform == s) for s in Source},
            },
        }
