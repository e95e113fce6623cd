"""
Root conftest.py — shared fixtures for the entire test suite.

Guidelines:
    • No __init__.py in test sub-directories (avoids shadowing root packages).
    • pytest.ini_options lives in pyproject.toml with pythonpath=["."].
    • Store and queue tests run against SQLite in-memory (StaticPool).
    • Markers: integration.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from adapters.in_memory_blob_store import InMemoryBlobStoreAdapter
from adapters.sql_job_store import SqlJobStoreAdapter
from adapters.sql_record_store import SqlRecordStoreAdapter
from core_intelligence.database.manager import DatabaseManager
from domain.models import Container, Integration, MessagePage, Source
from services.job_queue import JobQueue


# ---------------------------------------------------------------------------
# Marker registration
# ---------------------------------------------------------------------------

def pytest_configure(config):
    config.addinivalue_line("markers", "integration: mark test as integration test")


# ---------------------------------------------------------------------------
# Minimal required settings kwargs for Settings(**BASE_SETTINGS_KWARGS)
# ---------------------------------------------------------------------------

BASE_SETTINGS_KWARGS: Dict[str, str] = {
    "llm_provider": "none",
    "speech_provider": "none",
    "blob_backend": "memory",
    "database_uri": "sqlite:///:memory:",
    "environment": "development",
}


@pytest.fixture()
def base_settings_kwargs() -> Dict[str, str]:
    """Provide the minimal kwargs needed to instantiate ``Settings``."""
    return {**BASE_SETTINGS_KWARGS}


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

FIXED_NOW = datetime(2025, 1, 15, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, milliseconds: float = 0) -> None:
        self.now = self.now + timedelta(seconds=seconds, milliseconds=milliseconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Storage fixtures (SQLite in-memory)
# ---------------------------------------------------------------------------

@pytest.fixture()
def db():
    manager = DatabaseManager.from_uri("sqlite:///:memory:")
    manager.create_schema()
    yield manager
    manager.dispose()


@pytest.fixture()
def record_store(db) -> SqlRecordStoreAdapter:
    return SqlRecordStoreAdapter(db)


@pytest.fixture()
def job_store(db) -> SqlJobStoreAdapter:
    return SqlJobStoreAdapter(db)


@pytest.fixture()
def job_queue(job_store, clock) -> JobQueue:
    return JobQueue(job_store, clock=clock)


@pytest.fixture()
def blob_store() -> InMemoryBlobStoreAdapter:
    return InMemoryBlobStoreAdapter()


# ---------------------------------------------------------------------------
# Platform fakes
# ---------------------------------------------------------------------------

class FakePlatformClient:
    """In-memory PlatformClientPort.

    ``pages`` maps container id -> list of raw-message pages; cursors are the
    page index as a string. ``failures`` maps container id -> exception raised
    when that container is listed.
    """

    def __init__(
        self,
        source: Source,
        containers: List[Container],
        pages: Dict[str, List[List[dict]]],
        authors: Optional[Dict[str, str]] = None,
        failures: Optional[Dict[str, Exception]] = None,
    ):
        self.source = source
        self._containers = containers
        self._pages = pages
        self._authors = authors or {}
        self._failures = failures or {}
        self.author_lookups: List[str] = []
        self.files: Dict[str, bytes] = {}

    def list_containers(self) -> List[Container]:
        return list(self._containers)

    def list_messages(self, container_id: str, cursor: Optional[str] = None) -> MessagePage:
        if container_id in self._failures:
            raise self._failures[container_id]
        pages = self._pages.get(container_id, [[]])
        index = int(cursor or 0)
        next_cursor = str(index + 1) if index + 1 < len(pages) else None
        return MessagePage(messages=pages[index], next_cursor=next_cursor)

    def resolve_author(self, author_id: str) -> Optional[str]:
        self.author_lookups.append(author_id)
        return self._authors.get(author_id)

    def download_file(self, url: str) -> bytes:
        return self.files[url]


def slack_message(ts: str, user: str, text: str, **extra) -> dict:
    return {"type": "message", "ts": ts, "user": user, "text": text, **extra}


# Five human messages in one channel: the canonical sync fixture
SLACK_FIXTURE_MESSAGES: List[dict] = [
    slack_message("1736931600.000100", "U1", "Kickoff for the Payments Revamp project"),
    slack_message("1736931660.000200", "U2", "I will draft the API contract"),
    slack_message("1736931720.000300", "U1", "Deploy the auth service by Friday, assign to Dana"),
    slack_message("1736931780.000400", "U3", "Latency must stay under 200ms"),
    slack_message("1736931840.000500", "U2", "Sounds good, see you tomorrow"),
]

SLACK_AUTHORS: Dict[str, str] = {"U1": "Alice", "U2": "Bob", "U3": "Carol"}


@pytest.fixture()
def slack_integration(record_store) -> Integration:
    integration = Integration(
        id="int-slack",
        platform=Source.SLACK,
        access_token="xoxb-test",
        workspace_id="T1",
        workspace_name="Acme",
    )
    return record_store.save_integration(integration)


@pytest.fixture()
def mock_llm_provider() -> MagicMock:
    """LLM provider mock returning an empty extraction by default."""
    mock = MagicMock()
    mock.generate.return_value = "{}"
    return mock
