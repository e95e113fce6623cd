"""
Database engine, session scope and schema safeguards.

Every store call opens its own short-lived session; no session is ever held
across a network call to a platform, speech or LLM collaborator.
"""

from contextlib import contextmanager
from typing import Iterator, List

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core_intelligence.database.tables import REQUIRED_TABLES, Base
from shared_utils.constants import LogScope
from shared_utils.error_handler import ExternalServiceError
from shared_utils.logging_utils import ContextualLogger

logger = ContextualLogger(scope=LogScope.DATABASE)


def build_engine(database_uri: str, echo: bool = False) -> Engine:
    """Create an engine for ``database_uri``.

    SQLite in-memory databases share one connection across threads so the
    API, workers and tests all see the same data.
    """
    if database_uri.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_uri or database_uri.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_uri, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(database_uri, echo=echo, pool_pre_ping=True)


class DatabaseManager:
    """Owns the engine and hands out transactional session scopes."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_uri(cls, database_uri: str, echo: bool = False) -> "DatabaseManager":
        return cls(build_engine(database_uri, echo=echo))

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Commit on success, roll back and re-raise on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            logger.error("schema_create_failed", error=str(exc))
            raise ExternalServiceError("Database", f"Failed to create schema: {exc}") from exc
        logger.info("schema_created", dialect=self.dialect, tables=len(Base.metadata.tables))

    def missing_columns(self) -> List[str]:
        """List ``table.column`` entries the live database lacks."""
        inspector = inspect(self.engine)
        existing_tables = set(inspector.get_table_names())
        missing: List[str] = []
        for table, columns in REQUIRED_TABLES.items():
            if table not in existing_tables:
                missing.append(f"{table}.*")
                continue
            present = {col["name"] for col in inspector.get_columns(table)}
            missing.extend(f"{table}.{col}" for col in sorted(columns - present))
        return missing

    def validate_schema(self) -> bool:
        """Check the live schema against what the stores require.

        Returns:
            True if every required table and column exists.
        """
        try:
            missing = self.missing_columns()
        except SQLAlchemyError as exc:
            logger.error("schema_validation_failed", error=str(exc))
            return False

        if missing:
            logger.error(
                "database_schema_mismatch",
                missing=missing,
                hint="run python -m scripts.init_db",
            )
            return False

        logger.info("database_schema_verified", tables=len(REQUIRED_TABLES))
        return True

    def dispose(self) -> None:
        self.engine.dispose()
