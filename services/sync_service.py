"""
Sync service: pulls platform history into the message store.

Flow:  integration -> client -> containers -> pages -> normalize -> upsert.

Guarantees:
    • Idempotent: messages are upserted on (source, source_id); replays
      refresh content/timestamp and never duplicate rows.
    • Partial progress survives: each upsert is its own transaction, a
      failing container is logged and skipped, and an expired token aborts
      the run without touching what was already stored.
    • Authors are never dropped: unresolved names fall back to "Unknown".
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from core_intelligence.parser.message_normalizer import MessageNormalizer
from domain.models import (
    Container,
    Integration,
    JobKind,
    Message,
    PlatformMessage,
    Source,
    SyncReport,
)
from ports.platform_client import CredentialRefresherPort, PlatformClientFactory, PlatformClientPort
from ports.record_store import IntegrationStorePort, MessageStorePort
from services.job_queue import JobQueue, utc_now
from shared_utils.constants import Defaults, ErrorCode, LogScope, Sentinels
from shared_utils.error_handler import (
    AppException,
    AuthExpiredError,
    CollaboratorError,
    ExternalServiceError,
    RateLimitedError,
    ValidationError,
    log_exception,
)
from shared_utils.logging_utils import get_scoped_logger, log_execution

logger = get_scoped_logger(LogScope.SYNC)


class _RunCounters:
    """Mutable tallies for one sync run."""

    def __init__(self) -> None:
        self.created = 0
        self.updated = 0
        self.skipped = 0
        self.containers_synced = 0
        self.containers_failed = 0


class SyncService:
    """Synchronizes one platform integration into the message store."""

    def __init__(
        self,
        *,
        message_store: MessageStorePort,
        integration_store: IntegrationStorePort,
        client_factory: PlatformClientFactory,
        job_queue: Optional[JobQueue] = None,
        credential_refreshers: Optional[Dict[Source, CredentialRefresherPort]] = None,
        auto_extract: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._messages = message_store
        self._integrations = integration_store
        self._client_factory = client_factory
        self._queue = job_queue
        self._refreshers = credential_refreshers or {}
        self._auto_extract = auto_extract
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @log_execution(scope=LogScope.SYNC)
    def sync_platform(self, integration_id: str) -> SyncReport:
        """Run one full synchronization for ``integration_id``.

        Raises:
            AuthExpiredError: Integration missing, inactive, expired, or its
                token was rejected mid-run.
        """
        integration = self._load_integration(integration_id)
        client = self._client_factory(integration)
        counters = _RunCounters()
        author_cache: Dict[str, Optional[str]] = {}

        containers = client.list_containers()
        logger.info(
            "sync_started",
            integration_id=integration_id,
            source=integration.platform.value,
            containers=len(containers),
        )

        for container in containers:
            try:
                self._sync_container(client, integration.platform, container, author_cache, counters)
                counters.containers_synced += 1
            except AuthExpiredError:
                logger.error(
                    "sync_aborted_auth_expired",
                    integration_id=integration_id,
                    container_id=container.id,
                    stored_so_far=counters.created + counters.updated,
                )
                raise
            except Exception as exc:
                counters.containers_failed += 1
                logger.error(
                    "sync_container_failed",
                    integration_id=integration_id,
                    container_id=container.id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )

        report = SyncReport(
            success=True,
            integration_id=integration_id,
            source=integration.platform,
            total_messages_stored=counters.created + counters.updated,
            messages_created=counters.created,
            messages_updated=counters.updated,
            messages_skipped=counters.skipped,
            containers_synced=counters.containers_synced,
            containers_failed=counters.containers_failed,
        )
        logger.info("sync_completed", **report.model_dump(mode="json", exclude={"error"}))
        return report

    def sync(self, integration_id: str) -> SyncReport:
        """Boundary wrapper: refresh credentials when possible, never raise."""
        try:
            self._refresh_if_expiring(integration_id)
            try:
                return self.sync_platform(integration_id)
            except AuthExpiredError:
                if not self._refresh(integration_id):
                    raise
                logger.info("sync_retry_after_refresh", integration_id=integration_id)
                return self.sync_platform(integration_id)
        except AppException as exc:
            log_exception(exc, LogScope.SYNC)
            return SyncReport(
                success=False,
                integration_id=integration_id,
                error={"code": exc.error_code, "message": exc.message},
            )

    def sync_all(self) -> Dict[str, Any]:
        """Sync every active integration in turn.

        Each integration reports on its own; a failure in one never stops the
        others.
        """
        reports: List[SyncReport] = []
        for integration in self._integrations.list_integrations(active_only=True):
            try:
                reports.append(self.sync(integration.id))
            except Exception as exc:
                log_exception(exc, LogScope.SYNC)
                reports.append(
                    SyncReport(
                        success=False,
                        integration_id=integration.id,
                        source=integration.platform,
                        error={"code": ErrorCode.EXTERNAL_SERVICE_ERROR.value, "message": str(exc)},
                    )
                )

        succeeded = sum(1 for r in reports if r.success)
        logger.info("sync_all_completed", integrations=len(reports), succeeded=succeeded)
        return {
            "integrations": len(reports),
            "succeeded": succeeded,
            "failed": len(reports) - succeeded,
            "total_messages_stored": sum(r.total_messages_stored for r in reports),
            "reports": [r.model_dump(mode="json") for r in reports],
        }

    def ingest_message(self, message: PlatformMessage) -> Optional[Message]:
        """Upsert one already-normalized message (webhook path).

        Returns:
            The stored message, or None for bot/system messages.
        """
        if message.is_system:
            logger.debug("system_message_skipped", source=message.source.value, source_id=message.source_id)
            return None
        stored, created = self._messages.upsert_message(message)
        logger.info(
            "message_ingested",
            source=message.source.value,
            source_id=message.source_id,
            message_id=stored.id,
            created=created,
        )
        if created:
            self._maybe_queue_extraction(stored)
        return stored

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _load_integration(self, integration_id: str) -> Integration:
        integration = self._integrations.get_integration(integration_id)
        if integration is None:
            raise AuthExpiredError("Integration not found", context={"integration_id": integration_id})
        if not integration.is_active:
            raise AuthExpiredError("Integration is inactive", context={"integration_id": integration_id})
        if integration.expires_at is not None and integration.expires_at <= self._clock():
            raise AuthExpiredError(
                "Integration credentials have expired",
                context={"integration_id": integration_id, "expires_at": integration.expires_at.isoformat()},
            )
        return integration

    def _sync_container(
        self,
        client: PlatformClientPort,
        source: Source,
        container: Container,
        author_cache: Dict[str, Optional[str]],
        counters: _RunCounters,
    ) -> None:
        cursor: Optional[str] = None
        pages = 0
        while True:
            page = client.list_messages(container.id, cursor)
            pages += 1
            for raw in page.messages:
                self._store_raw_message(client, source, container, raw, author_cache, counters)
            if not page.next_cursor or page.next_cursor == cursor:
                break
            cursor = page.next_cursor
        logger.info("sync_container_completed", container_id=container.id, pages=pages)

    def _store_raw_message(
        self,
        client: PlatformClientPort,
        source: Source,
        container: Container,
        raw: dict,
        author_cache: Dict[str, Optional[str]],
        counters: _RunCounters,
    ) -> None:
        try:
            message = MessageNormalizer.normalize(source, raw, container)
        except ValidationError as exc:
            counters.skipped += 1
            logger.warning("sync_message_malformed", container_id=container.id, error=exc.message)
            return

        if message.is_system:
            counters.skipped += 1
            return

        if not message.author_name:
            message = message.model_copy(
                update={"author_name": self._resolve_author(client, message.author_id, author_cache)}
            )

        try:
            stored, created = self._messages.upsert_message(message)
        except ExternalServiceError as exc:
            counters.skipped += 1
            logger.error(
                "sync_message_store_failed",
                source=source.value,
                source_id=message.source_id,
                error=exc.message,
            )
            return

        if created:
            counters.created += 1
            self._maybe_queue_extraction(stored)
        else:
            counters.updated += 1

    def _resolve_author(
        self,
        client: PlatformClientPort,
        author_id: str,
        author_cache: Dict[str, Optional[str]],
    ) -> str:
        if author_id == Sentinels.UNKNOWN_AUTHOR_ID:
            return Sentinels.UNKNOWN_AUTHOR_NAME
        if author_id not in author_cache:
            try:
                author_cache[author_id] = client.resolve_author(author_id)
            except (AuthExpiredError, RateLimitedError):
                # Fail the container so the message is stored with its author next run
                raise
            except CollaboratorError as exc:
                logger.warning("author_lookup_failed", author_id=author_id, error=exc.message)
                author_cache[author_id] = None
        return author_cache[author_id] or Sentinels.UNKNOWN_AUTHOR_NAME

    def _maybe_queue_extraction(self, message: Message) -> None:
        if not (self._auto_extract and self._queue and message.content.strip()):
            return
        try:
            self._queue.enqueue(JobKind.EXTRACT, {"message_id": message.id})
        except ExternalServiceError as exc:
            logger.error("extraction_enqueue_failed", message_id=message.id, error=exc.message)

    def _refresher_for(self, integration: Optional[Integration]) -> Optional[CredentialRefresherPort]:
        if integration is None or not integration.is_active or not integration.refresh_token:
            return None
        return self._refreshers.get(integration.platform)

    def _refresh(self, integration_id: str) -> bool:
        integration = self._integrations.get_integration(integration_id)
        refresher = self._refresher_for(integration)
        if refresher is None:
            return False
        refresher.refresh(integration)
        return True

    def _refresh_if_expiring(self, integration_id: str) -> None:
        integration = self._integrations.get_integration(integration_id)
        if integration is None or integration.expires_at is None:
            return
        window = timedelta(seconds=Defaults.TOKEN_REFRESH_WINDOW_SECONDS)
        if integration.expires_at - window <= self._clock() and self._refresher_for(integration):
            logger.info("token_refresh_due", integration_id=integration_id)
            self._refresh(integration_id)
