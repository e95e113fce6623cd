"""
Dependency injection container for managing application dependencies.
Centralizes adapter, provider and service creation.

One Container is built per process (API app, worker) from Settings and passed
explicitly to whatever needs it; tests build their own with fakes swapped in.
"""

from typing import Dict, Optional
import logging

from adapters.in_memory_blob_store import InMemoryBlobStoreAdapter
from adapters.s3_blob_store import S3BlobStoreAdapter
from adapters.slack_client import SlackClientAdapter
from adapters.sql_job_store import SqlJobStoreAdapter
from adapters.sql_record_store import SqlRecordStoreAdapter
from adapters.teams_client import TeamsClientAdapter, TeamsCredentialRefresher
from core_intelligence.database.manager import DatabaseManager
from core_intelligence.engine.extractor import LLMExtractor
from core_intelligence.providers import LLMProviderBase, SpeechProviderBase
from core_intelligence.providers.factory import LLMProviderFactory, SpeechProviderFactory
from domain.models import Integration, Source
from ports.blob_store import BlobStorePort
from ports.platform_client import CredentialRefresherPort, PlatformClientPort
from services.analytics_service import AnalyticsService
from services.extraction_service import ExtractionService
from services.job_queue import JobQueue
from services.sync_service import SyncService
from services.transcription_service import TranscriptionService
from services.webhook_service import WebhookService
from shared_utils.config_loader import Settings, get_settings
from shared_utils.constants import BlobBackend, LogScope
from shared_utils.error_handler import ConfigurationError


logger = logging.getLogger(__name__)

_UNSET = object()


class Container:
    """Lazily builds and caches one instance of each dependency."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._database: Optional[DatabaseManager] = None
        self._record_store: Optional[SqlRecordStoreAdapter] = None
        self._job_store: Optional[SqlJobStoreAdapter] = None
        self._job_queue: Optional[JobQueue] = None
        self._blob_store: Optional[BlobStorePort] = None
        self._llm_provider = _UNSET
        self._speech_provider = _UNSET
        self._sync_service: Optional[SyncService] = None
        self._transcription_service: Optional[TranscriptionService] = None
        self._extraction_service: Optional[ExtractionService] = None
        self._webhook_service: Optional[WebhookService] = None
        self._analytics_service: Optional[AnalyticsService] = None

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def get_database(self) -> DatabaseManager:
        if self._database is None:
            self._database = DatabaseManager.from_uri(
                self.settings.database_uri, echo=self.settings.database_echo
            )
            logger.info(
                "Initialized DatabaseManager",
                extra={"scope": LogScope.CONFIG, "dialect": self._database.dialect}
            )
        return self._database

    def get_record_store(self) -> SqlRecordStoreAdapter:
        if self._record_store is None:
            self._record_store = SqlRecordStoreAdapter(self.get_database())
        return self._record_store

    def get_job_store(self) -> SqlJobStoreAdapter:
        if self._job_store is None:
            self._job_store = SqlJobStoreAdapter(self.get_database())
        return self._job_store

    def get_job_queue(self) -> JobQueue:
        if self._job_queue is None:
            self._job_queue = JobQueue(
                self.get_job_store(), lease_seconds=self.settings.job_lease_seconds
            )
        return self._job_queue

    def get_blob_store(self) -> BlobStorePort:
        """S3 by default; BLOB_BACKEND=memory for local dev and tests."""
        if self._blob_store is None:
            if self.settings.blob_backend == BlobBackend.MEMORY.value:
                self._blob_store = InMemoryBlobStoreAdapter()
                logger.info("Initialized InMemoryBlobStoreAdapter (local dev)")
            else:
                if not self.settings.s3_bucket:
                    raise ConfigurationError(
                        "S3_BUCKET is required when BLOB_BACKEND=s3",
                        context={"blob_backend": self.settings.blob_backend},
                    )
                self._blob_store = S3BlobStoreAdapter(
                    bucket=self.settings.s3_bucket,
                    prefix=self.settings.s3_prefix,
                    region=self.settings.aws_region,
                    endpoint_url=self.settings.aws_endpoint_url,
                )
                logger.info("Initialized S3BlobStoreAdapter")
        return self._blob_store

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def get_llm_provider(self) -> Optional[LLMProviderBase]:
        """Get or create the LLM provider; None when unset or unconfigured.

        Raises:
            RuntimeError: If provider initialization fails.
        """
        if self._llm_provider is _UNSET:
            self._llm_provider = self._create_provider("LLM", LLMProviderFactory.create)
        return self._llm_provider

    def get_speech_provider(self) -> Optional[SpeechProviderBase]:
        if self._speech_provider is _UNSET:
            self._speech_provider = self._create_provider("speech", SpeechProviderFactory.create)
        return self._speech_provider

    def _create_provider(self, kind: str, factory):
        logger.info(
            f"Initializing {kind} provider",
            extra={"scope": LogScope.CONFIG}
        )
        try:
            return factory(self.settings)
        except ValueError as e:
            # Missing credentials: operations needing it raise NotConfiguredError
            logger.warning(
                f"{kind} provider not configured",
                extra={"scope": LogScope.CONFIG, "error": str(e)}
            )
            return None
        except Exception as e:
            logger.error(
                f"Failed to initialize {kind} provider",
                extra={"scope": LogScope.CONFIG, "error": str(e)}
            )
            raise RuntimeError(f"{kind} provider initialization failed: {e}") from e

    # ------------------------------------------------------------------
    # Platform clients
    # ------------------------------------------------------------------

    def create_platform_client(self, integration: Integration) -> PlatformClientPort:
        timeout = self.settings.platform_request_timeout
        if integration.platform == Source.SLACK:
            return SlackClientAdapter(integration.access_token, timeout=timeout)
        return TeamsClientAdapter(integration.access_token, timeout=timeout)

    def get_credential_refreshers(self) -> Dict[Source, CredentialRefresherPort]:
        """Slack bot tokens do not expire; only Teams has a refresh flow."""
        if not (self.settings.teams_client_id and self.settings.teams_client_secret):
            return {}
        return {
            Source.TEAMS: TeamsCredentialRefresher(
                client_id=self.settings.teams_client_id,
                client_secret=self.settings.teams_client_secret,
                integration_store=self.get_record_store(),
                tenant_id=self.settings.teams_tenant_id,
                timeout=self.settings.platform_request_timeout,
            )
        }

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def get_sync_service(self) -> SyncService:
        if self._sync_service is None:
            store = self.get_record_store()
            self._sync_service = SyncService(
                message_store=store,
                integration_store=store,
                client_factory=self.create_platform_client,
                job_queue=self.get_job_queue(),
                credential_refreshers=self.get_credential_refreshers(),
                auto_extract=self.settings.auto_extract_messages,
            )
            logger.info("Initialized SyncService")
        return self._sync_service

    def get_transcription_service(self) -> TranscriptionService:
        if self._transcription_service is None:
            store = self.get_record_store()
            self._transcription_service = TranscriptionService(
                recording_store=store,
                blob_store=self.get_blob_store(),
                job_queue=self.get_job_queue(),
                speech_provider=self.get_speech_provider(),
                message_store=store,
                auto_extract=self.settings.auto_extract_transcripts,
                language=self.settings.transcription_language,
            )
            logger.info("Initialized TranscriptionService")
        return self._transcription_service

    def get_extraction_service(self) -> ExtractionService:
        if self._extraction_service is None:
            store = self.get_record_store()
            llm = self.get_llm_provider()
            self._extraction_service = ExtractionService(
                message_store=store,
                project_store=store,
                job_queue=self.get_job_queue(),
                extractor=LLMExtractor(llm) if llm is not None else None,
            )
            logger.info("Initialized ExtractionService")
        return self._extraction_service

    def get_webhook_service(self) -> WebhookService:
        if self._webhook_service is None:
            self._webhook_service = WebhookService(
                sync_service=self.get_sync_service(),
                slack_signing_secret=self.settings.slack_signing_secret or None,
                teams_webhook_secret=self.settings.teams_webhook_secret or None,
            )
        return self._webhook_service

    def get_analytics_service(self) -> AnalyticsService:
        if self._analytics_service is None:
            store = self.get_record_store()
            self._analytics_service = AnalyticsService(
                message_store=store, project_store=store, integration_store=store
            )
        return self._analytics_service

    def close(self) -> None:
        if self._database is not None:
            self._database.dispose()
            self._database = None


def build_container(settings: Optional[Settings] = None) -> Container:
    """Build a container and make sure the schema exists."""
    container = Container(settings)
    container.get_database().create_schema()
    return container
