"""
FastAPI backend for the Collaboration Intelligence Pipeline.

Endpoints:
    GET  /health                               — Health check
    POST /api/webhooks/slack                   — Slack Events API (signed)
    POST /api/webhooks/teams                   — Graph change notifications
    POST /api/sync/{integration_id}            — Run a platform sync
    POST /api/recordings                       — Upload audio (async transcription)
    POST /api/recordings/import                — Import a platform-hosted recording
    POST /api/recordings/{recording_id}/retry  — Retry a failed transcription
    GET  /api/recordings/{recording_id}/status — Poll transcription status
    POST /api/messages/{message_id}/extract    — Queue extraction for a message
    POST /api/messages/extract                 — Queue extraction for many messages
    GET  /api/messages/{message_id}/artifacts  — Entities/tasks/requirements of a message
    GET  /api/projects/{project_id}/analytics  — Project dashboard
    GET  /api/projects/{project_id}/summary    — LLM project summary
    GET  /api/projects/{project_id}/entities   — Entities mentioned in a project
    GET  /api/deadlines                        — Upcoming deadlines
    POST /api/sentiment                        — Sentiment of free text
    POST /api/admin/sync                       — Sync every active integration
    GET  /api/admin/stats                      — System-wide totals
    GET  /api/admin/integrations               — Stored integrations (no tokens)

Speech and LLM work never runs on the request path except for the summary and
sentiment endpoints, which are synchronous by nature.
"""

from typing import Optional
from fastapi import FastAPI, File, Form, Request, UploadFile, status
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
import uvicorn

from shared_utils.config_loader import get_settings
from shared_utils.constants import APIEndpoints, LogScope
from shared_utils.di_container import Container, build_container
from shared_utils.error_handler import AppException, NotFoundError, ValidationError, handle_error
from shared_utils.logging_utils import ContextualLogger, configure_logging
from shared_utils.validation import InputValidator


logger = ContextualLogger(scope=LogScope.API)


def create_app(container: Optional[Container] = None) -> FastAPI:
    """Build the API around ``container`` (a fresh one from Settings by default)."""
    container = container or build_container()
    settings = container.settings

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=settings.app_description,
    )
    app.state.container = container

    limiter = Limiter(key_func=get_remote_address)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        logger.warning(
            "request_failed",
            path=request.url.path,
            error_code=exc.error_code,
            http_status=exc.http_status,
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=handle_error(exc, scope=LogScope.API),
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.get(APIEndpoints.HEALTH)
    def health_check() -> dict:
        """Health check endpoint."""
        logger.debug("health_check_requested")
        return {
            "status": "healthy",
            "environment": settings.environment,
            "database": container.get_database().dialect,
            "llm_provider": settings.llm_provider,
            "speech_provider": settings.speech_provider,
        }

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @app.post(APIEndpoints.SLACK_WEBHOOK)
    async def slack_webhook(request: Request) -> JSONResponse:
        raw_body = await request.body()
        result = container.get_webhook_service().handle_slack_event(
            raw_body,
            timestamp=request.headers.get("X-Slack-Request-Timestamp", ""),
            signature=request.headers.get("X-Slack-Signature", ""),
        )
        return JSONResponse(content=result)

    @app.post(APIEndpoints.TEAMS_WEBHOOK)
    async def teams_webhook(request: Request, validationToken: Optional[str] = None):
        # Graph subscription handshake: echo the token as text/plain
        if validationToken:
            return PlainTextResponse(validationToken)
        try:
            payload = await request.json()
        except ValueError as exc:
            raise ValidationError("Teams notification body is not JSON") from exc
        result = container.get_webhook_service().handle_teams_notification(payload)
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=result)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    @app.post(APIEndpoints.SYNC)
    def sync_integration(integration_id: str) -> JSONResponse:
        report = container.get_sync_service().sync(integration_id)
        code = status.HTTP_200_OK if report.success else status.HTTP_502_BAD_GATEWAY
        return JSONResponse(status_code=code, content=report.model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Recordings
    # ------------------------------------------------------------------

    @app.post(APIEndpoints.RECORDINGS)
    @limiter.limit("20/minute")
    async def upload_recording(
        request: Request,
        file: UploadFile = File(...),
        source: str = Form(...),
        source_id: str = Form(...),
        title: str = Form(""),
    ) -> JSONResponse:
        """Store audio and queue transcription. Returns immediately with ``pending``."""
        content = await file.read()
        recording = container.get_transcription_service().upload_and_process(
            source=source,
            source_id=source_id,
            title=title or file.filename or "",
            content=content,
            content_type=file.content_type or "",
        )
        logger.info("recording_accepted", recording_id=recording.id)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={
                "recording_id": recording.id,
                "status": recording.transcription_status.value,
                "file_url": recording.file_url,
                "message": "Recording accepted for transcription",
            },
        )

    @app.post(APIEndpoints.RECORDING_IMPORT)
    def import_recording(body: dict) -> JSONResponse:
        """Download a recording from a connected platform and queue transcription."""
        integration_id = InputValidator.validate_non_empty_string(body.get("integration_id") or "", "integration_id")
        integration = container.get_record_store().get_integration(integration_id)
        if integration is None:
            raise NotFoundError("Integration", integration_id)
        recording = container.get_transcription_service().import_recording(
            container.create_platform_client(integration),
            source=integration.platform.value,
            source_id=body.get("source_id") or "",
            title=body.get("title") or "",
            file_url=InputValidator.validate_non_empty_string(body.get("file_url") or "", "file_url"),
            content_type=body.get("content_type") or "",
        )
        logger.info("recording_imported", recording_id=recording.id, integration_id=integration_id)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"recording_id": recording.id, "status": recording.transcription_status.value},
        )

    @app.post(APIEndpoints.RECORDING_RETRY)
    def retry_recording(recording_id: str) -> JSONResponse:
        InputValidator.validate_uuid(recording_id)
        recording = container.get_transcription_service().retry(recording_id)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"recording_id": recording.id, "status": recording.transcription_status.value},
        )

    @app.get(APIEndpoints.RECORDING_STATUS)
    def recording_status(recording_id: str) -> JSONResponse:
        InputValidator.validate_uuid(recording_id)
        service = container.get_transcription_service()
        body = service.get_job_status(recording_id)
        transcription = service.get_transcription(recording_id)
        if transcription is not None:
            body["transcription"] = transcription.model_dump(mode="json")
        return JSONResponse(content=body)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    @app.post(APIEndpoints.MESSAGE_EXTRACT)
    def queue_extraction(message_id: str) -> JSONResponse:
        job = container.get_extraction_service().queue_message(message_id)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"message_id": message_id, "job_id": job.id, "state": job.state.value},
        )

    @app.post(APIEndpoints.MESSAGE_EXTRACT_BATCH)
    def queue_extraction_batch(body: dict) -> JSONResponse:
        message_ids = body.get("message_ids")
        if not isinstance(message_ids, list) or not message_ids:
            raise ValidationError("message_ids must be a non-empty list")
        results = container.get_extraction_service().batch_queue(message_ids)
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"results": results})

    @app.get(APIEndpoints.MESSAGE_ARTIFACTS)
    def message_artifacts(message_id: str) -> JSONResponse:
        return JSONResponse(content=container.get_analytics_service().message_artifacts(message_id))

    # ------------------------------------------------------------------
    # Projects & analytics
    # ------------------------------------------------------------------

    @app.get(APIEndpoints.PROJECT_ANALYTICS)
    def project_analytics(project_id: str) -> JSONResponse:
        return JSONResponse(content=container.get_analytics_service().project_analytics(project_id))

    @app.get(APIEndpoints.PROJECT_SUMMARY)
    def project_summary(project_id: str) -> JSONResponse:
        summary = container.get_extraction_service().generate_project_summary(project_id)
        return JSONResponse(content={"project_id": project_id, "summary": summary})

    @app.get(APIEndpoints.PROJECT_ENTITIES)
    def project_entities(project_id: str, entity_type: Optional[str] = None) -> JSONResponse:
        return JSONResponse(
            content=container.get_analytics_service().project_entities(project_id, entity_type)
        )

    @app.get(APIEndpoints.DEADLINES)
    def upcoming_deadlines(days_ahead: int = 30) -> JSONResponse:
        InputValidator.validate_positive_int(days_ahead, "days_ahead")
        return JSONResponse(content=container.get_analytics_service().upcoming_deadlines(days_ahead))

    @app.post(APIEndpoints.SENTIMENT)
    @limiter.limit("30/minute")
    def sentiment(request: Request, body: dict) -> JSONResponse:
        result = container.get_extraction_service().analyze_sentiment(body.get("text") or "")
        return JSONResponse(content=result.model_dump())

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    @app.post(APIEndpoints.ADMIN_SYNC_ALL)
    def sync_all_integrations() -> JSONResponse:
        return JSONResponse(content=container.get_sync_service().sync_all())

    @app.get(APIEndpoints.ADMIN_STATS)
    def system_stats() -> JSONResponse:
        return JSONResponse(content=container.get_analytics_service().system_stats())

    @app.get(APIEndpoints.ADMIN_INTEGRATIONS)
    def list_integrations() -> JSONResponse:
        return JSONResponse(content={"integrations": container.get_analytics_service().list_integrations()})

    logger.info("api_initialized", environment=settings.environment)
    return app


if __name__ == "__main__":
    _settings = get_settings()
    configure_logging(_settings.log_level)
    uvicorn.run(
        "api_service.src.main:create_app",
        factory=True,
        host=_settings.api_host,
        port=_settings.api_port,
        log_level="info"
    )
