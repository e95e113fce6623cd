"""
Webhook ingestion: push-path counterpart to SyncService.

Every inbound request is authenticated before anything is written:
    Slack  -> v0 HMAC-SHA256 over "v0:{timestamp}:{raw body}", 5 minute window
    Teams  -> per-notification ``clientState`` shared secret
Both compare in constant time.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from adapters.teams_client import make_container_id
from core_intelligence.parser.message_normalizer import MessageNormalizer
from domain.models import Container, Source
from services.job_queue import utc_now
from services.sync_service import SyncService
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import (
    NotConfiguredError,
    SignatureInvalidError,
    ValidationError,
)
from shared_utils.logging_utils import get_scoped_logger

logger = get_scoped_logger(LogScope.WEBHOOK)

TEAMS_RESOURCE_PATTERN = re.compile(r"teams\('([^']+)'\)/channels\('([^']+)'\)")


def slack_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    base = b"v0:" + timestamp.encode("utf-8") + b":" + raw_body
    return "v0=" + hmac.new(secret.encode("utf-8"), base, hashlib.sha256).hexdigest()


def teams_container_from_resource(resource: str) -> Container:
    """``teams('T')/channels('C')/messages('M')`` -> Container("T/C")."""
    match = TEAMS_RESOURCE_PATTERN.search(resource or "")
    if not match:
        return Container(id=resource or "", name="")
    team_id, channel_id = match.groups()
    return Container(id=make_container_id(team_id, channel_id), name="", parent_id=team_id)


class WebhookService:
    """Verifies and ingests Slack events and Teams change notifications."""

    def __init__(
        self,
        *,
        sync_service: SyncService,
        slack_signing_secret: Optional[str] = None,
        teams_webhook_secret: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._sync = sync_service
        self._slack_secret = slack_signing_secret
        self._teams_secret = teams_webhook_secret
        self._clock = clock

    # ------------------------------------------------------------------
    # Slack
    # ------------------------------------------------------------------

    def verify_slack_signature(self, raw_body: bytes, timestamp: str, signature: str) -> None:
        """Raise SignatureInvalidError unless the request is authentic and fresh."""
        if not self._slack_secret:
            raise NotConfiguredError("Slack signing secret")
        if not timestamp or not signature:
            raise SignatureInvalidError("Missing Slack signature headers")
        try:
            age = abs(self._clock().timestamp() - int(timestamp))
        except ValueError as exc:
            raise SignatureInvalidError("Malformed Slack timestamp") from exc
        if age > Defaults.SLACK_SIGNATURE_MAX_AGE_SECONDS:
            raise SignatureInvalidError("Stale Slack request", context={"age_seconds": int(age)})

        expected = slack_signature(self._slack_secret, timestamp, raw_body)
        if not hmac.compare_digest(expected, signature):
            raise SignatureInvalidError("Slack signature mismatch")

    def handle_slack_event(self, raw_body: bytes, timestamp: str, signature: str) -> Dict[str, Any]:
        self.verify_slack_signature(raw_body, timestamp, signature)
        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError as exc:
            raise ValidationError("Slack event body is not JSON") from exc

        if payload.get("type") == "url_verification":
            return {"challenge": payload.get("challenge")}

        event = payload.get("event") or {}
        if event.get("type") != "message" or event.get("subtype") or event.get("bot_id"):
            logger.debug("slack_event_ignored", event_type=event.get("type"), subtype=event.get("subtype"))
            return {"success": True, "ingested": 0}

        container = Container(id=event.get("channel") or "", name="")
        message = MessageNormalizer.normalize(Source.SLACK, event, container)
        stored = self._sync.ingest_message(message)
        logger.info("slack_event_ingested", source_id=message.source_id, stored=stored is not None)
        return {"success": True, "ingested": 1 if stored else 0}

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    def verify_teams_client_state(self, notifications: List[Dict[str, Any]], fallback: Optional[str]) -> None:
        if not self._teams_secret:
            raise NotConfiguredError("Teams webhook secret")
        for item in notifications:
            client_state = item.get("clientState") or fallback or ""
            if not hmac.compare_digest(client_state.encode("utf-8"), self._teams_secret.encode("utf-8")):
                raise SignatureInvalidError(
                    "Teams clientState mismatch",
                    context={"subscription_id": item.get("subscriptionId")},
                )

    def handle_teams_notification(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        notifications = payload.get("value") or []
        self.verify_teams_client_state(notifications, payload.get("clientState"))

        ingested = 0
        skipped = 0
        for item in notifications:
            resource_data = item.get("resourceData")
            if item.get("changeType") != "created" or not resource_data:
                skipped += 1
                continue
            raw = dict(resource_data)
            raw.setdefault("createdDateTime", self._clock().isoformat())
            container = teams_container_from_resource(item.get("resource", ""))
            try:
                message = MessageNormalizer.normalize(Source.TEAMS, raw, container)
            except ValidationError as exc:
                skipped += 1
                logger.warning("teams_notification_malformed", error=exc.message)
                continue
            if self._sync.ingest_message(message) is None:
                skipped += 1
            else:
                ingested += 1

        logger.info("teams_notification_processed", ingested=ingested, skipped=skipped)
        return {"success": True, "ingested": ingested, "skipped": skipped}
