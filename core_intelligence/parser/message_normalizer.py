"""
Platform message normalization.
Turns raw Slack / Microsoft Graph message payloads into PlatformMessage.

Shared by the sync engine (pull) and webhook ingestion (push) so both paths
produce the same dedup key and the same content for a given message.
"""

import html
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from domain.models import Container, PlatformMessage, Source
from shared_utils.constants import LogScope, Sentinels
from shared_utils.error_handler import ValidationError
from shared_utils.logging_utils import ContextualLogger


logger = ContextualLogger(scope=LogScope.PARSER)


# Slack subtypes that still carry a human-authored message
SLACK_CONTENT_SUBTYPES = frozenset({"thread_broadcast", "file_share", "me_message"})

TAG_PATTERN: re.Pattern = re.compile(r"<[^>]+>")
BLOCK_BREAK_PATTERN: re.Pattern = re.compile(r"<\s*(br|/p|/div|/li)\s*/?>", re.IGNORECASE)
WHITESPACE_PATTERN: re.Pattern = re.compile(r"[ \t\r\f\v]+")


def parse_slack_ts(ts: Any) -> datetime:
    """Slack ``ts`` is epoch seconds with a microsecond suffix ("1736503200.000100")."""
    try:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Invalid Slack timestamp", context={"ts": ts}) from exc


def parse_iso_timestamp(value: Any) -> datetime:
    """Parse Graph ISO-8601 timestamps (``Z`` suffix, up to 7 fractional digits)."""
    if not isinstance(value, str) or not value:
        raise ValidationError("Missing ISO timestamp", context={"value": value})
    text = value.strip().replace("Z", "+00:00")
    match = re.match(r"^(.*T\d{2}:\d{2}:\d{2})(\.\d+)?(.*)$", text)
    if match:
        base, fraction, tail = match.groups()
        if fraction:
            fraction = fraction[:7]
        text = f"{base}{fraction or ''}{tail}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError("Invalid ISO timestamp", context={"value": value}) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def strip_html(content: str) -> str:
    """Reduce Teams HTML message bodies to plain text."""
    if not content:
        return ""
    text = BLOCK_BREAK_PATTERN.sub("\n", content)
    text = TAG_PATTERN.sub("", text)
    text = html.unescape(text)
    lines = [WHITESPACE_PATTERN.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


class MessageNormalizer:
    """Maps raw platform payloads to PlatformMessage.

    Bot and system messages are returned with ``is_system=True`` so callers
    can count and skip them.
    """

    @staticmethod
    def from_slack(raw: Dict[str, Any], container: Container) -> PlatformMessage:
        """Normalize a Slack ``conversations.history`` or Events API message."""
        ts = raw.get("ts")
        if not ts:
            raise ValidationError("Slack message has no ts", context={"channel": container.id})

        subtype = raw.get("subtype")
        is_system = bool(raw.get("bot_id")) or (
            subtype is not None and subtype not in SLACK_CONTENT_SUBTYPES
        )

        profile = raw.get("user_profile") or {}
        author_name = profile.get("real_name") or profile.get("name") or None

        return PlatformMessage(
            source=Source.SLACK,
            source_id=str(ts),
            channel_id=raw.get("channel") or container.id,
            channel_name=container.name,
            author_id=raw.get("user") or Sentinels.UNKNOWN_AUTHOR_ID,
            author_name=author_name,
            content=raw.get("text") or "",
            timestamp=parse_slack_ts(ts),
            is_system=is_system,
        )

    @staticmethod
    def from_teams(raw: Dict[str, Any], container: Container) -> PlatformMessage:
        """Normalize a Microsoft Graph ``chatMessage`` resource."""
        message_id = raw.get("id")
        if not message_id:
            raise ValidationError("Teams message has no id", context={"channel": container.id})

        sender = raw.get("from") or {}
        user = sender.get("user") or {}
        is_system = (
            raw.get("messageType", "message") != "message"
            or bool(sender.get("application"))
            or not user
        )

        body = raw.get("body") or {}
        content = body.get("content") or ""
        if (body.get("contentType") or "html").lower() == "html":
            content = strip_html(content)

        return PlatformMessage(
            source=Source.TEAMS,
            source_id=str(message_id),
            channel_id=(raw.get("channelIdentity") or {}).get("channelId") or container.id,
            channel_name=container.name,
            author_id=user.get("id") or Sentinels.UNKNOWN_AUTHOR_ID,
            author_name=user.get("displayName") or None,
            content=content,
            timestamp=parse_iso_timestamp(raw.get("createdDateTime")),
            is_system=is_system,
        )

    @classmethod
    def normalize(
        cls,
        source: Source,
        raw: Dict[str, Any],
        container: Optional[Container] = None,
    ) -> PlatformMessage:
        container = container or Container(id="", name="")
        if source == Source.SLACK:
            message = cls.from_slack(raw, container)
        else:
            message = cls.from_teams(raw, container)
        logger.debug(
            "message_normalized",
            source=source.value,
            source_id=message.source_id,
            is_system=message.is_system,
        )
        return message
