"""
Slack Web API client adapter.

Implements PlatformClientPort for one Slack workspace token.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from adapters.platform_http import PlatformHttpClient, logger
from domain.models import Container, MessagePage, Source
from shared_utils.constants import Defaults
from shared_utils.error_handler import AuthExpiredError, CollaboratorError, RateLimitedError


SLACK_API_BASE = "https://slack.com/api"

AUTH_ERRORS = frozenset(
    {"invalid_auth", "not_authed", "token_expired", "token_revoked", "account_inactive"}
)


class SlackClientAdapter(PlatformHttpClient):
    """Slack implementation of PlatformClientPort.

    Containers are public and private conversations. Pages come from
    ``conversations.history`` using Slack's ``next_cursor`` pagination.
    """

    service_name = "Slack"
    source = Source.SLACK

    def __init__(
        self,
        access_token: str,
        timeout: float = Defaults.REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
        base_url: str = SLACK_API_BASE,
        page_limit: int = Defaults.SLACK_PAGE_LIMIT,
    ) -> None:
        super().__init__(access_token, timeout=timeout, session=session)
        self._base_url = base_url.rstrip("/")
        self._page_limit = page_limit

    # ------------------------------------------------------------------
    # PlatformClientPort implementation
    # ------------------------------------------------------------------

    def list_containers(self) -> List[Container]:
        containers: List[Container] = []
        cursor: Optional[str] = None
        while True:
            params: Dict[str, Any] = {
                "types": "public_channel,private_channel",
                "exclude_archived": "true",
                "limit": self._page_limit,
            }
            if cursor:
                params["cursor"] = cursor
            data = self._call("conversations.list", params)
            containers.extend(
                Container(id=ch["id"], name=ch.get("name", ""))
                for ch in data.get("channels", [])
            )
            cursor = _next_cursor(data)
            if not cursor:
                break
        logger.info("slack_containers_listed", count=len(containers))
        return containers

    def list_messages(self, container_id: str, cursor: Optional[str] = None) -> MessagePage:
        params: Dict[str, Any] = {"channel": container_id, "limit": self._page_limit}
        if cursor:
            params["cursor"] = cursor
        data = self._call("conversations.history", params)
        return MessagePage(messages=data.get("messages", []), next_cursor=_next_cursor(data))

    def resolve_author(self, author_id: str) -> Optional[str]:
        try:
            data = self._call("users.info", {"user": author_id})
        except RateLimitedError:
            raise
        except CollaboratorError as exc:
            logger.warning("slack_author_unresolved", author_id=author_id, error=exc.message)
            return None
        user = data.get("user") or {}
        profile = user.get("profile") or {}
        return user.get("real_name") or profile.get("real_name") or user.get("name") or None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _call(self, method: str, params: Dict[str, Any]) -> dict:
        """Invoke a Web API method; Slack reports most failures as ``ok: false``."""
        data = self._get_json(f"{self._base_url}/{method}", params=params)
        if data.get("ok"):
            return data

        error = data.get("error", "unknown_error")
        if error in AUTH_ERRORS:
            raise AuthExpiredError("Slack rejected the access token", context={"error": error})
        if error == "ratelimited":
            raise RateLimitedError("Slack", context={"method": method})
        raise CollaboratorError("Slack", error, context={"method": method})


def _next_cursor(data: dict) -> Optional[str]:
    cursor = (data.get("response_metadata") or {}).get("next_cursor")
    return cursor or None
