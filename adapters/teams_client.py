"""
Microsoft Graph (Teams) client adapter and OAuth token refresher.

Implements PlatformClientPort over joined teams and their channels, and
CredentialRefresherPort for the refresh-token grant.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests

from adapters.platform_http import PlatformHttpClient, logger
from domain.models import Container, Integration, MessagePage, Source
from ports.record_store import IntegrationStorePort
from shared_utils.constants import Defaults
from shared_utils.error_handler import AuthExpiredError, CollaboratorError


GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"

# Channel ids contain ':' and '@' but never '/'
CONTAINER_SEPARATOR = "/"


def make_container_id(team_id: str, channel_id: str) -> str:
    return f"{team_id}{CONTAINER_SEPARATOR}{channel_id}"


def split_container_id(container_id: str) -> tuple[str, str]:
    team_id, sep, channel_id = container_id.partition(CONTAINER_SEPARATOR)
    if not sep or not team_id or not channel_id:
        raise CollaboratorError("Teams", f"malformed container id {container_id!r}")
    return team_id, channel_id


class TeamsClientAdapter(PlatformHttpClient):
    """Graph implementation of PlatformClientPort.

    Containers are ``team_id/channel_id`` pairs. The page cursor is the
    ``@odata.nextLink`` URL returned by Graph.
    """

    service_name = "Teams"
    source = Source.TEAMS

    def __init__(
        self,
        access_token: str,
        timeout: float = Defaults.REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
        base_url: str = GRAPH_API_BASE,
        page_size: int = Defaults.TEAMS_PAGE_SIZE,
    ) -> None:
        super().__init__(access_token, timeout=timeout, session=session)
        self._base_url = base_url.rstrip("/")
        self._page_size = page_size

    # ------------------------------------------------------------------
    # PlatformClientPort implementation
    # ------------------------------------------------------------------

    def list_containers(self) -> List[Container]:
        containers: List[Container] = []
        for team in self._collect(f"{self._base_url}/me/joinedTeams"):
            team_id = team["id"]
            team_name = team.get("displayName", "")
            for channel in self._collect(f"{self._base_url}/teams/{team_id}/channels"):
                containers.append(
                    Container(
                        id=make_container_id(team_id, channel["id"]),
                        name=f"{team_name} / {channel.get('displayName', '')}".strip(" /"),
                        parent_id=team_id,
                    )
                )
        logger.info("teams_containers_listed", count=len(containers))
        return containers

    def list_messages(self, container_id: str, cursor: Optional[str] = None) -> MessagePage:
        if cursor:
            data = self._get_json(cursor)
        else:
            team_id, channel_id = split_container_id(container_id)
            data = self._get_json(
                f"{self._base_url}/teams/{team_id}/channels/{channel_id}/messages",
                params={"$top": self._page_size},
            )
        return MessagePage(messages=data.get("value", []), next_cursor=data.get("@odata.nextLink"))

    def resolve_author(self, author_id: str) -> Optional[str]:
        try:
            data = self._get_json(f"{self._base_url}/users/{author_id}", params={"$select": "displayName"})
        except AuthExpiredError:
            raise
        except CollaboratorError as exc:
            logger.warning("teams_author_unresolved", author_id=author_id, error=exc.message)
            return None
        return data.get("displayName") or None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _collect(self, url: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        while next_url:
            data = self._get_json(next_url)
            items.extend(data.get("value", []))
            next_url = data.get("@odata.nextLink")
        return items


class TeamsCredentialRefresher:
    """Exchanges a Teams refresh token and persists the renewed integration."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        integration_store: IntegrationStorePort,
        tenant_id: str = "common",
        timeout: float = Defaults.REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._integrations = integration_store
        self._token_url = TOKEN_URL_TEMPLATE.format(tenant=tenant_id or "common")
        self._timeout = timeout
        self._session = session or requests.Session()

    def refresh(self, integration: Integration) -> Integration:
        if not integration.refresh_token:
            raise AuthExpiredError(
                "Teams integration has no refresh token",
                context={"integration_id": integration.id},
            )
        try:
            response = self._session.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": integration.refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise CollaboratorError("TeamsOAuth", f"token refresh failed: {exc}") from exc

        if response.status_code in (400, 401):
            raise AuthExpiredError(
                "Teams refresh token was rejected",
                context={"integration_id": integration.id, "status": response.status_code},
            )
        if response.status_code >= 400:
            raise CollaboratorError("TeamsOAuth", f"HTTP {response.status_code}")

        payload = response.json()
        renewed = integration.model_copy(
            update={
                "access_token": payload["access_token"],
                "refresh_token": payload.get("refresh_token") or integration.refresh_token,
                "expires_at": datetime.now(timezone.utc)
                + timedelta(seconds=int(payload.get("expires_in", 3600))),
            }
        )
        self._integrations.save_integration(renewed)
        logger.info("teams_token_refreshed", integration_id=integration.id)
        return renewed
