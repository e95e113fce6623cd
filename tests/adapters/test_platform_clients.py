"""
Tests for the Slack and Teams adapters with a mocked requests.Session.
"""

from unittest.mock import MagicMock

import pytest
import requests

from adapters.slack_client import SlackClientAdapter
from adapters.teams_client import (
    TeamsClientAdapter,
    TeamsCredentialRefresher,
    make_container_id,
    split_container_id,
)
from domain.models import Integration, Source
from shared_utils.error_handler import AuthExpiredError, CollaboratorError, RateLimitedError


def _response(status=200, payload=None, headers=None, content=b""):
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else {}
    response.content = content
    return response


def _session(*responses):
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return session


# ---------------------------------------------------------------------------
# Shared HTTP error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:
    def test_bearer_token_header(self) -> None:
        session = _session()
        SlackClientAdapter("xoxb-1", session=session)
        assert session.headers["Authorization"] == "Bearer xoxb-1"

    def test_401_is_auth_expired(self) -> None:
        client = TeamsClientAdapter("t", session=_session(_response(401)))
        with pytest.raises(AuthExpiredError):
            client.list_messages("T1/C1")

    def test_429_carries_retry_after(self) -> None:
        client = TeamsClientAdapter("t", session=_session(_response(429, headers={"Retry-After": "12"})))
        with pytest.raises(RateLimitedError) as exc_info:
            client.list_messages("T1/C1")
        assert exc_info.value.context["retry_after"] == 12.0

    def test_transport_failure_is_collaborator_error(self) -> None:
        session = _session()
        session.request.side_effect = requests.ConnectionError("reset")
        client = TeamsClientAdapter("t", session=session)
        with pytest.raises(CollaboratorError):
            client.list_messages("T1/C1")

    def test_download_file(self) -> None:
        client = SlackClientAdapter("x", session=_session(_response(content=b"audio")))
        assert client.download_file("https://files.slack.com/rec.mp3") == b"audio"


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------


class TestSlackClient:
    def test_list_containers_follows_cursor(self) -> None:
        session = _session(
            _response(payload={"ok": True, "channels": [{"id": "C1", "name": "general"}],
                               "response_metadata": {"next_cursor": "abc"}}),
            _response(payload={"ok": True, "channels": [{"id": "C2", "name": "random"}],
                               "response_metadata": {"next_cursor": ""}}),
        )

        containers = SlackClientAdapter("x", session=session).list_containers()

        assert [c.id for c in containers] == ["C1", "C2"]
        assert session.request.call_args_list[1].kwargs["params"]["cursor"] == "abc"

    def test_list_messages_page(self) -> None:
        session = _session(
            _response(payload={"ok": True, "messages": [{"ts": "1.1"}], "response_metadata": {"next_cursor": "n"}})
        )

        page = SlackClientAdapter("x", session=session).list_messages("C1")

        assert page.messages == [{"ts": "1.1"}]
        assert page.next_cursor == "n"
        assert session.request.call_args.kwargs["params"]["channel"] == "C1"

    def test_ok_false_auth_error(self) -> None:
        session = _session(_response(payload={"ok": False, "error": "token_revoked"}))
        with pytest.raises(AuthExpiredError):
            SlackClientAdapter("x", session=session).list_messages("C1")

    def test_ok_false_other_error(self) -> None:
        session = _session(_response(payload={"ok": False, "error": "channel_not_found"}))
        with pytest.raises(CollaboratorError, match="channel_not_found"):
            SlackClientAdapter("x", session=session).list_messages("C1")

    def test_resolve_author_prefers_real_name(self) -> None:
        session = _session(_response(payload={"ok": True, "user": {"name": "alice", "real_name": "Alice Smith"}}))
        assert SlackClientAdapter("x", session=session).resolve_author("U1") == "Alice Smith"

    def test_resolve_author_failure_returns_none(self) -> None:
        session = _session(_response(payload={"ok": False, "error": "user_not_found"}))
        assert SlackClientAdapter("x", session=session).resolve_author("U1") is None

    def test_resolve_author_auth_failure_propagates(self) -> None:
        session = _session(_response(payload={"ok": False, "error": "invalid_auth"}))
        with pytest.raises(AuthExpiredError):
            SlackClientAdapter("x", session=session).resolve_author("U1")


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TestTeamsClient:
    def test_container_ids_round_trip(self) -> None:
        container_id = make_container_id("T1", "19:abc@thread.tacv2")
        assert split_container_id(container_id) == ("T1", "19:abc@thread.tacv2")

    def test_malformed_container_id(self) -> None:
        with pytest.raises(CollaboratorError):
            split_container_id("no-separator")

    def test_list_containers_walks_teams_and_channels(self) -> None:
        session = _session(
            _response(payload={"value": [{"id": "T1", "displayName": "Eng"}]}),
            _response(payload={"value": [{"id": "C1", "displayName": "General"}],
                               "@odata.nextLink": "https://graph/next"}),
            _response(payload={"value": [{"id": "C2", "displayName": "Ops"}]}),
        )

        containers = TeamsClientAdapter("t", session=session).list_containers()

        assert [c.id for c in containers] == ["T1/C1", "T1/C2"]
        assert containers[0].name == "Eng / General"
        assert containers[0].parent_id == "T1"

    def test_list_messages_uses_next_link_cursor(self) -> None:
        session = _session(
            _response(payload={"value": [{"id": "m1"}], "@odata.nextLink": "https://graph/page2"}),
            _response(payload={"value": [{"id": "m2"}]}),
        )
        client = TeamsClientAdapter("t", session=session)

        first = client.list_messages("T1/C1")
        second = client.list_messages("T1/C1", cursor=first.next_cursor)

        assert first.next_cursor == "https://graph/page2"
        assert second.next_cursor is None
        assert session.request.call_args_list[0][0][1].endswith("/teams/T1/channels/C1/messages")
        assert session.request.call_args_list[1][0][1] == "https://graph/page2"

    def test_resolve_author_not_found(self) -> None:
        client = TeamsClientAdapter("t", session=_session(_response(404)))
        assert client.resolve_author("u1") is None


class TestTeamsCredentialRefresher:
    def _integration(self, refresh_token="r1") -> Integration:
        return Integration(id="i1", platform=Source.TEAMS, access_token="old", refresh_token=refresh_token)

    def test_refresh_persists_new_token(self) -> None:
        session = MagicMock()
        session.post.return_value = _response(
            payload={"access_token": "new", "refresh_token": "r2", "expires_in": 3600}
        )
        store = MagicMock()
        refresher = TeamsCredentialRefresher("cid", "secret", store, tenant_id="tenant-1", session=session)

        renewed = refresher.refresh(self._integration())

        assert renewed.access_token == "new"
        assert renewed.refresh_token == "r2"
        assert renewed.expires_at is not None
        store.save_integration.assert_called_once_with(renewed)
        assert "tenant-1" in session.post.call_args[0][0]
        assert session.post.call_args.kwargs["data"]["grant_type"] == "refresh_token"

    def test_rejected_refresh_token(self) -> None:
        session = MagicMock()
        session.post.return_value = _response(400)
        refresher = TeamsCredentialRefresher("cid", "secret", MagicMock(), session=session)

        with pytest.raises(AuthExpiredError):
            refresher.refresh(self._integration())

    def test_missing_refresh_token(self) -> None:
        refresher = TeamsCredentialRefresher("cid", "secret", MagicMock(), session=MagicMock())
        with pytest.raises(AuthExpiredError):
            refresher.refresh(self._integration(refresh_token=None))
