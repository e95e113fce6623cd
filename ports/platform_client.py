"""
Port interface for collaboration platform API clients.

Implementations: SlackClientAdapter, TeamsClientAdapter (adapters/)
"""

from __future__ import annotations

from typing import Callable, List, Optional, Protocol, runtime_checkable

from domain.models import Container, Integration, MessagePage, Source


@runtime_checkable
class PlatformClientPort(Protocol):
    """Read-only access to one authenticated platform workspace."""

    source: Source

    def list_containers(self) -> List[Container]:
        """Enumerate channels/conversations visible to the integration.

        Raises:
            AuthExpiredError: Token rejected.
            RateLimitedError: Platform throttled the request.
            CollaboratorError: Any other failure.
        """
        ...

    def list_messages(self, container_id: str, cursor: Optional[str] = None) -> MessagePage:
        """Fetch one page of raw messages for a container.

        Args:
            container_id: Container id from ``list_containers``.
            cursor: Opaque cursor from the previous page; ``None`` for the first.
        """
        ...

    def resolve_author(self, author_id: str) -> Optional[str]:
        """Return a display name for ``author_id`` or ``None`` if unknown."""
        ...

    def download_file(self, url: str) -> bytes:
        """Download an authenticated file (e.g. a meeting recording)."""
        ...


PlatformClientFactory = Callable[[Integration], PlatformClientPort]


@runtime_checkable
class CredentialRefresherPort(Protocol):
    """Exchanges a refresh token for a new access token."""

    def refresh(self, integration: Integration) -> Integration:
        """Return the integration with renewed credentials.

        Raises:
            AuthExpiredError: The refresh token is itself invalid.
        """
        ...
