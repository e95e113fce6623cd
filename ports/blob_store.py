"""
Port interface for audio blob storage.

Implementations: S3BlobStoreAdapter, InMemoryBlobStoreAdapter (adapters/)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class BlobStorePort(Protocol):
    """Abstract interface for opaque byte storage addressed by key."""

    def put(self, key: str, content: bytes, content_type: str) -> str:
        """Store bytes under a key.

        Args:
            key: Object key (e.g. recordings/slack/2025/01/10/<id>.wav).
            content: Raw bytes.
            content_type: MIME type recorded with the object.

        Returns:
            Canonical URL of the stored object.

        Raises:
            ExternalServiceError: If the backend rejects the write.
        """
        ...

    def get(self, key: str) -> bytes:
        """Fetch bytes previously stored under ``key``.

        Raises:
            ExternalServiceError: If the object is missing or unreadable.
        """
        ...
