"""
In-memory blob store adapter for local development.

Implements BlobStorePort with a dict keyed by object key. Used when
BLOB_BACKEND=memory (tests, single-process demos).

NOT for production. Nothing survives a restart.
"""

from __future__ import annotations

import threading
from typing import Dict, Tuple

from shared_utils.constants import LogScope
from shared_utils.error_handler import ExternalServiceError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)


class InMemoryBlobStoreAdapter:
    """Dict-backed implementation of BlobStorePort."""

    def __init__(self, base_url: str = "memory://blobs") -> None:
        self._base_url = base_url.rstrip("/")
        self._objects: Dict[str, Tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # BlobStorePort implementation
    # ------------------------------------------------------------------

    def put(self, key: str, content: bytes, content_type: str) -> str:
        with self._lock:
            self._objects[key] = (bytes(content), content_type)
        logger.info("inmemory_blob_stored", key=key, size_bytes=len(content))
        return f"{self._base_url}/{key}"

    def get(self, key: str) -> bytes:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise ExternalServiceError("MemoryBlobStore", f"Object not found: {key}")
        return entry[0]

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def content_type(self, key: str) -> str:
        return self._objects[key][1]

    def __len__(self) -> int:
        return len(self._objects)
