"""
Shared HTTP plumbing for the platform client adapters.

Maps transport and status failures onto the pipeline's error taxonomy:
401 -> AuthExpiredError, 429 -> RateLimitedError, anything else ->
CollaboratorError.
"""

from __future__ import annotations

from typing import Any, Optional

import requests

from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import AuthExpiredError, CollaboratorError, RateLimitedError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class PlatformHttpClient:
    """Bearer-token HTTP client with platform error mapping."""

    service_name = "Platform"

    def __init__(
        self,
        access_token: str,
        timeout: float = Defaults.REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {access_token}"})

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("platform_request_failed", service=self.service_name, url=url, error=str(exc))
            raise CollaboratorError(self.service_name, f"request failed: {exc}") from exc

        if response.status_code == 401:
            raise AuthExpiredError(
                f"{self.service_name} rejected the access token",
                context={"url": url},
            )
        if response.status_code == 429:
            retry_after = _retry_after(response)
            logger.warning(
                "platform_rate_limited",
                service=self.service_name,
                url=url,
                retry_after=retry_after,
            )
            raise RateLimitedError(self.service_name, retry_after=retry_after, context={"url": url})
        if response.status_code >= 400:
            raise CollaboratorError(
                self.service_name,
                f"HTTP {response.status_code}",
                context={"url": url, "status": response.status_code},
            )
        return response

    def _get_json(self, url: str, **kwargs: Any) -> dict:
        response = self._request("GET", url, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise CollaboratorError(self.service_name, "response was not JSON", context={"url": url}) from exc

    def download_file(self, url: str) -> bytes:
        """Download an authenticated file."""
        response = self._request("GET", url)
        logger.info("platform_file_downloaded", service=self.service_name, size_bytes=len(response.content))
        return response.content
