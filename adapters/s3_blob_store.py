"""
S3-backed blob store adapter.

Implements BlobStorePort using boto3 for recorded meeting audio.
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import ExternalServiceError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)


class S3BlobStoreAdapter:
    """Amazon S3 implementation of BlobStorePort.

    Objects live under ``{bucket}/{prefix}/{key}``. The returned URL is the
    virtual-hosted S3 URL (or the custom endpoint URL for LocalStack/MinIO).
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: str = Defaults.AWS_REGION,
        endpoint_url: str = "",
        s3_client: Optional[object] = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self.endpoint_url = endpoint_url.rstrip("/")
        client_kwargs: dict = {"region_name": region}
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        self._s3 = s3_client or boto3.client("s3", **client_kwargs)

    # ------------------------------------------------------------------
    # BlobStorePort implementation
    # ------------------------------------------------------------------

    def put(self, key: str, content: bytes, content_type: str) -> str:
        """Upload bytes to S3 and return the object URL."""
        full_key = self._full_key(key)
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=full_key,
                Body=content,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("s3_put_failed", key=full_key, error=str(exc))
            raise ExternalServiceError("S3", f"Failed to store object: {exc}") from exc

        url = self.object_url(full_key)
        logger.info("blob_stored", key=full_key, size_bytes=len(content), content_type=content_type)
        return url

    def get(self, key: str) -> bytes:
        """Download object bytes from S3."""
        full_key = self._full_key(key)
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=full_key)
            data: bytes = response["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            logger.error("s3_get_failed", key=full_key, error=str(exc))
            raise ExternalServiceError("S3", f"Failed to read object: {exc}") from exc

        logger.info("blob_downloaded", key=full_key, size_bytes=len(data))
        return data

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _full_key(self, key: str) -> str:
        key = key.lstrip("/")
        return f"{self.prefix}/{key}" if self.prefix else key

    def object_url(self, full_key: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{full_key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{full_key}"
