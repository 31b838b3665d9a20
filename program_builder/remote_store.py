"""S3-compatible object store for built program binaries."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from program_builder.errors import StorageError
from program_builder.settings import Settings

logger = logging.getLogger(__name__)

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


class S3ObjectStore:
    """Async facade over a boto3 S3 client bound to one bucket.

    boto3 is blocking, so every call is pushed to a worker thread.
    """

    def __init__(self, bucket: str, client: Any = None, **client_kwargs: Any) -> None:
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            **client_kwargs,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        return cls(
            settings.remote_bucket,
            endpoint_url=settings.remote_endpoint_url,
            region_name=settings.remote_region,
        )

    async def put(self, key: str, data: bytes) -> None:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType="application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"upload of {key} to {self.bucket} failed: {exc}") from exc
        logger.info("uploaded %s (%d bytes) to bucket %s", key, len(data), self.bucket)

    async def get(self, key: str) -> bytes | None:
        """Download an object; None if the key does not exist."""
        try:
            return await asyncio.to_thread(self._download, key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_KEY_CODES:
                logger.debug("object %s not found in bucket %s", key, self.bucket)
                return None
            raise StorageError(f"download of {key} from {self.bucket} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"download of {key} from {self.bucket} failed: {exc}") from exc

    def _download(self, key: str) -> bytes:
        response = self._client.get_object(Bucket=self.bucket, Key=key)
        return response["Body"].read()
