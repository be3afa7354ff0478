"""
Thin async S3 wrapper used by the maintenance tools.

Keys passed in and returned are full object keys (prefix included).

Example:
    >>> async with S3Storage(config.s3) as storage:
    ...     async for key in storage.list_keys("mhc/media/people/"):
    ...         print(key)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from aiobotocore.session import get_session
from botocore.exceptions import ClientError

from ..config import S3Config

logger = logging.getLogger(__name__)


class S3Storage:
    """Object operations against the media bucket."""

    def __init__(self, config: S3Config) -> None:
        self.config = config
        self.bucket = config.bucket
        self._session = get_session()
        self._client_ctx: Any = None
        self._client: Any = None

    async def __aenter__(self) -> S3Storage:
        client_kwargs: dict[str, Any] = {"region_name": self.config.region}
        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url
        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

        self._client_ctx = self._session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._client is not None:
            await self._client_ctx.__aexit__(*exc_info)
            self._client = None

    async def exists(self, key: str) -> bool:
        try:
            await self._client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    async def copy(self, src: str, dst: str) -> bool:
        try:
            await self._client.copy_object(
                Bucket=self.bucket,
                Key=dst,
                CopySource={"Bucket": self.bucket, "Key": src},
            )
            return True
        except ClientError as e:
            logger.warning("S3 copy failed", extra={"src": src, "dst": dst, "error": str(e)})
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._client.delete_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            logger.warning("S3 delete failed", extra={"key": key, "error": str(e)})
            return False

    async def list_keys(self, prefix: str) -> AsyncIterator[str]:
        """Yield every key under prefix, following pagination."""
        paginator = self._client.get_paginator("list_objects_v2")
        async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                yield obj["Key"]
