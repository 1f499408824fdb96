"""S3-compatible object storage for processed product images."""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from dupefinder.errors import ImagePipelineError
from dupefinder.utils.concurrency import run_sync
from dupefinder.utils.retry import retry_async

logger = logging.getLogger(__name__)


class ObjectStorage:
    def __init__(
        self,
        bucket: str,
        *,
        endpoint: str | None = None,
        public_base_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        attempts: int = 3,
        base_delay: float = 1.0,
        client: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self.public_base_url = (public_base_url or endpoint or "").rstrip("/")
        self.attempts = attempts
        self.base_delay = base_delay
        if client is None:
            session = boto3.session.Session()
            client = session.client(
                "s3",
                endpoint_url=endpoint,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
            )
        self.client = client

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{key}"

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` (overwriting) and return its public URL."""

        async def put() -> None:
            await run_sync(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl="3600",
            )

        try:
            await retry_async(put, attempts=self.attempts, base_delay=self.base_delay, retry_on=_is_transient)()
        except (BotoCoreError, ClientError) as exc:
            raise ImagePipelineError("Upload failed", context={"key": key, "error": str(exc)}) from exc
        logger.info("Uploaded %s (%s bytes)", key, len(data))
        return self.public_url(key)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ClientError):
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return status == 429 or status >= 500
    return isinstance(exc, BotoCoreError)
