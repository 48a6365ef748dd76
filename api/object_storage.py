"""
Object storage client for processed videos.

Uploads go through boto3's managed transfer (multipart for large files).
The blocking call runs in the default executor under a timeout, so a slow
bucket never stalls the event loop.
"""

import asyncio
import functools
import logging
import threading
from pathlib import Path
from typing import Optional, Protocol

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class ObjectStorageError(Exception):
    """An object could not be stored."""

    pass


class UploadCancelledError(ObjectStorageError):
    """A transfer was stopped because its caller gave up on it."""

    pass


class ObjectStorage(Protocol):
    async def put_object(self, key: str, path: Path, content_type: str) -> None: ...


def s3_object_url(bucket: str, region: str, key: str) -> str:
    """Public virtual-hosted-style URL of an object."""
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


class S3ObjectStorage:
    """ObjectStorage backed by an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        region: str,
        endpoint_url: Optional[str] = None,
        timeout: float = 300.0,
        client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.timeout = timeout
        self._client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url or None,
            config=BotoConfig(signature_version="s3v4", retries={"max_attempts": 3, "mode": "standard"}),
        )

    def _upload_sync(self, key: str, path: Path, content_type: str, cancelled: threading.Event) -> None:
        def check_cancelled(bytes_transferred: int) -> None:
            if cancelled.is_set():
                raise UploadCancelledError(f"Upload of {key} cancelled")

        self._client.upload_file(
            str(path),
            self.bucket,
            key,
            ExtraArgs={"ContentType": content_type},
            Callback=check_cancelled,
        )

    async def put_object(self, key: str, path: Path, content_type: str) -> None:
        """
        Upload the file at ``path`` as ``key``.

        On timeout or cancellation the transfer is told to stop at its next
        progress report. A part already in flight may still complete, and an
        unfinished multipart upload is aborted by the transfer manager.

        Raises:
            ObjectStorageError: On any S3 error or when the upload exceeds the timeout
        """
        if not self.bucket:
            raise ObjectStorageError("No bucket configured")

        loop = asyncio.get_running_loop()
        cancelled = threading.Event()
        try:
            await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(self._upload_sync, key, path, content_type, cancelled)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            cancelled.set()
            raise ObjectStorageError(f"Upload of {key} timed out after {self.timeout}s") from e
        except asyncio.CancelledError:
            cancelled.set()
            raise
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as e:
            raise ObjectStorageError(f"Upload of {key} to bucket {self.bucket} failed: {e}") from e

        logger.info(f"Uploaded {key} to bucket {self.bucket}")
