"""
Blob service module for uploading submitted files to S3-compatible storage.

This module provides functionality for:
- Uploading in-memory file payloads under unique object keys
- Enforcing a per-file size limit before any network call is made
- Bounding each upload's wall time so one stalled upload cannot hold a request
- Building the retrievable URL of every stored object

The bucket and endpoint are configured through ``BlobSettings``. The boto3
client is created lazily on the first upload and reused afterwards.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from typing import Any, Optional
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .configuration import BlobSettings
from .errors import FailureKind, SubmissionFailure
from .utils import build_blob_name

logger = logging.getLogger(__name__)


class BlobUploader:
    """
    Uploads file payloads and returns their URLs.

    Attributes:
        settings: Bucket, endpoint and limit configuration
    """

    def __init__(self, settings: BlobSettings, client: Any = None) -> None:
        self.settings = settings
        self._client = client

    def _get_client(self):
        """
        Get or create the S3 client.

        Returns:
            boto3 S3 client

        Note:
            Credentials are not tested up front; credential errors surface
            during the first actual upload.
        """
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.settings.endpoint_url,
                region_name=self.settings.region,
                config=Config(
                    connect_timeout=10,
                    read_timeout=self.settings.upload_timeout_seconds,
                    retries={"max_attempts": 2},
                ),
            )
        return self._client

    def content_type_for(self, original_name: Optional[str]) -> str:
        guessed, _ = mimetypes.guess_type(original_name or "")
        return guessed or self.settings.default_content_type

    def object_url(self, key: str) -> str:
        """
        Build the retrievable URL of a stored object.

        Uses ``public_base_url`` when configured (CDN or custom domain),
        otherwise the client's endpoint in path style.
        """
        quoted_key = quote(key)
        if self.settings.public_base_url:
            return f"{self.settings.public_base_url.rstrip('/')}/{quoted_key}"
        endpoint = self._get_client().meta.endpoint_url.rstrip("/")
        return f"{endpoint}/{self.settings.bucket}/{quoted_key}"

    def _put_object(self, key: str, data: bytes, content_type: str) -> None:
        client = self._get_client()
        client.put_object(Bucket=self.settings.bucket, Key=key, Body=data, ContentType=content_type)

    async def upload(self, data: bytes, original_name: Optional[str]) -> str:
        """
        Upload a file payload and return its URL.

        Args:
            data: Full file contents
            original_name: Client-side file name, used for the key and content type

        Returns:
            URL of the stored object

        Raises:
            SubmissionFailure: ``UPLOAD_TOO_LARGE`` if the payload exceeds
                ``max_file_bytes``; ``UPLOAD_FAILED`` on timeout or storage error
        """
        if len(data) > self.settings.max_file_bytes:
            logger.warning(f"Rejected {original_name!r}: {len(data)} bytes exceeds {self.settings.max_file_bytes}")
            raise SubmissionFailure(FailureKind.UPLOAD_TOO_LARGE)

        key = build_blob_name(original_name)
        content_type = self.content_type_for(original_name)

        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._put_object, key, data, content_type),
                timeout=self.settings.upload_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.error(f"Upload of {key} timed out after {self.settings.upload_timeout_seconds}s")
            raise SubmissionFailure(FailureKind.UPLOAD_FAILED, "File upload timed out. Please try again.") from exc
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Upload of {key} failed: {exc}")
            raise SubmissionFailure(FailureKind.UPLOAD_FAILED) from exc

        logger.info(f"Uploaded {key} ({len(data)} bytes) to s3://{self.settings.bucket}")
        return self.object_url(key)
