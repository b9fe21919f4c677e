"""
S3-backed blob store for original uploads and processed images.

This module provides:
- Byte-level put/get/delete of objects addressed by caller-chosen keys
- Content-type inference from the key's file extension
- Deterministic public URLs derived from bucket, region and key

The store never invents or rewrites keys. Missing bucket configuration is a
startup error: a store without a bucket cannot serve a single job.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .errors import BlobNotFoundError, BlobStoreError, ConfigurationError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".html": "text/html",
    ".json": "application/json",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


def detect_content_type(key: str) -> str:
    """
    Guess the MIME type of an object from its key.

    Example:
        >>> detect_content_type("originals/img_1.PNG")
        'image/png'
        >>> detect_content_type("originals/blob")
        'application/octet-stream'
    """
    return CONTENT_TYPES.get(PurePosixPath(key).suffix.lower(), DEFAULT_CONTENT_TYPE)


def build_public_url(bucket: str, region: str, key: str) -> str:
    """Virtual-hosted-style URL; us-east-1 has no region segment."""
    if region == "us-east-1":
        return f"https://{bucket}.s3.amazonaws.com/{key}"
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


def create_s3_client(storage: DictConfig):
    """
    Build a boto3 S3 client from the storage section of the settings.

    Static credentials are used when both key id and secret are configured;
    otherwise boto3's default credential chain applies.
    """
    kwargs: dict[str, Any] = {"region_name": storage.region}
    if storage.access_key_id and storage.secret_access_key:
        kwargs["aws_access_key_id"] = storage.access_key_id
        kwargs["aws_secret_access_key"] = storage.secret_access_key
    return boto3.client("s3", **kwargs)


class BlobStore:
    """
    Thin wrapper over an S3 client bound to a single bucket.

    Attributes:
        bucket: Target bucket name
        region: AWS region, used only to derive public URLs
    """

    def __init__(self, client: Any, bucket: str, region: str) -> None:
        if not bucket:
            raise ConfigurationError("AWS_BUCKET_NAME is not configured")
        if not region:
            raise ConfigurationError("AWS_REGION is not configured")
        self._client = client
        self.bucket = bucket
        self.region = region

    @classmethod
    def from_settings(cls, settings: DictConfig, client: Any = None) -> "BlobStore":
        storage = settings.storage
        if not storage.bucket:
            raise ConfigurationError("AWS_BUCKET_NAME is not configured")
        return cls(client or create_s3_client(storage), storage.bucket, storage.region)

    def url_for(self, key: str) -> str:
        return build_public_url(self.bucket, self.region, key)

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Store ``data`` under ``key`` and return its public URL.

        Raises:
            BlobStoreError: If the backend rejects the write
        """
        content_type = content_type or detect_content_type(key)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            raise BlobStoreError(f"put object {key} failed: {exc}") from exc
        logger.info("Stored s3://%s/%s (%d bytes, %s)", self.bucket, key, len(data), content_type)
        return self.url_for(key)

    def get(self, key: str) -> bytes:
        """
        Fetch the full payload stored under ``key``.

        Raises:
            BlobNotFoundError: If the key does not exist
            BlobStoreError: For any other backend failure
        """
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _MISSING_KEY_CODES:
                raise BlobNotFoundError(f"s3://{self.bucket}/{key} does not exist") from exc
            raise BlobStoreError(f"get object {key} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"get object {key} failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise BlobStoreError(f"delete object {key} failed: {exc}") from exc
        logger.info("Deleted s3://%s/%s", self.bucket, key)
