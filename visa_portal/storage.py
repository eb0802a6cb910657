"""
Document storage on an S3-compatible media host (AWS S3 or MinIO).

The case core only needs three things from storage: store bytes under a case
folder, delete a stored object, and mint a time-limited access URL. Failures
surface as StorageError; callers decide whether a failure is fatal.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional, Protocol

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings, get_settings
from .errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class StoredFile:
    """Handle returned by a successful store"""
    id: str
    url: str
    size_bytes: int


class FileStorage(Protocol):
    """Storage collaborator used by the document service."""

    def store(self, data: bytes, folder: str, file_name: str, content_type: str) -> StoredFile: ...

    def delete(self, storage_id: str) -> None: ...

    def signed_url(self, storage_id: str, ttl_seconds: int) -> str: ...


def _normalize_endpoint(url: Optional[str]) -> Optional[str]:
    """Ensure endpoints include a scheme so boto3 accepts them."""
    if not url:
        return url
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"http://{url}"


def _safe_file_name(file_name: str) -> str:
    name = _UNSAFE_KEY_CHARS.sub("_", (file_name or "").strip()).strip("._")
    return name[:200] or "upload"


def build_case_folder(case_id: str, settings: Optional[Settings] = None) -> str:
    """Key prefix for every document of a case"""
    settings = settings or get_settings()
    return f"{settings.storage_folder.rstrip('/')}/cases/{case_id}"


def create_s3_client(settings: Settings) -> Any:
    """Get S3 client for AWS S3 or MinIO."""
    kwargs = {
        "region_name": settings.storage_region,
        "config": Config(signature_version="s3v4"),
    }
    endpoint = _normalize_endpoint(settings.storage_endpoint_url)
    if endpoint:
        kwargs["endpoint_url"] = endpoint
    if settings.storage_access_key:
        kwargs["aws_access_key_id"] = settings.storage_access_key
        kwargs["aws_secret_access_key"] = settings.storage_secret_key
    return boto3.client("s3", **kwargs)


class MediaStorage:
    """S3-backed implementation of FileStorage"""

    provider = "s3"

    def __init__(self, bucket: str, client: Any):
        self.bucket = bucket
        self.client = client

    def store(self, data: bytes, folder: str, file_name: str, content_type: str) -> StoredFile:
        key = f"{folder.rstrip('/')}/{uuid.uuid4().hex}-{_safe_file_name(file_name)}"
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[storage] Upload failed for {key}: {e}")
            raise StorageError(f"Failed to store {file_name}") from e

        logger.info(f"[storage] Stored {key} ({len(data)} bytes)")
        return StoredFile(id=key, url=f"s3://{self.bucket}/{key}", size_bytes=len(data))

    def delete(self, storage_id: str) -> None:
        if not storage_id:
            return
        try:
            self.client.delete_object(Bucket=self.bucket, Key=storage_id)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete {storage_id}") from e

    def signed_url(self, storage_id: str, ttl_seconds: int) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": storage_id},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to sign URL for {storage_id}") from e


@lru_cache()
def get_storage() -> MediaStorage:
    """Get cached storage instance built from settings"""
    settings = get_settings()
    for warning in settings.validate_storage_config():
        logger.warning(f"[storage] {warning}")
    return MediaStorage(bucket=settings.storage_bucket, client=create_s3_client(settings))
