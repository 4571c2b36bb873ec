"""
Storage abstraction for S3 (or S3-compatible) buckets and in-memory testing.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from bgaze.errors import UpstreamFailure

logger = logging.getLogger(__name__)

DOWNLOAD_URL_EXPIRES = 60 * 60
UPLOAD_URL_EXPIRES = 10 * 60


def upload_key(filename: str, now: float | None = None) -> str:
    """Key for a direct upload: ingestion time in ms plus the original name."""
    millis = int((time.time() if now is None else now) * 1000)
    return f"{millis}-{filename}"


def presigned_upload_key(filename: str, now: float | None = None) -> str:
    return f"uploads/{upload_key(filename, now)}"


@dataclass
class StoredObject:
    key: str
    size: int
    last_modified: datetime
    etag: Optional[str] = None

    def as_dict(self) -> dict:
        # S3 field names, as returned by ListObjectsV2.
        return {
            "Key": self.key,
            "LastModified": self.last_modified.isoformat(),
            "Size": self.size,
            "ETag": self.etag,
        }


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(self, key: str, data: bytes, content_type: str) -> str:
        ...

    def list_objects(self) -> list[StoredObject]:
        ...

    def presign_get(self, key: str, expires_in: int = DOWNLOAD_URL_EXPIRES) -> str:
        ...

    def presign_put(
        self, key: str, content_type: str, expires_in: int = UPLOAD_URL_EXPIRES
    ) -> str:
        ...

    def delete(self, key: str) -> None:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)

    def upload_bytes(self, key: str, data: bytes, content_type: str) -> str:
        self.stored_objects[key] = (data, content_type, datetime.now(timezone.utc))
        return f"{self.base_url}/{key}"

    def list_objects(self) -> list[StoredObject]:
        return [
            StoredObject(key=key, size=len(data), last_modified=modified)
            for key, (data, _, modified) in self.stored_objects.items()
        ]

    def presign_get(self, key: str, expires_in: int = DOWNLOAD_URL_EXPIRES) -> str:
        return f"{self.base_url}/{key}?op=get&expires={expires_in}"

    def presign_put(
        self, key: str, content_type: str, expires_in: int = UPLOAD_URL_EXPIRES
    ) -> str:
        return f"{self.base_url}/{key}?op=put&expires={expires_in}"

    def delete(self, key: str) -> None:
        self.stored_objects.pop(key, None)

    def reset(self) -> None:
        self.stored_objects.clear()


@dataclass
class S3StorageClient:
    """
    S3 storage client. `endpoint` is only needed for S3-compatible providers.
    """

    bucket: str
    region: str
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    endpoint: Optional[str] = None
    acl: Optional[str] = None

    def __post_init__(self):
        config = Config(signature_version="s3v4")
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def object_url(self, key: str) -> str:
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload_bytes(self, key: str, data: bytes, content_type: str) -> str:
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if self.acl:
            params["ACL"] = self.acl
        try:
            self._client.put_object(**params)
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Failed to upload %s", key)
            raise UpstreamFailure("Failed to upload file") from exc
        return self.object_url(key)

    def list_objects(self) -> list[StoredObject]:
        objects: list[StoredObject] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket):
                for item in page.get("Contents", []):
                    objects.append(
                        StoredObject(
                            key=item["Key"],
                            size=item.get("Size", 0),
                            last_modified=item["LastModified"],
                            etag=item.get("ETag"),
                        )
                    )
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Failed to list bucket %s", self.bucket)
            raise UpstreamFailure("Failed to list files") from exc
        return objects

    def presign_get(self, key: str, expires_in: int = DOWNLOAD_URL_EXPIRES) -> str:
        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise UpstreamFailure("Could not create download URL") from exc

    def presign_put(
        self, key: str, content_type: str, expires_in: int = UPLOAD_URL_EXPIRES
    ) -> str:
        params = {"Bucket": self.bucket, "Key": key, "ContentType": content_type}
        if self.acl:
            params["ACL"] = self.acl
        try:
            return self._client.generate_presigned_url(
                ClientMethod="put_object",
                Params=params,
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise UpstreamFailure("Could not create presigned URL") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Failed to delete %s", key)
            raise UpstreamFailure("Failed to delete file") from exc
