"""
Where chat attachments live: a directory on disk, or an S3-compatible bucket.
"""

from __future__ import annotations

import logging
import os
from functools import cached_property
from pathlib import Path
from typing import BinaryIO
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class Storage:
    def save(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def url_for_key(self, key: str) -> str:
        raise NotImplementedError


def _join_url(base: str, key: str) -> str:
    return f"{base.rstrip('/')}/{quote(key.lstrip('/'))}"


class LocalStorage(Storage):
    """Files under ``root``, served back through ``/storage/<key>``."""

    def __init__(self, root: Path, public_base_url: str = "/storage") -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url

    def _path(self, key: str) -> Path:
        p = (self.root / key.lstrip("/").replace("\\", "/")).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Storage key escapes root: {key!r}")
        return p

    def save(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        return self._path(key).open("rb")

    def exists(self, key: str) -> bool:
        try:
            return self._path(key).is_file()
        except StorageError:
            return False

    def url_for_key(self, key: str) -> str:
        return _join_url(self.public_base_url, key)


class S3Storage(Storage):
    def __init__(
        self,
        *,
        endpoint: str,
        region: str,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        public_base_url: str = "",
    ) -> None:
        self.endpoint = endpoint
        self.region = region
        self.bucket = bucket
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.public_base_url = public_base_url

    @cached_property
    def client(self):
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def save(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        # Attachments are linked straight from chat, so they go up world-readable.
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ACL="public-read",
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 upload failed (bucket=%s key=%s): %s", self.bucket, key, e)
            raise StorageError(f"Upload failed: {e}") from e

    def open(self, key: str) -> BinaryIO:
        return self.client.get_object(Bucket=self.bucket, Key=key)["Body"]

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    def url_for_key(self, key: str) -> str:
        if self.public_base_url:
            return _join_url(self.public_base_url, key)
        host = f"{self.bucket}.{self.endpoint}" if self.endpoint else f"{self.bucket}.s3.amazonaws.com"
        return _join_url(f"https://{host}", key)


def storage_from_config(config) -> Storage:
    public_base_url = (config.get("STORAGE_PUBLIC_BASE_URL") or "").strip()
    if (config.get("STORAGE_BACKEND") or "local").strip().lower() == "s3":
        return S3Storage(
            endpoint=config.get("S3_ENDPOINT") or "",
            region=config.get("S3_REGION") or "",
            bucket=config.get("S3_BUCKET") or "",
            access_key_id=config.get("S3_ACCESS_KEY_ID") or "",
            secret_access_key=config.get("S3_SECRET_ACCESS_KEY") or "",
            public_base_url=public_base_url,
        )
    root = config.get("STORAGE_LOCAL_ROOT") or os.path.join(os.getcwd(), "storage")
    return LocalStorage(Path(root), public_base_url=public_base_url or "/storage")
