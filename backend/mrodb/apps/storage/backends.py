"""
Object storage backends.

The attachment layer only needs four calls: upload, download, delete and
public_url. `get_storage()` picks the backend from STORAGE_BACKEND:

  local (default)  files under STORAGE_LOCAL_ROOT (default `uploads`)
  s3               bucket STORAGE_S3_BUCKET via boto3
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class StorageBackend:
    def upload(self, data: bytes, key: str, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    def download(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError


class LocalStorage(StorageBackend):
    def __init__(self, root: Path, public_base_url: str = "/files"):
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")

    def _ensure_safe_path(self, key: str) -> Path:
        resolved = (self.root / key).resolve()
        if not str(resolved).startswith(str(self.root) + os.sep):
            raise StorageError(f"Invalid storage key: {key}")
        return resolved

    def upload(self, data: bytes, key: str, content_type: Optional[str] = None) -> str:
        path = self._ensure_safe_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as out:
            out.write(data)
        return key

    def download(self, key: str) -> Optional[bytes]:
        path = self._ensure_safe_path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def delete(self, key: str) -> None:
        path = self._ensure_safe_path(key)
        if path.exists():
            path.unlink()

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"


class S3Storage(StorageBackend):
    def __init__(self, bucket: str, region: Optional[str] = None, public_base_url: Optional[str] = None):
        self.bucket = bucket
        self.region = region
        self.public_base_url = (public_base_url or f"https://{bucket}.s3.amazonaws.com").rstrip("/")
        self._client = None

    def _get_client(self):
        if self._client is None:
            import boto3  # type: ignore

            self._client = boto3.client("s3", region_name=self.region) if self.region else boto3.client("s3")
        return self._client

    def upload(self, data: bytes, key: str, content_type: Optional[str] = None) -> str:
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self._get_client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except Exception as exc:
            raise StorageError(f"S3 upload failed for {key}: {exc}") from exc
        return key

    def download(self, key: str) -> Optional[bytes]:
        client = self._get_client()
        try:
            response = client.get_object(Bucket=self.bucket, Key=key)
        except client.exceptions.NoSuchKey:
            return None
        except Exception as exc:
            raise StorageError(f"S3 download failed for {key}: {exc}") from exc
        return response["Body"].read()

    def delete(self, key: str) -> None:
        try:
            self._get_client().delete_object(Bucket=self.bucket, Key=key)
        except Exception as exc:
            raise StorageError(f"S3 delete failed for {key}: {exc}") from exc

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"


def get_storage() -> StorageBackend:
    """FastAPI dependency returning the configured backend."""
    backend = (os.getenv("STORAGE_BACKEND") or "local").strip().lower()
    public_base_url = os.getenv("STORAGE_PUBLIC_BASE_URL", "").strip() or None
    if backend == "s3":
        bucket = os.getenv("STORAGE_S3_BUCKET", "").strip()
        if not bucket:
            raise RuntimeError("STORAGE_S3_BUCKET must be set when STORAGE_BACKEND=s3")
        return S3Storage(bucket, region=os.getenv("STORAGE_S3_REGION") or None, public_base_url=public_base_url)
    if backend == "local":
        root = Path(os.getenv("STORAGE_LOCAL_ROOT", "uploads"))
        return LocalStorage(root, public_base_url=public_base_url or "/files")
    raise ValueError(f"Unsupported storage backend: {backend}")
