"""Object storage module supporting multiple backends.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
Public URLs are built by ``build_object_url``, a pure function of the
configured endpoint, bucket and object key.
"""

import logging
import os
import shutil
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig

from video_ingest.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    url: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = "us-east-1"
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    public_endpoint: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False
    timeout_seconds: float = 60.0
    max_pool_connections: int = 10

    @classmethod
    def from_settings(cls) -> "StorageConfig":
        return cls(
            backend=settings.STORAGE_BACKEND,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            public_endpoint=settings.STORAGE_PUBLIC_ENDPOINT,
            use_ssl=settings.STORAGE_USE_SSL,
            local_path=settings.LOCAL_STORAGE_PATH,
            cdn_domain=settings.CDN_DOMAIN,
            cdn_enabled=settings.CDN_ENABLED,
            timeout_seconds=settings.STORAGE_TIMEOUT_SECONDS,
            # One connection per publisher worker plus one for the original
            max_pool_connections=settings.PUBLISH_MAX_WORKERS + 1,
        )


def build_object_url(
    key: str,
    *,
    bucket: str,
    endpoint: Optional[str] = None,
    region: str = "us-east-1",
    cdn_domain: Optional[str] = None,
) -> str:
    """Build the public URL of an object.

    Precedence: CDN domain, then an explicit endpoint (path-style), then the
    AWS virtual-hosted style URL for the region.
    """
    quoted_key = quote(key.lstrip("/"), safe="/")
    if cdn_domain:
        return f"https://{cdn_domain.rstrip('/')}/{quoted_key}"
    if endpoint:
        return f"{endpoint.rstrip('/')}/{bucket}/{quoted_key}"
    return f"https://{bucket}.s3.{region}.amazonaws.com/{quoted_key}"


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    def __init__(self, config: StorageConfig):
        self.config = config

    @abstractmethod
    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a file to storage."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a file from storage."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if a file exists in storage."""

    @abstractmethod
    def list_files(self, prefix: str = "") -> list[str]:
        """List files with given prefix."""

    def get_url(self, key: str) -> str:
        """Get the public URL for a key."""
        return build_object_url(
            key,
            bucket=self.config.bucket,
            endpoint=self.config.public_endpoint,
            region=self.config.region,
            cdn_domain=self.config.cdn_domain if self.config.cdn_enabled else None,
        )


class LocalStorage(StorageBackend):
    """Local filesystem storage backend.

    Objects are stored under ``<local_path>/<bucket>/<key>`` so that the
    directory can be served at ``<public_endpoint>/<bucket>/<key>``.
    """

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        self.base_path = Path(config.local_path) / (config.bucket or "default")
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, key: str) -> Path:
        return self.base_path / key

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Copy a file into local storage."""
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            shutil.copy2(file_path, dest_path)
            file_size = dest_path.stat().st_size

            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key),
                file_size=file_size,
            )
        except OSError as e:
            return StorageResult(
                success=False,
                key=key,
                url="",
                error_message=str(e),
            )

    def delete(self, key: str) -> bool:
        try:
            file_path = self._get_full_path(key)
            if file_path.exists():
                file_path.unlink()
                return True
            return False
        except OSError:
            return False

    def exists(self, key: str) -> bool:
        return self._get_full_path(key).is_file()

    def list_files(self, prefix: str = "") -> list[str]:
        if not self.base_path.exists():
            return []

        files = []
        for path in self.base_path.rglob("*"):
            if path.is_file():
                rel_path = path.relative_to(self.base_path).as_posix()
                if rel_path.startswith(prefix):
                    files.append(rel_path)
        return sorted(files)


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend.

    A single boto3 client is shared by every ingestion job; boto3 clients
    are thread-safe, so publisher workers call it concurrently.
    """

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        self._client = None
        self._client_lock = threading.Lock()

    def _get_client(self):
        """Get or create the S3 client."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = self._create_client()
        return self._client

    def _create_client(self):
        client_kwargs = {
            "service_name": "s3",
            "region_name": self.config.region or "us-east-1",
            "config": BotoConfig(
                signature_version="s3v4",
                connect_timeout=self.config.timeout_seconds,
                read_timeout=self.config.timeout_seconds,
                max_pool_connections=self.config.max_pool_connections,
                retries={"max_attempts": 3, "mode": "standard"},
                s3={"addressing_style": "path"} if self.config.endpoint_url else None,
            ),
        }

        if self.config.access_key and self.config.secret_key:
            client_kwargs["aws_access_key_id"] = self.config.access_key
            client_kwargs["aws_secret_access_key"] = self.config.secret_key

        # For MinIO or other S3-compatible storage
        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url
            if not self.config.use_ssl:
                client_kwargs["use_ssl"] = False

        return boto3.client(**client_kwargs)

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a file to S3/MinIO."""
        try:
            client = self._get_client()
            file_size = os.path.getsize(file_path)

            with open(file_path, "rb") as f:
                response = client.put_object(
                    Bucket=self.config.bucket,
                    Key=key,
                    Body=f,
                    ContentType=content_type,
                )

            etag = response.get("ETag", "").strip('"')

            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key),
                file_size=file_size,
                etag=etag,
            )
        except Exception as e:
            return StorageResult(
                success=False,
                key=key,
                url="",
                error_message=str(e),
            )

    def delete(self, key: str) -> bool:
        try:
            self._get_client().delete_object(Bucket=self.config.bucket, Key=key)
            return True
        except Exception:
            logger.warning("Failed to delete object %s", key, exc_info=True)
            return False

    def exists(self, key: str) -> bool:
        try:
            self._get_client().head_object(Bucket=self.config.bucket, Key=key)
            return True
        except Exception:
            return False

    def list_files(self, prefix: str = "") -> list[str]:
        paginator = self._get_client().get_paginator("list_objects_v2")
        files = []
        for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                files.append(obj["Key"])
        return files


class Storage:
    """Universal storage interface.

    Automatically selects the appropriate backend based on configuration.
    """

    _instance: Optional["Storage"] = None
    _instance_lock = threading.Lock()

    def __init__(self, config: Optional[StorageConfig] = None):
        if config is None:
            config = StorageConfig.from_settings()

        self.config = config
        self._backend = self._create_backend(config)

    def _create_backend(self, config: StorageConfig) -> StorageBackend:
        backend_type = config.backend.lower()

        if backend_type == "local":
            return LocalStorage(config)
        elif backend_type in ("s3", "minio", "aws"):
            return S3Storage(config)
        else:
            raise ValueError(f"Unsupported storage backend: {backend_type}")

    @classmethod
    def get_instance(cls) -> "Storage":
        """Get singleton storage instance."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        return self._backend.upload(file_path, key, content_type)

    def delete(self, key: str) -> bool:
        return self._backend.delete(key)

    def exists(self, key: str) -> bool:
        return self._backend.exists(key)

    def get_url(self, key: str) -> str:
        return self._backend.get_url(key)

    def list_files(self, prefix: str = "") -> list[str]:
        return self._backend.list_files(prefix)


def get_storage() -> Storage:
    """Get the default storage instance."""
    return Storage.get_instance()
