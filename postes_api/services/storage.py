"""
Photo storage backends.

``LocalStorage`` writes files under a directory served as static files;
``BucketStorage`` pushes objects to an S3-compatible bucket through the minio
client. Both are built once at startup by :func:`build_storage` and closed on
shutdown.
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
import mimetypes
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from minio import Minio

from postes_api.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str


_EXTENSION_RE = re.compile(r"\.[a-z0-9]{1,5}")


def file_extension(filename: str | None) -> str:
    """Lower-cased extension of *filename*, or ``""`` when it has no plain one."""
    ext = PurePosixPath(filename or "").suffix.lower()
    return ext if _EXTENSION_RE.fullmatch(ext) else ""


def _unique_name(original_filename: str | None, content_type: str = "", prefix: str = "") -> str:
    ext = file_extension(original_filename) or mimetypes.guess_extension(content_type) or ""
    return f"{prefix}{uuid.uuid4().hex}{ext}"


class StorageBackend(ABC):
    """Where uploaded photos end up."""

    name: str = "storage"

    async def open(self) -> None:
        """Prepare the backend (create directories, buckets, policies)."""

    async def close(self) -> None:
        """Release any resources held by the backend."""

    async def health_check(self) -> bool:
        return True

    @abstractmethod
    async def save(self, data: bytes, filename: str | None, content_type: str) -> StoredObject:
        """Persist *data* under a generated unique name and return its public URL."""

    @abstractmethod
    async def delete(self, url: str) -> bool:
        """Delete the object behind *url*. Returns ``False`` when nothing was removed."""


class LocalStorage(StorageBackend):
    name = "local"

    def __init__(self, root: str | Path, url_prefix: str = "/uploads") -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    async def open(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("Local storage ready at %s", self.root.resolve())

    async def health_check(self) -> bool:
        return self.root.is_dir()

    async def save(self, data: bytes, filename: str | None, content_type: str) -> StoredObject:
        name = _unique_name(filename, content_type, prefix="foto_")
        path = self.root / name
        self.root.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        logger.info("Local upload: %s (%d bytes)", name, len(data))
        return StoredObject(key=name, url=f"{self.url_prefix}/{name}")

    def path_for(self, url: str) -> Path | None:
        prefix = f"{self.url_prefix}/"
        if not url.startswith(prefix):
            return None
        name = url[len(prefix):]
        # Only flat names produced by save() are ours
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            return None
        return self.root / name

    async def delete(self, url: str) -> bool:
        path = self.path_for(url)
        if path is None:
            logger.warning("Refusing to delete %s: not a local storage URL", url)
            return False
        if not path.exists():
            return False
        await asyncio.to_thread(path.unlink)
        logger.info("Local file removed: %s", path.name)
        return True


class BucketStorage(StorageBackend):
    name = "bucket"

    def __init__(
        self,
        client: Minio,
        bucket: str,
        prefix: str = "postes/",
        public_url: str = "http://localhost:9000",
    ) -> None:
        self.client = client
        self.bucket = bucket
        self.prefix = prefix
        self.public_url = public_url.rstrip("/")

    def _public_read_policy(self) -> str:
        return json.dumps(
            {
                "Version": "2012-10-17",
                "Statement": [
                    {
                        "Effect": "Allow",
                        "Principal": {"AWS": ["*"]},
                        "Action": ["s3:GetObject"],
                        "Resource": [f"arn:aws:s3:::{self.bucket}/{self.prefix}*"],
                    }
                ],
            }
        )

    async def open(self) -> None:
        exists = await asyncio.to_thread(self.client.bucket_exists, bucket_name=self.bucket)
        if not exists:
            await asyncio.to_thread(self.client.make_bucket, bucket_name=self.bucket)
            logger.info("Created bucket: %s", self.bucket)
        await asyncio.to_thread(
            self.client.set_bucket_policy,
            bucket_name=self.bucket,
            policy=self._public_read_policy(),
        )
        logger.info("Bucket storage ready: %s/%s (public read)", self.bucket, self.prefix)

    async def health_check(self) -> bool:
        try:
            return await asyncio.to_thread(self.client.bucket_exists, bucket_name=self.bucket)
        except Exception as e:
            logger.error("Bucket health check failure: %s", e)
            return False

    def url_for(self, key: str) -> str:
        return f"{self.public_url}/{self.bucket}/{key}"

    def key_for(self, url: str) -> str | None:
        base = f"{self.public_url}/{self.bucket}/"
        if not url.startswith(base):
            return None
        key = url[len(base):]
        return key if key.startswith(self.prefix) else None

    async def save(self, data: bytes, filename: str | None, content_type: str) -> StoredObject:
        key = _unique_name(filename, content_type, prefix=self.prefix)
        await asyncio.to_thread(
            self.client.put_object,
            bucket_name=self.bucket,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        logger.info("Bucket upload: %s (%d bytes)", key, len(data))
        return StoredObject(key=key, url=self.url_for(key))

    async def delete(self, url: str) -> bool:
        key = self.key_for(url)
        if key is None:
            logger.warning("Refusing to delete %s: not an object of bucket %s", url, self.bucket)
            return False
        await asyncio.to_thread(self.client.remove_object, bucket_name=self.bucket, object_name=key)
        logger.info("Bucket object removed: %s", key)
        return True


def build_storage(settings: Settings) -> StorageBackend:
    """Construct the backend selected by ``STORAGE_BACKEND``."""
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "local":
        return LocalStorage(settings.STORAGE_LOCAL_PATH, settings.STORAGE_LOCAL_URL_PREFIX)
    if backend == "bucket":
        client = Minio(
            endpoint=settings.BUCKET_ENDPOINT,
            access_key=settings.BUCKET_ACCESS_KEY,
            secret_key=settings.BUCKET_SECRET_KEY,
            secure=settings.BUCKET_SECURE,
        )
        scheme = "https" if settings.BUCKET_SECURE else "http"
        public_url = settings.BUCKET_PUBLIC_URL or f"{scheme}://{settings.BUCKET_ENDPOINT}"
        return BucketStorage(client, settings.BUCKET_NAME, settings.BUCKET_PREFIX, public_url)
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND!r}")
