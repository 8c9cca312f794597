"""Blob storage for uploaded and processed answer images.

Objects are addressed by keys of the form ``evaluations/<id>/<kind>-<name>``.
The local backend serves them through ``/files/local``; the S3 backend hands
out presigned (or public) URLs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from handscore.settings import Settings, settings
from handscore.storage import ensure_dir

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str
    size_bytes: int
    content_type: str


class StorageProvider(Protocol):
    name: str

    async def put_bytes(self, key: str, data: bytes, content_type: str) -> StoredObject:
        """Persist an image and describe where it can be fetched from."""

    async def delete(self, key: str) -> None:
        """Remove an image; a key that is already gone is not an error."""

    async def url_for(self, key: str, expires_seconds: int = 3600) -> str:
        """Return a URL the client can use to fetch the image."""


class LocalDiskProvider:
    """Keeps answer images on local disk under a single base directory."""

    name = "local"

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = ensure_dir(Path(base_dir))

    def resolve_local_path(self, key: str) -> Path:
        root = self.base_dir.resolve()
        destination = (root / key.strip("/")).resolve()
        if root not in destination.parents:
            raise ValueError("Invalid storage key")
        return destination

    async def put_bytes(self, key: str, data: bytes, content_type: str) -> StoredObject:
        destination = self.resolve_local_path(key)
        destination.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(destination.write_bytes, data)
        return StoredObject(key=key, url=await self.url_for(key), size_bytes=len(data), content_type=content_type)

    async def delete(self, key: str) -> None:
        path = self.resolve_local_path(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        # Drop the per-evaluation directory once its last image is gone.
        if path.parent != self.base_dir.resolve() and path.parent.is_dir() and not any(path.parent.iterdir()):
            path.parent.rmdir()

    async def url_for(self, key: str, expires_seconds: int = 3600) -> str:
        del expires_seconds
        return f"/files/local?key={quote(key)}"


class S3Provider:
    """Answer images in an S3-compatible bucket."""

    name = "s3"

    def __init__(
        self,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: str | None = None,
        region: str | None = None,
        public_base_url: str | None = None,
    ) -> None:
        import boto3

        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    async def put_bytes(self, key: str, data: bytes, content_type: str) -> StoredObject:
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        return StoredObject(key=key, url=await self.url_for(key), size_bytes=len(data), content_type=content_type)

    async def delete(self, key: str) -> None:
        from botocore.exceptions import ClientError

        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") not in {"NoSuchKey", "404"}:
                raise
            logger.info("s3 object already removed", extra={"key": key})

    async def url_for(self, key: str, expires_seconds: int = 3600) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key)}"
        return await asyncio.to_thread(
            self._client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_seconds,
        )


def build_storage_provider(config: Settings) -> StorageProvider:
    backend = config.storage_backend.lower().strip()
    if backend == "local":
        return LocalDiskProvider(config.data_path / "objects")
    if backend != "s3":
        raise ValueError(f"Unknown storage backend '{config.storage_backend}'. Use 'local' or 's3'.")

    missing = [
        env_name
        for env_name, value in (
            ("S3_BUCKET", config.s3_bucket),
            ("S3_ACCESS_KEY_ID", config.s3_access_key_id),
            ("S3_SECRET_ACCESS_KEY", config.s3_secret_access_key),
        )
        if not value
    ]
    if missing:
        raise RuntimeError(f"S3 storage backend requires {', '.join(missing)}")
    return S3Provider(
        bucket=config.s3_bucket,
        access_key_id=config.s3_access_key_id,
        secret_access_key=config.s3_secret_access_key,
        endpoint_url=config.s3_endpoint_url,
        region=config.s3_region,
        public_base_url=config.s3_public_base_url,
    )


_provider: StorageProvider | None = None


def get_storage_provider() -> StorageProvider:
    global _provider
    if _provider is None:
        _provider = build_storage_provider(settings)
    return _provider


def reset_storage_provider() -> None:
    global _provider
    _provider = None
