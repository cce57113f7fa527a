# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Blob Stores - Durable homes for link-delivered artifacts.

Two stores are provided:
- LocalBlobStore writes under a directory that the web server exposes
  (e.g. /uploads/backups) and builds a URL from a public base URL.
- S3BlobStore uploads to a bucket and hands out a presigned GET URL.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import aiofiles
import structlog

from docvault.exceptions import BlobStoreError

logger = structlog.get_logger()


@dataclass
class StoredBlob:
    """Where a blob ended up and how to fetch it."""

    location: str
    url: str
    size_bytes: int


class BlobStore(Protocol):
    """Protocol for durable blob storage."""

    async def put(self, name: str, data: bytes, content_type: str) -> StoredBlob:
        """
        Write a named payload and return its fetch URL.

        Raises:
            BlobStoreError: If the write fails
        """
        ...


def _sanitize_filename(name: str) -> str:
    """
    Convert a blob name to a safe filename.

    Replaces path separators and special characters with underscores.
    """
    safe = name.replace("/", "_").replace("\\", "_")

    for char in [":", "*", "?", '"', "<", ">", "|"]:
        safe = safe.replace(char, "_")

    # Keep names under common filesystem limits
    if len(safe) > 200:
        name_hash = hashlib.sha256(name.encode()).hexdigest()[:8]
        safe = safe[-190:] + "_" + name_hash

    return safe


class LocalBlobStore:
    """
    Blob store on the local filesystem.

    Args:
        root: Directory blobs are written to
        public_base_url: Base URL of the web server, e.g. https://app.example.com
        route: URL path under which root is served
    """

    def __init__(
        self,
        root: Path,
        public_base_url: str,
        route: str = "/uploads/backups",
    ) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.route = "/" + route.strip("/")

    def url_for(self, filename: str) -> str:
        return f"{self.public_base_url}{self.route}/{quote(filename)}"

    async def put(self, name: str, data: bytes, content_type: str) -> StoredBlob:
        """
        Write a blob atomically (write to temp, then rename) so a reader
        never sees a partial file.
        """
        filename = _sanitize_filename(name)
        path = self.root / filename
        temp_path = path.with_name(filename + ".tmp")

        try:
            self.root.mkdir(parents=True, exist_ok=True)

            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)

            temp_path.replace(path)

        except Exception as e:
            temp_path.unlink(missing_ok=True)
            raise BlobStoreError(
                f"Failed to write backup file: {e}",
                details={"path": str(path)},
            ) from e

        logger.info(
            "blob_written",
            path=str(path),
            size=len(data),
            content_type=content_type,
        )

        return StoredBlob(
            location=str(path),
            url=self.url_for(filename),
            size_bytes=len(data),
        )


class S3BlobStore:
    """
    Blob store on S3 with presigned download URLs.

    Args:
        bucket: Target bucket
        region: AWS region
        key_prefix: Prefix prepended to every key
        url_expiry_seconds: Lifetime of the presigned URL
        session: aiobotocore session (created when omitted)
        connect_timeout: S3 connect timeout in seconds
        read_timeout: S3 read timeout in seconds
    """

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        key_prefix: str = "backups/",
        url_expiry_seconds: int = 7 * 24 * 60 * 60,
        session: Any = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
    ) -> None:
        from aiobotocore.config import AioConfig
        from aiobotocore.session import get_session

        self.bucket = bucket
        self.region = region
        self.key_prefix = key_prefix
        self.url_expiry_seconds = url_expiry_seconds
        self.session = session or get_session()
        self.client_config = AioConfig(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"max_attempts": 3, "mode": "standard"},
        )

    async def put(self, name: str, data: bytes, content_type: str) -> StoredBlob:
        key = f"{self.key_prefix}{_sanitize_filename(name)}"

        try:
            async with self.session.create_client(
                "s3",
                region_name=self.region,
                config=self.client_config,
            ) as s3_client:
                await s3_client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                )
                url = await s3_client.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": self.bucket, "Key": key},
                    ExpiresIn=self.url_expiry_seconds,
                )
        except Exception as e:
            raise BlobStoreError(
                f"Failed to upload backup to S3: {e}",
                details={"bucket": self.bucket, "key": key},
            )

        logger.info(
            "blob_uploaded",
            bucket=self.bucket,
            key=key,
            size=len(data),
        )

        return StoredBlob(
            location=f"s3://{self.bucket}/{key}",
            url=url,
            size_bytes=len(data),
        )
