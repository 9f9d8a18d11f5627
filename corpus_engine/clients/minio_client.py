"""MinIO object storage client for raw uploads and session exports."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from io import BytesIO
from typing import Optional

from minio import Minio
from minio.error import MinioException, S3Error
from urllib3.exceptions import HTTPError

logger = logging.getLogger(__name__)

# SDK errors plus transport failures (refused connection, exhausted retries)
STORAGE_FAILURES = (MinioException, HTTPError)


class StorageError(Exception):
    """Custom exception for object storage failures."""

    pass


class StorageObjectNotFoundError(StorageError):
    """Raised when a stored object no longer exists."""

    pass


@dataclass(frozen=True)
class StorageResult:
    """Outcome of a storage write."""

    storage_key: str
    success: bool


class MinIOStorageClient:
    """S3-compatible storage used by the upload pipeline and session exports.

    The minio SDK is synchronous; every call runs in a worker thread so the
    event loop only suspends on storage I/O.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        secure: bool = True,
        public_endpoint: Optional[str] = None,
    ):
        self._endpoint = endpoint
        self._bucket = bucket
        self._secure = secure
        self._public_endpoint = public_endpoint
        self._client = Minio(
            endpoint=endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
        )
        self._bucket_checked = False

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        if not self._client.bucket_exists(self._bucket):
            self._client.make_bucket(self._bucket)
            logger.info(f"Created bucket: {self._bucket}")
        self._bucket_checked = True

    def _rewrite_presigned_url(self, url: str) -> str:
        """Swap the internal endpoint for the public one, if configured."""
        if not self._public_endpoint or self._public_endpoint == self._endpoint:
            return url
        protocol = "https" if self._secure else "http"
        return url.replace(f"{protocol}://{self._endpoint}", f"{protocol}://{self._public_endpoint}")

    def _put_sync(self, path: str, data: bytes, content_type: str) -> StorageResult:
        self._ensure_bucket()
        self._client.put_object(
            bucket_name=self._bucket,
            object_name=path,
            data=BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        logger.info(f"Uploaded object {self._bucket}/{path} ({len(data)} bytes)")
        return StorageResult(storage_key=path, success=True)

    def _object_exists_sync(self, key: str) -> bool:
        try:
            self._client.stat_object(self._bucket, key)
            return True
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchBucket"):
                return False
            raise

    def _retrieval_url_sync(self, key: str, ttl_seconds: int) -> str:
        if not self._object_exists_sync(key):
            raise StorageObjectNotFoundError(f"Object not found: {self._bucket}/{key}")
        url = self._client.presigned_get_object(
            bucket_name=self._bucket,
            object_name=key,
            expires=timedelta(seconds=ttl_seconds),
        )
        return self._rewrite_presigned_url(url)

    async def put(
        self,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Store ``data`` under ``path``.

        Raises:
            StorageError: If the write fails.
        """
        try:
            return await asyncio.to_thread(self._put_sync, path, data, content_type)
        except STORAGE_FAILURES as e:
            raise StorageError(f"Failed to store {path}: {e}") from e

    async def get_retrieval_url(self, storage_key: str, ttl_seconds: int) -> str:
        """Create a time-bounded download URL for an existing object.

        Raises:
            StorageObjectNotFoundError: If the object is gone.
            StorageError: If URL generation fails.
        """
        try:
            return await asyncio.to_thread(self._retrieval_url_sync, storage_key, ttl_seconds)
        except STORAGE_FAILURES as e:
            raise StorageError(f"Failed to sign {storage_key}: {e}") from e
