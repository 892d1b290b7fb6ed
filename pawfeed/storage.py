"""Object storage gateway backed by MinIO (S3-compatible).

Keys are hierarchical paths inside a single media bucket, for example
``videos/raw/<uuid>.mp4`` or ``videos/hls/<video_id>/master.m3u8``.

The MinIO client is blocking; async callers go through ``asyncio.to_thread``.
"""

from datetime import timedelta
from io import BytesIO
from typing import List, Optional

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from pawfeed.config import settings
from pawfeed.errors import NotFoundError, TransientIOError
from pawfeed.logging_config import logger

MISSING_OBJECT_CODES = {"NoSuchKey", "NoSuchObject", "NoSuchBucket"}


def content_type_for(key: str) -> str:
    """Return the Content-Type used for an HLS/thumbnail artifact."""
    if key.endswith(".m3u8"):
        return "application/vnd.apple.mpegurl"
    if key.endswith(".ts"):
        return "video/mp2t"
    if key.endswith(".jpg") or key.endswith(".jpeg"):
        return "image/jpeg"
    if key.endswith(".mp4"):
        return "video/mp4"
    return "application/octet-stream"


class StorageClient:
    """Signed URLs and object I/O against the media bucket."""

    def __init__(
        self,
        client: Minio,
        bucket: str,
        internal_endpoint: Optional[str] = None,
        external_endpoint: Optional[str] = None,
    ):
        self.client = client
        self.bucket = bucket
        self.internal_endpoint = _strip_scheme(internal_endpoint or "")
        self.external_endpoint = _strip_scheme(external_endpoint or "")

    def ensure_bucket(self):
        """Create the media bucket if it does not exist."""
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info("Created storage bucket", bucket=self.bucket)
        except S3Error as e:
            logger.error("Failed to create bucket", bucket=self.bucket, error=str(e))

    def _to_external(self, url: str) -> str:
        # MinIO signs the URL with the Host header, so only the host part is swapped
        if (
            self.external_endpoint
            and self.internal_endpoint != self.external_endpoint
            and f"://{self.internal_endpoint}/" in url
        ):
            url = url.replace(f"://{self.internal_endpoint}/", f"://{self.external_endpoint}/")
        return url

    def issue_signed_upload_url(self, key: str, ttl_seconds: int) -> str:
        """
        Generate presigned URL for uploading an object.

        Args:
            key: Object key (path)
            ttl_seconds: URL lifetime in seconds

        Returns:
            Presigned URL for PUT operation
        """
        try:
            url = self.client.presigned_put_object(
                self.bucket,
                key,
                expires=timedelta(seconds=ttl_seconds),
            )
        except (S3Error, Urllib3HTTPError, ValueError) as e:
            logger.error("Failed to generate presigned upload URL", key=key, error=str(e))
            raise TransientIOError("Could not issue upload URL") from e

        logger.debug("Generated presigned upload URL", key=key, expires_in=ttl_seconds)
        return self._to_external(url)

    def issue_signed_playback_url(self, key: str, ttl_seconds: int) -> str:
        """
        Generate presigned URL for reading an object (playlist, thumbnail).

        Args:
            key: Object key (path)
            ttl_seconds: URL lifetime in seconds

        Returns:
            Presigned URL for GET operation
        """
        try:
            url = self.client.presigned_get_object(
                self.bucket,
                key,
                expires=timedelta(seconds=ttl_seconds),
            )
        except (S3Error, Urllib3HTTPError, ValueError) as e:
            logger.error("Failed to generate presigned playback URL", key=key, error=str(e))
            raise TransientIOError("Could not issue playback URL") from e

        logger.debug("Generated presigned playback URL", key=key, expires_in=ttl_seconds)
        return self._to_external(url)

    def put_object(self, key: str, data: bytes, content_type: Optional[str] = None):
        """Upload a small object from memory."""
        try:
            self.client.put_object(
                self.bucket,
                key,
                BytesIO(data),
                length=len(data),
                content_type=content_type or content_type_for(key),
            )
        except (S3Error, Urllib3HTTPError) as e:
            logger.error("Failed to upload object", key=key, error=str(e))
            raise TransientIOError(f"Upload failed for {key}") from e

        logger.info("Uploaded object to storage", key=key, size_bytes=len(data))

    def get_object(self, key: str) -> bytes:
        """
        Download an object from storage.

        Raises:
            NotFoundError: If the key does not exist
            TransientIOError: On any other storage failure
        """
        response = None
        try:
            response = self.client.get_object(self.bucket, key)
            data = response.read()
        except S3Error as e:
            if e.code in MISSING_OBJECT_CODES:
                raise NotFoundError("File not found") from e
            logger.error("Failed to download object", key=key, error=str(e))
            raise TransientIOError(f"Download failed for {key}") from e
        except Urllib3HTTPError as e:
            logger.error("Failed to download object", key=key, error=str(e))
            raise TransientIOError(f"Download failed for {key}") from e
        finally:
            if response is not None:
                response.close()
                response.release_conn()

        logger.debug("Downloaded object from storage", key=key, size_bytes=len(data))
        return data

    def download_file(self, key: str, file_path: str):
        """Stream an object to a local file."""
        try:
            self.client.fget_object(self.bucket, key, file_path)
        except S3Error as e:
            if e.code in MISSING_OBJECT_CODES:
                raise NotFoundError(f"Raw upload {key} not found") from e
            raise TransientIOError(f"Download failed for {key}") from e
        except Urllib3HTTPError as e:
            raise TransientIOError(f"Download failed for {key}") from e

        logger.info("Downloaded object to file", key=key, file_path=file_path)

    def upload_file(self, key: str, file_path: str, content_type: Optional[str] = None):
        """Upload a local file."""
        try:
            self.client.fput_object(
                self.bucket,
                key,
                file_path,
                content_type=content_type or content_type_for(key),
            )
        except (S3Error, Urllib3HTTPError, OSError) as e:
            logger.error("Failed to upload file", key=key, error=str(e))
            raise TransientIOError(f"Upload failed for {key}") from e

    def delete_object(self, key: str):
        """Delete an object from storage."""
        try:
            self.client.remove_object(self.bucket, key)
        except (S3Error, Urllib3HTTPError) as e:
            logger.error("Failed to delete object", key=key, error=str(e))
            raise TransientIOError(f"Delete failed for {key}") from e

        logger.info("Deleted object from storage", key=key)

    def list_objects(self, prefix: str) -> List[str]:
        """List object keys under ``prefix`` (recursive)."""
        try:
            return [
                obj.object_name
                for obj in self.client.list_objects(self.bucket, prefix=prefix, recursive=True)
            ]
        except (S3Error, Urllib3HTTPError) as e:
            logger.error("Failed to list objects", prefix=prefix, error=str(e))
            raise TransientIOError(f"Listing failed for {prefix}") from e

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under ``prefix`` and return how many were removed."""
        keys = self.list_objects(prefix)
        for key in keys:
            self.delete_object(key)
        return len(keys)


def _strip_scheme(endpoint: str) -> str:
    return endpoint.replace("http://", "").replace("https://", "")


_storage: Optional[StorageClient] = None


def get_storage_client() -> StorageClient:
    """Get storage client instance (for dependency injection)."""
    global _storage
    if _storage is None:
        endpoint = _strip_scheme(settings.minio_endpoint)
        _storage = StorageClient(
            Minio(
                endpoint,
                access_key=settings.minio_access_key,
                secret_key=settings.minio_secret_key,
                secure=settings.minio_secure,
            ),
            bucket=settings.storage_bucket_media,
            internal_endpoint=settings.minio_endpoint,
            external_endpoint=settings.minio_external_endpoint,
        )
        _storage.ensure_bucket()
        logger.info("MinIO client initialized", endpoint=endpoint)
    return _storage
