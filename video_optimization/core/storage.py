"""S3-compatible object storage client.

Wraps get/put/delete of named objects in a single bucket. Cloudflare R2,
MinIO and AWS S3 are all reachable through the same boto3 client with a
custom endpoint and path-style addressing.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from video_optimization.core.config import Settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an object store operation fails."""

    def __init__(self, operation: str, key: str, message: str):
        self.operation = operation
        self.key = key
        super().__init__(f"{operation} {key!r} failed: {message}")


@dataclass
class StorageResult:
    """Result of an upload."""
    key: str
    url: str
    file_size: int = 0
    etag: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    endpoint_url: str
    bucket: str
    access_key: str
    secret_key: str
    region: str = "auto"

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageConfig":
        return cls(
            endpoint_url=settings.R2_ENDPOINT,
            bucket=settings.R2_BUCKET,
            access_key=settings.R2_ACCESS_KEY_ID,
            secret_key=settings.R2_SECRET_ACCESS_KEY,
            region=settings.R2_REGION,
        )


class ObjectStore:
    """Blocking S3 client bound to one bucket.

    Methods block on network I/O; async callers should run them in a
    worker thread.
    """

    def __init__(self, config: StorageConfig, client=None):
        self.config = config
        self._client = client or self._create_client(config)

    @staticmethod
    def _create_client(config: StorageConfig):
        return boto3.client(
            service_name="s3",
            region_name=config.region,
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
            ),
        )

    @property
    def bucket(self) -> str:
        return self.config.bucket

    def get_url(self, key: str) -> str:
        return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"

    def download(self, key: str, destination: str) -> None:
        """Stream an object into a local file.

        Raises:
            StorageError: if the object is missing or the transfer fails
        """
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to get object from storage",
                extra={"key": key, "error": str(e)},
            )
            raise StorageError("download", key, str(e)) from e

        body = response["Body"]
        try:
            with open(destination, "wb") as f:
                for chunk in body.iter_chunks():
                    f.write(chunk)
        except (OSError, BotoCoreError) as e:
            logger.error(
                "Error saving downloaded object",
                extra={"key": key, "filepath": destination, "error": str(e)},
            )
            raise StorageError("download", key, str(e)) from e
        finally:
            body.close()

        logger.info(
            "Successfully downloaded object",
            extra={"key": key, "filepath": destination},
        )

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a local file.

        Raises:
            StorageError: if the file cannot be read or the put fails
        """
        try:
            file_size = os.path.getsize(file_path)
            with open(file_path, "rb") as f:
                response = self._client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=f,
                    ContentType=content_type,
                )
        except (OSError, ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to upload file to storage",
                extra={"key": key, "filepath": file_path, "error": str(e)},
            )
            raise StorageError("upload", key, str(e)) from e

        result = StorageResult(
            key=key,
            url=self.get_url(key),
            file_size=file_size,
            etag=response.get("ETag", "").strip('"'),
        )
        logger.info(
            "Successfully uploaded file to storage",
            extra={"key": key, "url": result.url},
        )
        return result

    def delete(self, key: str) -> None:
        """Delete an object.

        Raises:
            StorageError: if the delete call fails
        """
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to delete object from storage",
                extra={"key": key, "error": str(e)},
            )
            raise StorageError("delete", key, str(e)) from e

        logger.info("Successfully deleted object", extra={"key": key})


def create_object_store(settings: Settings) -> ObjectStore:
    """Construct the store for the configured bucket.

    Raises:
        StorageError: if the client cannot be constructed
    """
    config = StorageConfig.from_settings(settings)
    logger.info("Initializing object storage client")
    try:
        store = ObjectStore(config)
    except (BotoCoreError, ValueError) as e:
        raise StorageError("connect", config.bucket, str(e)) from e

    logger.info(
        "Successfully initialized object storage client",
        extra={"bucket": config.bucket, "endpoint": config.endpoint_url},
    )
    return store
