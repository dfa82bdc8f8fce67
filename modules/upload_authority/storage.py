"""Presigned upload URLs and object checks against S3-compatible storage."""

from __future__ import annotations

import time
from datetime import timedelta

import structlog
from minio import Minio
from minio.error import S3Error

from shared.config import Settings

logger = structlog.get_logger()

UPLOAD_PREFIX = "uploads"

# Error codes minio reports for a HEAD on a missing object
_MISSING_OBJECT_CODES = ("NoSuchKey", "NoSuchObject", "ResourceNotFound")


class StorageNotConfigured(RuntimeError):
    """Bucket or credentials are missing from the settings."""


def build_object_key(filename: str, now_ms: int | None = None) -> str:
    """Namespace a filename with the current epoch millis so concurrent uploads never collide."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{UPLOAD_PREFIX}/{now_ms}-{filename}"


class UploadSigner:
    """Issues presigned PUT URLs and verifies uploaded objects."""

    def __init__(self, settings: Settings, client: Minio | None = None):
        self.settings = settings
        self.bucket = settings.storage_bucket
        self.expires = timedelta(seconds=settings.upload_url_expiry_seconds)
        self._client = client

    @property
    def client(self) -> Minio:
        if self._client is None:
            missing = [
                name
                for name, value in (
                    ("STORAGE_BUCKET", self.settings.storage_bucket),
                    ("STORAGE_ACCESS_KEY", self.settings.storage_access_key),
                    ("STORAGE_SECRET_KEY", self.settings.storage_secret_key),
                )
                if not value
            ]
            if missing:
                raise StorageNotConfigured(f"Missing storage settings: {', '.join(missing)}")
            # An explicit region keeps presigning offline (no bucket-location lookup).
            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                region=self.settings.storage_region,
                secure=self.settings.storage_secure,
            )
        return self._client

    def presign_upload(self, filename: str) -> tuple[str, str]:
        """Return ``(url, key)`` for a one-off PUT of ``filename``."""
        key = build_object_key(filename)
        url = self.client.presigned_put_object(
            bucket_name=self.bucket,
            object_name=key,
            expires=self.expires,
        )
        logger.info("upload_url_issued", key=key, expires_in=int(self.expires.total_seconds()))
        return url, key

    def object_exists(self, key: str) -> bool:
        """HEAD the object. Errors other than a missing object propagate."""
        try:
            self.client.stat_object(bucket_name=self.bucket, object_name=key)
        except S3Error as e:
            if e.code in _MISSING_OBJECT_CODES:
                return False
            raise
        return True

    def public_url(self, key: str) -> str:
        return f"{self.settings.public_url_base}/{key}"
