"""Attachment destinations in an S3 bucket.

Used instead of local disk when object storage is configured. Object keys are
derived from a hash of the GitLab upload path, optionally namespaced by the
numeric id of the target repository.
"""

from __future__ import annotations

import logging
import mimetypes
import posixpath
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from . import hashing

if TYPE_CHECKING:
    from .settings import ObjectStorageSettings

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectLocation:
    key: str
    url: str


def derive_object_location(
    upload_path: str,
    bucket: str,
    *,
    region: str | None = None,
    repo_numeric_id: int | None = None,
) -> ObjectLocation:
    """Derive the object key and public URL for a GitLab upload path."""
    file_name = posixpath.basename(upload_path)
    key = f"{hashing.digest(upload_path, 'sha256')}/{file_name}"
    if repo_numeric_id:
        key = f"{repo_numeric_id}/{key}"

    hostname = f"s3.{region}.amazonaws.com/{bucket}" if region else f"{bucket}.s3.amazonaws.com"
    return ObjectLocation(key=key, url=f"https://{hostname}/{key}")


class S3Uploader:
    """Uploads attachment bytes to the configured bucket."""

    _bucket: str
    _client: Any

    def __init__(self, settings: ObjectStorageSettings, client: Any = None) -> None:  # noqa: ANN401
        self._bucket = settings.bucket
        self._client = client or boto3.client(
            "s3",
            region_name=settings.region,
            aws_access_key_id=settings.access_key_id,
            aws_secret_access_key=settings.secret_access_key,
        )

    def upload(self, key: str, data: bytes) -> None:
        """Upload ``data`` under ``key``. Failures are logged, not raised."""
        content_type, _ = mimetypes.guess_type(key)
        params: dict[str, Any] = {"Bucket": self._bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type

        logger.info(f"Uploading {posixpath.basename(key)} to bucket {self._bucket}...")
        try:
            self._client.put_object(**params)
        except (BotoCoreError, ClientError):
            logger.exception(f"Failed to upload attachment {key} to bucket {self._bucket}")
            return
        logger.debug(f"...Done uploading {key}")
