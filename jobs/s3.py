import logging
from pathlib import Path
from uuid import uuid4

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

logger = logging.getLogger(__name__)


class StorageUploadError(Exception):
    """An artifact could not be written to object storage."""


def missing_credentials() -> list[str]:
    required = {
        "S3_ENDPOINT": settings.S3_ENDPOINT_URL,
        "S3_BUCKET": settings.S3_BUCKET,
        "S3_ACCESS_KEY_ID": settings.S3_ACCESS_KEY,
        "S3_SECRET_ACCESS_KEY": settings.S3_SECRET_KEY,
    }
    return [name for name, value in required.items() if not value]


def get_s3_client():
    """
    SDK client for server-side uploads.
    """
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,  # e.g. https://<account>.r2.cloudflarestorage.com
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
            retries={"max_attempts": 2},
        ),
    )


def new_object_key(local_path) -> str:
    """<prefix>/<uuid>-<filename>, unique per upload."""
    name = Path(local_path).name
    prefix = (settings.S3_PATH_PREFIX or "").strip("/")
    key = f"{uuid4()}-{name}"
    return f"{prefix}/{key}" if prefix else key


def object_url(key: str) -> str:
    """
    Public URL for an uploaded object: the configured public base when there is
    one (CDN, R2 public bucket), otherwise endpoint/bucket/key.
    """
    if settings.S3_PUBLIC_URL:
        return f"{settings.S3_PUBLIC_URL.rstrip('/')}/{key}"
    return f"{settings.S3_ENDPOINT_URL.rstrip('/')}/{settings.S3_BUCKET}/{key}"


def upload_file(local_path, key: str, content_type: str | None = None) -> None:
    """
    Upload a single file to the configured bucket with an optional Content-Type.
    Raises StorageUploadError for missing credentials and any transport failure.
    """
    missing = missing_credentials()
    if missing:
        raise StorageUploadError(f"Upload failed: object storage is not configured (missing {', '.join(missing)})")

    extra = {}
    if content_type:
        extra["ContentType"] = content_type
    try:
        s3 = get_s3_client()
        s3.upload_file(str(local_path), settings.S3_BUCKET, key, ExtraArgs=extra or None)
    except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as e:
        raise StorageUploadError(f"Upload of {Path(local_path).name} to s3://{settings.S3_BUCKET}/{key} failed: {e}") from e
    logger.info("Uploaded %s to s3://%s/%s", local_path, settings.S3_BUCKET, key)
