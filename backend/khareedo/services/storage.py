"""
S3 object storage for listing images, layout plans, RERA QR codes,
developer logos and profile pictures.

Keys are ``{folder}/{epoch_ms}_{filename}`` so every upload gets a new key;
URLs are the public virtual-hosted S3 form and usable as soon as the upload
returns.
"""

import logging
import re
import time
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from khareedo.core.config import settings
from khareedo.core.errors import UpstreamError

logger = logging.getLogger(__name__)

PROPERTY_IMAGES_FOLDER = "properties/images"
PROPERTY_LAYOUTS_FOLDER = "properties/layouts"
PROPERTY_RERA_FOLDER = "properties/rera"
DEVELOPER_LOGOS_FOLDER = "developers/logos"
PROFILE_IMAGES_FOLDER = "users/profile"


def _safe_filename(filename: Optional[str]) -> str:
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", (filename or "upload").strip())
    return name.strip("_") or "upload"


class S3Storage:
    """Thin wrapper over a boto3 S3 client."""

    def __init__(self, bucket: Optional[str] = None, region: Optional[str] = None, client=None):
        self.bucket = bucket or settings.AWS_BUCKET_NAME
        self.region = region or settings.AWS_REGION
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=self.region,
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            )
        return self._client

    def build_key(self, folder: str, filename: Optional[str]) -> str:
        return f"{folder.strip('/')}/{int(time.time() * 1000)}_{_safe_filename(filename)}"

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload(self, data: bytes, content_type: Optional[str], folder: str,
               filename: Optional[str] = None) -> str:
        """Upload bytes and return the public URL."""
        if not self.bucket:
            raise UpstreamError("Object storage bucket is not configured")

        key = self.build_key(folder, filename)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise UpstreamError("File upload failed")

        logger.info(f"Uploaded {len(data)} bytes to s3://{self.bucket}/{key}")
        return self.public_url(key)


_storage: Optional[S3Storage] = None


def get_storage() -> S3Storage:
    """FastAPI dependency returning the process-wide storage client."""
    global _storage
    if _storage is None:
        _storage = S3Storage()
    return _storage
