"""
S3-compatible object storage for spot images.

Works with AWS S3, Cloudflare R2 and MinIO through boto3. Stored images live
under the `spots/` prefix and are publicly readable.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote, unquote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from core.config import settings
from core.exceptions import ConfigurationError, TransientNetworkError

logger = logging.getLogger(__name__)

SPOT_IMAGE_PREFIX = "spots/"

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class S3Storage:
    """Public-read image bucket."""

    def __init__(
        self,
        bucket_name: Optional[str] = None,
        client=None,
        public_base_url: Optional[str] = None,
    ):
        self.bucket_name = bucket_name or settings.S3_BUCKET_NAME
        if not self.bucket_name:
            raise ConfigurationError("S3_BUCKET_NAME is not configured")

        self.client = client or boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            config=Config(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "adaptive"},
            ),
        )

        base = public_base_url or settings.S3_PUBLIC_BASE_URL
        if not base:
            if settings.S3_ENDPOINT_URL:
                base = f"{settings.S3_ENDPOINT_URL.rstrip('/')}/{self.bucket_name}"
            else:
                base = f"https://{self.bucket_name}.s3.amazonaws.com"
        self.public_base_url = base.rstrip("/")
        logger.info(f"Object storage initialized for bucket: {self.bucket_name}")

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{quote(key)}"

    def key_for_public_url(self, url: str) -> Optional[str]:
        """Inverse of public_url(); None for URLs outside this bucket."""
        prefix = f"{self.public_base_url}/"
        if not url or not url.startswith(prefix):
            return None
        return unquote(url[len(prefix):])

    def exists(self, key: str) -> bool:
        """
        Check whether an object exists.

        Raises:
            TransientNetworkError: for failures other than "not found"
        """
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            code = str((e.response or {}).get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                return False
            raise TransientNetworkError(f"head_object failed for {key}: {code}") from e
        except BotoCoreError as e:
            raise TransientNetworkError(f"head_object failed for {key}: {e}") from e

    def upload_public(self, key: str, data: bytes, content_type: str = "image/jpeg") -> str:
        """Upload bytes as a public-read object and return its public URL."""
        try:
            self.client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                ACL="public-read",
                CacheControl="public, max-age=31536000",
            )
        except (ClientError, BotoCoreError) as e:
            raise TransientNetworkError(f"put_object failed for {key}: {e}") from e
        logger.info(f"Uploaded: {key}")
        return self.public_url(key)

    def find_by_hash(self, content_hash: str) -> Optional[str]:
        """
        Find a stored image whose key embeds the given content hash.

        Keys look like spots/{slug}_{hash}_{index}.jpg, so the hash is matched
        as `_{hash}_` anywhere in the key.
        """
        needle = f"_{content_hash}_"
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=SPOT_IMAGE_PREFIX):
                for obj in page.get("Contents", []) or []:
                    if needle in obj["Key"]:
                        return obj["Key"]
        except (ClientError, BotoCoreError) as e:
            raise TransientNetworkError(f"list_objects_v2 failed: {e}") from e
        return None
