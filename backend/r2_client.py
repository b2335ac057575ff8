"""
Cloudflare R2 client configuration and utilities.
Provides async context manager for S3-compatible R2 operations.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Object storage is unavailable or rejected an operation."""


def storage_configured() -> bool:
    return bool(settings.R2_BUCKET_NAME and settings.R2_PUBLIC_URL)


@asynccontextmanager
async def get_r2_client():
    """
    Async context manager for Cloudflare R2 client.

    R2 is S3-compatible, so we use aioboto3's S3 client with R2 endpoint.

    Usage:
        async with get_r2_client() as client:
            await client.put_object(Bucket=..., Key=..., Body=..., ContentType=...)
    """
    session = aioboto3.Session()
    async with session.client(
        's3',
        endpoint_url=settings.R2_ENDPOINT_URL or None,
        aws_access_key_id=settings.R2_ACCESS_KEY_ID,
        aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
        region_name='auto'  # R2 doesn't use regions, 'auto' is convention
    ) as client:
        yield client


def public_url_for(key: str) -> str:
    return f"{settings.R2_PUBLIC_URL.rstrip('/')}/{key}"


def key_from_public_url(url: Optional[str]) -> Optional[str]:
    """Reverse of public_url_for. None for URLs that are not in our bucket."""
    if not url or not settings.R2_PUBLIC_URL:
        return None
    prefix = settings.R2_PUBLIC_URL.rstrip('/') + '/'
    if not url.startswith(prefix):
        return None
    return url[len(prefix):]


async def upload_object(key: str, data: bytes, content_type: str = 'image/jpeg') -> str:
    """
    Upload bytes to R2 and return the public URL.

    Raises:
        StorageError: If R2 is not configured or the upload fails
    """
    if not storage_configured():
        raise StorageError("R2 storage not configured")

    try:
        async with get_r2_client() as client:
            await client.put_object(
                Bucket=settings.R2_BUCKET_NAME,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl='public, max-age=31536000'  # Keys are unique per upload
            )
    except (ClientError, BotoCoreError) as e:
        raise StorageError(f"Failed to upload {key}: {e}") from e

    return public_url_for(key)


async def delete_object(key: str) -> None:
    """
    Delete an object from R2. Missing objects are not an error.

    Raises:
        StorageError: If R2 is not configured or the delete fails
    """
    if not storage_configured():
        raise StorageError("R2 storage not configured")

    try:
        async with get_r2_client() as client:
            await client.delete_object(Bucket=settings.R2_BUCKET_NAME, Key=key)
            logger.info(f"Deleted R2 object: {key}")
    except ClientError as e:
        if e.response.get('Error', {}).get('Code') == 'NoSuchKey':
            return
        raise StorageError(f"Failed to delete {key}: {e}") from e
    except BotoCoreError as e:
        raise StorageError(f"Failed to delete {key}: {e}") from e
