"""
Practice logo storage.
"""
import logging
import time
from typing import Optional

from fastapi import status

from ..exceptions import AppException, StorageError

logger = logging.getLogger(__name__)

MAX_LOGO_BYTES = 2 * 1024 * 1024
ALLOWED_LOGO_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/svg+xml": "svg",
}


def validate_logo(content_type: Optional[str], size: int) -> None:
    """
    Raises:
        AppException: For an unsupported type or a file over 2 MB
    """
    if content_type not in ALLOWED_LOGO_TYPES:
        raise AppException(status.HTTP_400_BAD_REQUEST, "Please choose a PNG, JPG, JPEG or SVG file")
    if size > MAX_LOGO_BYTES:
        raise AppException(status.HTTP_400_BAD_REQUEST, "The logo may be at most 2MB")


def logo_key(content_type: str) -> str:
    """``logo-<epoch-ms>.<ext>``, the extension following the validated content type."""
    extension = ALLOWED_LOGO_TYPES[content_type]
    return f"logo-{int(time.time() * 1000)}.{extension}"


async def upload_logo(objects, bucket: str, content_type: Optional[str], data: bytes) -> str:
    """
    Store a new logo.

    Returns:
        str: Public URL of the logo

    Raises:
        AppException: If the file is rejected or the upload fails
    """
    validate_logo(content_type, len(data))
    key = logo_key(content_type)
    try:
        await objects.upload(bucket, key, data, content_type=content_type, upsert=False)
    except StorageError as e:
        logger.error(f"Error uploading logo: {str(e)}")
        raise AppException(status.HTTP_502_BAD_GATEWAY, "The logo could not be uploaded")
    return objects.get_public_url(bucket, key)


async def delete_logo(objects, bucket: str, logo_url: str) -> bool:
    """
    Remove the logo a public URL points at (its last path segment).

    Returns:
        bool: True if the removal succeeded
    """
    key = logo_url.split("?", 1)[0].rstrip("/").split("/")[-1]
    if not key:
        return False
    try:
        await objects.remove(bucket, [key])
    except StorageError as e:
        logger.error(f"Error deleting logo {key}: {str(e)}")
        return False
    return True
