"""
Privacy Documents Service - the practice's DSGVO paperwork in object storage.
"""
import io
import logging
import posixpath
import zipfile
from datetime import date
from typing import Dict, List, Optional

from fastapi import status

from ..exceptions import AppException, StorageError

# Set up logging
logger = logging.getLogger(__name__)


def document_name(filename: Optional[str]) -> str:
    """
    Object key for an uploaded document: the bare file name.

    Raises:
        AppException: If no usable file name was sent
    """
    name = posixpath.basename((filename or "").replace("\\", "/")).strip()
    if not name:
        raise AppException(status.HTTP_400_BAD_REQUEST, "A file name is required")
    return name


def zip_filename(today: Optional[date] = None) -> str:
    return f"dsgvo_documents_{(today or date.today()).isoformat()}.zip"


async def list_documents(objects, bucket: str) -> List[Dict]:
    """
    List stored documents.

    Raises:
        AppException: If the bucket cannot be listed
    """
    try:
        return await objects.list(bucket)
    except StorageError as e:
        logger.error(f"Error listing documents: {str(e)}")
        raise AppException(status.HTTP_502_BAD_GATEWAY, "Documents could not be loaded")


async def upload_document(objects, bucket: str, filename: Optional[str], content_type: Optional[str], data: bytes) -> str:
    """
    Store a document under its file name, replacing one with the same name.

    Returns:
        str: The stored name
    """
    name = document_name(filename)
    try:
        await objects.upload(
            bucket, name, data,
            content_type=content_type or "application/octet-stream",
            upsert=True
        )
    except StorageError as e:
        logger.error(f"Error uploading document {name}: {str(e)}")
        raise AppException(status.HTTP_502_BAD_GATEWAY, "The document could not be uploaded")
    logger.info(f"Document {name} uploaded ({len(data)} bytes)")
    return name


async def download_document(objects, bucket: str, name: str) -> bytes:
    try:
        return await objects.download(bucket, name)
    except StorageError as e:
        logger.error(f"Error downloading document {name}: {str(e)}")
        raise AppException(status.HTTP_502_BAD_GATEWAY, "The document could not be downloaded")


async def delete_document(objects, bucket: str, name: str) -> None:
    try:
        await objects.remove(bucket, [name])
    except StorageError as e:
        logger.error(f"Error deleting document {name}: {str(e)}")
        raise AppException(status.HTTP_502_BAD_GATEWAY, "The document could not be deleted")
    logger.info(f"Document {name} deleted")


async def build_archive(objects, bucket: str) -> bytes:
    """
    Pack every stored document into one ZIP archive.

    Returns:
        bytes: The archive content

    Raises:
        AppException: 404 if there are no documents, 502 if one cannot be fetched
    """
    documents = await list_documents(objects, bucket)
    if not documents:
        raise AppException(status.HTTP_404_NOT_FOUND, "There are no documents to download")

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for document in documents:
            archive.writestr(document["name"], await download_document(objects, bucket, document["name"]))
    logger.info(f"Built archive of {len(documents)} document(s)")
    return buffer.getvalue()
