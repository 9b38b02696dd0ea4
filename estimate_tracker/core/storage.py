"""
Object Store backed by Cloudinary.

Buckets map to Cloudinary folders: an object ``key`` in ``bucket`` is stored as
the raw resource ``<bucket>/<key>``. Public buckets use the ``upload``
delivery type, every other bucket is ``private`` and only reachable through
signed download URLs.
"""
import io
import logging
import time
from typing import Dict, Iterable, List

import cloudinary
import cloudinary.api
import cloudinary.exceptions
import cloudinary.uploader
import cloudinary.utils
import httpx
from starlette.concurrency import run_in_threadpool

from ..exceptions import StorageError

# Set up logger for this module
logger = logging.getLogger(__name__)

RESOURCE_TYPE = "raw"


class CloudinaryObjectStore:
    """
    Async object store with upload, download, remove, signed URLs and listing.
    """
    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        public_buckets: Iterable[str] = ()
    ):
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True
        )
        self.public_buckets = set(public_buckets)

    def _delivery_type(self, bucket: str) -> str:
        return "upload" if bucket in self.public_buckets else "private"

    @staticmethod
    def _public_id(bucket: str, key: str) -> str:
        return f"{bucket}/{key}"

    async def _run(self, description: str, func, *args, **kwargs):
        try:
            return await run_in_threadpool(func, *args, **kwargs)
        except cloudinary.exceptions.Error as e:
            logger.error(f"Cloudinary API error during {description}: {str(e)}")
            raise StorageError(f"{description} failed: {str(e)}") from e
        except httpx.HTTPError as e:
            logger.error(f"Transfer error during {description}: {str(e)}")
            raise StorageError(f"{description} failed: {str(e)}") from e

    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = False
    ) -> str:
        """
        Store ``data`` under ``key``.

        Args:
            bucket: Target bucket
            key: Object key inside the bucket
            data: Object content
            content_type: MIME type recorded with the object
            upsert: Replace an existing object instead of failing

        Returns:
            str: The stored key

        Raises:
            StorageError: If the upload fails or the key exists and upsert is off
        """
        public_id = self._public_id(bucket, key)
        result = await self._run(
            f"upload of {public_id}",
            cloudinary.uploader.upload,
            io.BytesIO(data),
            public_id=public_id,
            filename=key.rsplit("/", 1)[-1],
            resource_type=RESOURCE_TYPE,
            type=self._delivery_type(bucket),
            overwrite=upsert,
            invalidate=upsert,
            context={"content_type": content_type}
        )
        if result.get("existing") and not upsert:
            logger.error(f"Refusing to overwrite existing object {public_id}")
            raise StorageError(f"Object {key} already exists in {bucket}")
        logger.info(f"Uploaded {len(data)} bytes to {public_id}")
        return key

    async def download(self, bucket: str, key: str) -> bytes:
        """
        Fetch an object's content.

        Raises:
            StorageError: If the object cannot be fetched
        """
        if bucket in self.public_buckets:
            url = self.get_public_url(bucket, key)
        else:
            url = await self.create_signed_url(bucket, key, 60)

        def _fetch() -> bytes:
            response = httpx.get(url, follow_redirects=True)
            response.raise_for_status()
            return response.content

        return await self._run(f"download of {bucket}/{key}", _fetch)

    async def remove(self, bucket: str, keys: List[str]) -> None:
        """
        Delete objects; unknown keys are ignored.

        Raises:
            StorageError: If the removal request fails
        """
        if not keys:
            return
        public_ids = [self._public_id(bucket, key) for key in keys]
        await self._run(
            f"removal of {len(public_ids)} object(s) from {bucket}",
            cloudinary.api.delete_resources,
            public_ids,
            resource_type=RESOURCE_TYPE,
            type=self._delivery_type(bucket)
        )
        logger.info(f"Removed {len(public_ids)} object(s) from {bucket}")

    async def create_signed_url(self, bucket: str, key: str, ttl_seconds: int) -> str:
        """
        Build a download URL valid for ``ttl_seconds``.

        Raises:
            StorageError: If the URL cannot be signed
        """
        return await self._run(
            f"signing of {bucket}/{key}",
            cloudinary.utils.private_download_url,
            self._public_id(bucket, key),
            "",
            resource_type=RESOURCE_TYPE,
            type=self._delivery_type(bucket),
            expires_at=int(time.time()) + ttl_seconds
        )

    def get_public_url(self, bucket: str, key: str) -> str:
        url, _ = cloudinary.utils.cloudinary_url(
            self._public_id(bucket, key),
            resource_type=RESOURCE_TYPE,
            type="upload",
            secure=True
        )
        return url

    async def list(self, bucket: str) -> List[Dict]:
        """
        List the objects of a bucket.

        Returns:
            List of entries with ``name``, ``size`` and ``created_at``

        Raises:
            StorageError: If the listing fails
        """
        prefix = f"{bucket}/"
        result = await self._run(
            f"listing of {bucket}",
            cloudinary.api.resources,
            type=self._delivery_type(bucket),
            resource_type=RESOURCE_TYPE,
            prefix=prefix,
            max_results=500
        )
        return [
            {
                "name": resource["public_id"][len(prefix):],
                "size": resource.get("bytes", 0),
                "created_at": resource.get("created_at"),
            }
            for resource in result.get("resources", [])
        ]
