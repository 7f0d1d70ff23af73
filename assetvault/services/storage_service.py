"""
Storage Service

High-level object storage operations with asset-aware keys.
Wraps the S3 adapter with the key strategy and configured URL windows.
"""
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx

from assetvault.lib import storage_keys
from assetvault.lib.config import Settings

logger = logging.getLogger(__name__)


class StorageService:
    """
    Asset-aware storage service.

    Key conventions (see assetvault.lib.storage_keys):
    - Originals:  org/{org}/proj/{project}/asset/{asset}/original/v{n}/{filename}
    - Renditions: org/{org}/proj/{project}/asset/{asset}/renditions/{name}/{filename}

    `storage` is any adapter exposing presign_upload, presign_download,
    head, get_bytes, put_bytes and delete (S3StorageAdapter in production).
    """

    def __init__(self, storage, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.storage = storage
        self.http_client = http_client
        self.provider = settings.storage_provider
        self.upload_expires_in = settings.upload_url_expire_seconds
        self.download_expires_in = settings.download_url_expire_seconds

    # --- Key Generation ---

    def original_key(self, organization_id, project_id, asset_id, version: int, filename: str) -> str:
        return storage_keys.original_key(organization_id, project_id, asset_id, version, filename)

    def rendition_key(self, organization_id, project_id, asset_id, rendition: str, filename: str) -> str:
        return storage_keys.rendition_key(organization_id, project_id, asset_id, rendition, filename)

    # --- Upload Operations ---

    async def create_upload_url(self, storage_key: str, content_type: str) -> Dict[str, Any]:
        """
        Generate presigned URL for client-side upload.

        Returns:
            {
                'upload_url': presigned URL for PUT request,
                'storage_key': where the file will be stored,
                'expires_in': seconds until URL expires
            }
        """
        upload_url = await self.storage.presign_upload(
            key=storage_key,
            content_type=content_type,
            expires_in=self.upload_expires_in,
        )
        return {
            'upload_url': upload_url,
            'storage_key': storage_key,
            'expires_in': self.upload_expires_in,
        }

    async def confirm_upload(self, storage_key: str) -> Optional[Dict[str, Any]]:
        """
        Verify an upload landed and get its metadata.

        Returns None when nothing is stored at the key, else
            {'size': bytes, 'content_type': MIME type, 'etag': object hash}
        """
        return await self.storage.head(storage_key)

    async def upload_rendition(self, storage_key: str, content: bytes, content_type: str) -> Dict[str, Any]:
        """Store a derived rendition. Keys are deterministic, so redelivery overwrites."""
        return await self.storage.put_bytes(storage_key, content, content_type)

    # --- Download Operations ---

    async def get_download_url(self, storage_key: str, filename: Optional[str] = None) -> Dict[str, Any]:
        url = await self.storage.presign_download(
            key=storage_key,
            expires_in=self.download_expires_in,
            filename=filename,
        )
        return {'download_url': url, 'expires_in': self.download_expires_in}

    async def read_file(self, storage_key: str) -> bytes:
        """Download and return object content."""
        return await self.storage.get_bytes(storage_key)

    async def download_to_path(self, storage_key: str, local_path: Path) -> int:
        """Stream an object to a local file through a presigned URL. Returns bytes written."""
        url = await self.storage.presign_download(
            key=storage_key,
            expires_in=self.download_expires_in,
        )
        if self.http_client is not None:
            return await self._stream(self.http_client, url, local_path)
        async with httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0)) as client:
            return await self._stream(client, url, local_path)

    @staticmethod
    async def _stream(client: httpx.AsyncClient, url: str, local_path: Path) -> int:
        written = 0
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            with open(local_path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
                    written += len(chunk)
        return written

    # --- Cleanup ---

    async def delete_keys(self, keys: Iterable[str]) -> List[str]:
        """Delete every key; objects already gone count as deleted."""
        deleted = []
        for key in keys:
            await self.storage.delete(key)
            deleted.append(key)
        logger.info("Deleted %d storage objects", len(deleted))
        return deleted
