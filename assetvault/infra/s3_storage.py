"""
S3 Storage Adapter

Low-level S3-compatible object storage operations (AWS S3, Cloudflare R2,
MinIO). boto3 is blocking, so every call runs in a worker thread.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from assetvault.lib.config import Settings
from assetvault.lib.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def get_s3_client(settings: Settings):
    """Initialize S3-compatible client."""
    return boto3.client(
        's3',
        endpoint_url=settings.s3_endpoint or None,
        aws_access_key_id=settings.s3_access_key_id or None,
        aws_secret_access_key=settings.s3_secret_access_key or None,
        region_name=settings.s3_region,
        config=Config(
            signature_version='s3v4',
            retries={'max_attempts': 3}
        )
    )


def _is_not_found(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code', '') in _NOT_FOUND_CODES


class S3StorageAdapter:
    """
    S3 storage adapter.

    Provides:
    - Presigned URLs for client-side uploads and downloads
    - Object metadata (None when the object is missing)
    - Object put/get for derived renditions
    - Object delete (idempotent)

    Any other backend failure is reported as ServiceUnavailableError.
    """

    def __init__(self, settings: Settings, client=None):
        self.client = client or get_s3_client(settings)
        self.bucket = settings.s3_bucket

    async def _call(self, operation: str, fn, **params):
        try:
            return await asyncio.to_thread(fn, **params)
        except ClientError:
            raise
        except BotoCoreError as e:
            logger.warning("S3 %s failed: %s", operation, e)
            raise ServiceUnavailableError(f"Object store {operation} failed: {e}")

    async def presign_upload(
        self,
        key: str,
        content_type: str,
        expires_in: int,
    ) -> str:
        """Generate presigned PUT URL for client-side upload."""
        try:
            return await self._call(
                "presign",
                self.client.generate_presigned_url,
                ClientMethod='put_object',
                Params={
                    'Bucket': self.bucket,
                    'Key': key,
                    'ContentType': content_type,
                },
                ExpiresIn=expires_in,
            )
        except ClientError as e:
            raise ServiceUnavailableError(f"Failed to generate upload URL: {e}")

    async def presign_download(
        self,
        key: str,
        expires_in: int,
        filename: Optional[str] = None,
    ) -> str:
        """Generate presigned GET URL."""
        params = {'Bucket': self.bucket, 'Key': key}
        if filename:
            params['ResponseContentDisposition'] = f'attachment; filename="{filename}"'
        try:
            return await self._call(
                "presign",
                self.client.generate_presigned_url,
                ClientMethod='get_object',
                Params=params,
                ExpiresIn=expires_in,
            )
        except ClientError as e:
            raise ServiceUnavailableError(f"Failed to generate download URL: {e}")

    async def head(self, key: str) -> Optional[Dict[str, Any]]:
        """Get object metadata (size, content type, etag), or None if missing."""
        try:
            response = await self._call(
                "head", self.client.head_object, Bucket=self.bucket, Key=key,
            )
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise ServiceUnavailableError(f"Failed to get metadata: {e}")
        return {
            'size': response['ContentLength'],
            'content_type': response.get('ContentType', 'application/octet-stream'),
            'etag': response.get('ETag', '').strip('"'),
            'last_modified': response.get('LastModified'),
        }

    async def get_bytes(self, key: str) -> bytes:
        """Download object content."""
        try:
            response = await self._call(
                "get", self.client.get_object, Bucket=self.bucket, Key=key,
            )
        except ClientError as e:
            if _is_not_found(e):
                raise FileNotFoundError(f"File not found: {key}")
            raise ServiceUnavailableError(f"Download failed: {e}")
        return await asyncio.to_thread(response['Body'].read)

    async def put_bytes(self, key: str, body: bytes, content_type: str) -> Dict[str, Any]:
        """Upload object content."""
        try:
            await self._call(
                "put",
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except ClientError as e:
            raise ServiceUnavailableError(f"Upload failed: {e}")
        return {'key': key, 'size': len(body), 'content_type': content_type}

    async def delete(self, key: str) -> None:
        """Delete object; deleting a missing key is not an error."""
        try:
            await self._call(
                "delete", self.client.delete_object, Bucket=self.bucket, Key=key,
            )
        except ClientError as e:
            if _is_not_found(e):
                return
            raise ServiceUnavailableError(f"Delete failed: {e}")
