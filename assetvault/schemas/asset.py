"""
Asset schemas for the upload / finalize workflow.
"""
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from assetvault.services.lifecycle import AccessLevel, AssetSnapshot, AssetStatus, AssetType


class CreateUploadRequest(BaseModel):
    """Request to reserve an asset and get a presigned upload URL."""
    organization_id: UUID
    project_id: UUID
    original_filename: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1, max_length=255)
    file_size_bytes: int = Field(..., gt=0)
    checksum: str = Field(..., min_length=1, max_length=200, description="algorithm:hex-digest")
    tags: Optional[List[str]] = None
    access: AccessLevel = AccessLevel.PRIVATE
    custom_metadata: Optional[Dict[str, str]] = None


class FinalizeRequest(BaseModel):
    """Client-reported checksum and size of the uploaded object."""
    checksum: str = Field(..., min_length=1, max_length=200)
    file_size_bytes: int = Field(..., gt=0)


class AssetUpdateRequest(BaseModel):
    tags: Optional[List[str]] = None
    access: Optional[AccessLevel] = None
    custom_metadata: Optional[Dict[str, str]] = None


class AddVersionRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    file_size_bytes: int = Field(..., gt=0)


class VersionResponse(BaseModel):
    version_number: int
    storage_key: str
    file_size_bytes: int
    created_by: UUID
    created_at: datetime


class RenditionResponse(BaseModel):
    name: str
    storage_key: str
    content_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size_bytes: Optional[int] = None


class ContentMetadataResponse(BaseModel):
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    codec: Optional[str] = None
    bitrate: Optional[int] = None
    page_count: Optional[int] = None


class AssetResponse(BaseModel):
    """Asset response schema."""
    id: UUID
    organization_id: UUID
    project_id: UUID
    uploaded_by: UUID
    original_filename: str
    mime_type: str
    asset_type: AssetType
    file_size_bytes: int
    checksum: str
    status: AssetStatus
    processing_error: Optional[str] = None
    storage_provider: str
    storage_key: str
    latest_version: int
    versions: List[VersionResponse]
    renditions: List[RenditionResponse] = []
    metadata: Optional[ContentMetadataResponse] = None
    tags: List[str] = []
    custom_metadata: Dict[str, str] = {}
    access: AccessLevel
    view_count: int = 0
    download_count: int = 0
    upload_expires_at: Optional[datetime] = None

    @classmethod
    def from_snapshot(cls, snapshot: AssetSnapshot) -> "AssetResponse":
        return cls(
            id=snapshot.id,
            organization_id=snapshot.organization_id,
            project_id=snapshot.project_id,
            uploaded_by=snapshot.uploaded_by,
            original_filename=snapshot.original_filename,
            mime_type=snapshot.mime_type,
            asset_type=snapshot.asset_type,
            file_size_bytes=snapshot.file_size_bytes,
            checksum=snapshot.checksum,
            status=snapshot.status,
            processing_error=snapshot.processing_error,
            storage_provider=snapshot.storage_provider,
            storage_key=snapshot.storage_key,
            latest_version=snapshot.latest_version,
            versions=[VersionResponse(**v.__dict__) for v in snapshot.versions],
            renditions=[
                RenditionResponse(**{**r.__dict__, "name": r.name.value})
                for r in snapshot.renditions
            ],
            metadata=ContentMetadataResponse(**snapshot.metadata.to_dict()) if snapshot.metadata else None,
            tags=list(snapshot.tags),
            custom_metadata=dict(snapshot.custom_metadata),
            access=snapshot.access,
            view_count=snapshot.view_count,
            download_count=snapshot.download_count,
            upload_expires_at=snapshot.upload_expires_at,
        )


class CreateUploadResponse(BaseModel):
    """Reserved asset plus where and until when to upload it."""
    asset: AssetResponse
    upload_url: str
    storage_key: str
    expires_at: datetime
    expires_in_seconds: int


class AddVersionResponse(BaseModel):
    asset: AssetResponse
    version_number: int
    storage_key: str
    upload_url: str
    expires_in_seconds: int


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


class AssetListResponse(BaseModel):
    """Page of assets."""
    assets: List[AssetResponse]
    pagination: Pagination


class AssetDownloadResponse(BaseModel):
    """Response with download URL."""
    download_url: str
    expires_in_seconds: int
    version: int
    filename: str


class AnalyticsResponse(BaseModel):
    total_assets: int
    storage_used_bytes: int
    total_views: int
    total_downloads: int
    assets_by_type: Dict[str, int]
    assets_by_status: Dict[str, int]
