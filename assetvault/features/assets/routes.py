"""
Asset endpoints.

Upload flow:
1. Client reserves an asset via POST /assets/uploads and gets a signed URL
2. Client uploads directly to storage using the signed URL
3. Client finalizes via POST /assets/{id}/finalize with checksum and size
4. Workers process the asset; GET /assets/{id} shows progress
"""
import math
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from assetvault.lib.deps import get_asset_service, get_current_caller
from assetvault.lib.security import Caller
from assetvault.schemas.asset import (
    AddVersionRequest,
    AddVersionResponse,
    AnalyticsResponse,
    AssetDownloadResponse,
    AssetListResponse,
    AssetResponse,
    AssetUpdateRequest,
    CreateUploadRequest,
    CreateUploadResponse,
    FinalizeRequest,
    Pagination,
)
from assetvault.services.asset_service import AssetService
from assetvault.services.lifecycle import AccessLevel, AssetStatus, AssetType

router = APIRouter(prefix="/assets", tags=["Assets"])


@router.post(
    "/uploads",
    response_model=CreateUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_upload(
    data: CreateUploadRequest,
    service: AssetService = Depends(get_asset_service),
    caller: Caller = Depends(get_current_caller),
):
    """
    Reserve an asset and get a signed URL for direct upload to storage.

    The client should PUT the file to this URL, then call finalize.
    """
    result = await service.create_upload(
        caller,
        organization_id=data.organization_id,
        project_id=data.project_id,
        original_filename=data.original_filename,
        mime_type=data.mime_type,
        file_size_bytes=data.file_size_bytes,
        checksum=data.checksum,
        tags=data.tags,
        access=data.access,
        custom_metadata=data.custom_metadata,
    )
    return CreateUploadResponse(
        asset=AssetResponse.from_snapshot(result["asset"]),
        upload_url=result["upload_url"],
        storage_key=result["storage_key"],
        expires_at=result["expires_at"],
        expires_in_seconds=result["expires_in"],
    )


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    organization_id: Optional[UUID] = Query(None),
    project_id: Optional[UUID] = Query(None),
    service: AssetService = Depends(get_asset_service),
    caller: Caller = Depends(get_current_caller),
):
    """Asset counts, storage used and view/download totals."""
    return await service.get_analytics(caller, organization_id, project_id)


@router.get("", response_model=AssetListResponse)
async def list_assets(
    project_id: Optional[UUID] = Query(None),
    status_filter: Optional[AssetStatus] = Query(None, alias="status"),
    asset_type: Optional[AssetType] = Query(None),
    access: Optional[AccessLevel] = Query(None),
    tags: Optional[List[str]] = Query(None),
    search: Optional[str] = Query(None, max_length=255),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: AssetService = Depends(get_asset_service),
    caller: Caller = Depends(get_current_caller),
):
    """
    List live assets of the caller's organization.

    Private assets of other uploaders are not included.
    """
    assets, total = await service.list_assets(
        caller,
        project_id=project_id,
        status=status_filter.value if status_filter else None,
        asset_type=asset_type.value if asset_type else None,
        access=access.value if access else None,
        tags=tags,
        search=search,
        page=page,
        limit=limit,
    )
    total_pages = math.ceil(total / limit) if total else 0
    return AssetListResponse(
        assets=[AssetResponse.from_snapshot(a) for a in assets],
        pagination=Pagination(
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )


@router.get("/{asset_id}", response_model=AssetResponse)
async def get_asset(
    asset_id: UUID,
    increment_view: bool = Query(False),
    service: AssetService = Depends(get_asset_service),
    caller: Caller = Depends(get_current_caller),
):
    snapshot = await service.get_asset(asset_id, caller, increment_view=increment_view)
    return AssetResponse.from_snapshot(snapshot)


@router.patch("/{asset_id}", response_model=AssetResponse)
async def update_asset(
    asset_id: UUID,
    data: AssetUpdateRequest,
    service: AssetService = Depends(get_asset_service),
    caller: Caller = Depends(get_current_caller),
):
    """Update tags and access; custom metadata keys are merged."""
    snapshot = await service.update_asset(
        asset_id,
        caller,
        tags=data.tags,
        access=data.access,
        custom_metadata=data.custom_metadata,
    )
    return AssetResponse.from_snapshot(snapshot)


@router.post("/{asset_id}/finalize", response_model=AssetResponse)
async def finalize_upload(
    asset_id: UUID,
    data: FinalizeRequest,
    service: AssetService = Depends(get_asset_service),
    caller: Caller = Depends(get_current_caller),
):
    """
    Verify the upload and queue processing.

    Safe to repeat with the same checksum and size.
    """
    snapshot = await service.finalize_upload(
        asset_id,
        checksum=data.checksum,
        file_size_bytes=data.file_size_bytes,
        caller=caller,
    )
    return AssetResponse.from_snapshot(snapshot)


@router.get("/{asset_id}/download", response_model=AssetDownloadResponse)
async def get_download_url(
    asset_id: UUID,
    version: Optional[int] = Query(None, ge=1),
    service: AssetService = Depends(get_asset_service),
    caller: Caller = Depends(get_current_caller),
):
    """
    Get a signed download URL for a completed asset.

    Defaults to the latest version.
    """
    result = await service.get_download_url(asset_id, caller, version=version)
    return AssetDownloadResponse(
        download_url=result["download_url"],
        expires_in_seconds=result["expires_in"],
        version=result["version"],
        filename=result["filename"],
    )


@router.post("/{asset_id}/retry", response_model=AssetResponse)
async def retry_processing(
    asset_id: UUID,
    service: AssetService = Depends(get_asset_service),
    caller: Caller = Depends(get_current_caller),
):
    snapshot = await service.retry_processing(asset_id, caller)
    return AssetResponse.from_snapshot(snapshot)


@router.post(
    "/{asset_id}/versions",
    response_model=AddVersionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_version(
    asset_id: UUID,
    data: AddVersionRequest,
    service: AssetService = Depends(get_asset_service),
    caller: Caller = Depends(get_current_caller),
):
    """Append a new version and get a signed URL to upload it."""
    result = await service.add_version(
        asset_id,
        filename=data.filename,
        file_size_bytes=data.file_size_bytes,
        caller=caller,
    )
    return AddVersionResponse(
        asset=AssetResponse.from_snapshot(result["asset"]),
        version_number=result["version_number"],
        storage_key=result["storage_key"],
        upload_url=result["upload_url"],
        expires_in_seconds=result["expires_in"],
    )


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_asset(
    asset_id: UUID,
    service: AssetService = Depends(get_asset_service),
    caller: Caller = Depends(get_current_caller),
):
    """
    Soft-delete an asset.

    Stored objects are removed asynchronously by a cleanup job.
    """
    await service.soft_delete(asset_id, caller)
