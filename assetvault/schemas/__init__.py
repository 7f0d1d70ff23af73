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
)
from assetvault.schemas.job import JobResponse, QueueStatsResponse

__all__ = [
    # Asset
    "AddVersionRequest",
    "AddVersionResponse",
    "AnalyticsResponse",
    "AssetDownloadResponse",
    "AssetListResponse",
    "AssetResponse",
    "AssetUpdateRequest",
    "CreateUploadRequest",
    "CreateUploadResponse",
    "FinalizeRequest",
    # Job
    "JobResponse",
    "QueueStatsResponse",
]
