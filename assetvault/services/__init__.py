from assetvault.services.asset_service import AssetService
from assetvault.services.job_queue import JobQueue
from assetvault.services.storage_service import StorageService

__all__ = [
    "AssetService",
    "JobQueue",
    "StorageService",
]
