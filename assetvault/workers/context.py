from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict
from uuid import UUID

from assetvault.services.lifecycle import JobKind
from assetvault.services.storage_service import StorageService


@dataclass
class JobContext:
    """Everything a job handler needs; handlers never touch the database."""
    job_id: UUID
    kind: JobKind
    attempt: int
    payload: Dict[str, Any]
    storage: StorageService
    media: Any
    workdir: Path

    @property
    def source_key(self) -> str:
        return self.payload["storage_key"]

    def rendition_key(self, rendition: str, filename: str) -> str:
        return self.storage.rendition_key(
            self.payload["organization_id"],
            self.payload["project_id"],
            self.payload["asset_id"],
            rendition,
            filename,
        )

    async def download_source(self) -> Path:
        """Fetch the asset's current version into the job's scratch directory."""
        path = self.workdir / "source"
        await self.storage.download_to_path(self.source_key, path)
        return path
