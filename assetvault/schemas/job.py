"""Job schemas for API responses."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class LogEntry(BaseModel):
    """Job log entry."""
    timestamp: str
    level: str
    message: str


class JobError(BaseModel):
    name: str
    message: Optional[str] = None
    stack: Optional[str] = None


class JobResponse(BaseModel):
    """Job response schema."""
    id: UUID
    kind: str
    queue_name: str
    asset_id: UUID
    organization_id: UUID
    lineage_id: Optional[UUID] = None
    status: str
    priority: int
    attempts: int
    max_attempts: int
    worker_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[JobError] = None
    logs: List[LogEntry] = []
    queued_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


class QueueStats(BaseModel):
    queued: int = 0
    active: int = 0
    retrying: int = 0
    completed: int = 0
    failed: int = 0


class QueueStatsResponse(BaseModel):
    """Job counts per queue."""
    queues: Dict[str, QueueStats]
