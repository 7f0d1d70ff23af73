"""Processing job model backing the durable job queue."""
import uuid
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, Uuid

from assetvault.lib.database import Base, JSONVariant, utcnow


class ProcessingJob(Base):
    """
    One unit of asynchronous work tied to exactly one asset.

    Job kinds:
    - ingest: verify the upload and start the processing chain
    - extract-metadata: dimensions, duration, codec, bitrate, page count
    - generate-thumbnails: thumbnail_small / thumbnail_large renditions
    - transcode: preview_720p rendition
    - cleanup: delete storage keys of a soft-deleted asset

    Status flow: queued → active → completed/failed, with active → retrying → active
    while attempts remain. Jobs are never deleted.
    """
    __tablename__ = "processing_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    kind = Column(String(50), nullable=False)
    queue_name = Column(String(50), nullable=False)

    asset_id = Column(Uuid, ForeignKey("assets.id"), nullable=False)
    organization_id = Column(Uuid, nullable=False)
    lineage_id = Column(Uuid, nullable=True)

    # Scheduling
    status = Column(String(20), nullable=False, default="queued")  # queued, active, completed, failed, retrying
    priority = Column(Integer, nullable=False, default=0)  # higher runs first
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=1)
    available_at = Column(DateTime, nullable=False, default=utcnow)

    # Input and output
    payload = Column(JSONVariant, nullable=False, default=dict)
    result = Column(JSONVariant, nullable=True)

    # Execution record
    worker_id = Column(String(100), nullable=True)
    logs = Column(JSONVariant, nullable=False, default=list)
    error_name = Column(String(200), nullable=True)
    error_message = Column(Text, nullable=True)
    error_stack = Column(Text, nullable=True)

    queued_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    heartbeat_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_jobs_claim", "status", "priority", "available_at"),
        Index("ix_jobs_asset", "asset_id"),
        Index("ix_jobs_queue_status", "queue_name", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")

    def to_dict(self):
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "kind": self.kind,
            "queue_name": self.queue_name,
            "asset_id": str(self.asset_id),
            "organization_id": str(self.organization_id),
            "lineage_id": str(self.lineage_id) if self.lineage_id else None,
            "status": self.status,
            "priority": self.priority,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "worker_id": self.worker_id,
            "result": self.result,
            "logs": self.logs or [],
            "error": {
                "name": self.error_name,
                "message": self.error_message,
                "stack": self.error_stack,
            } if self.error_name else None,
            "queued_at": self.queued_at.isoformat() if self.queued_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
        }
