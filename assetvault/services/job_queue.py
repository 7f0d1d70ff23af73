"""
Job Queue

Durable processing queue backed by the processing_jobs table.

Enqueue only adds and flushes, so a job becomes visible exactly when the
caller's transaction (the one that changed the asset) commits. Claiming
is a conditional UPDATE, so two workers can never claim the same job.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assetvault.lib.database import utcnow
from assetvault.models.job import ProcessingJob
from assetvault.services.lifecycle import JobFailure, JobKind

logger = logging.getLogger(__name__)

CLAIMABLE = ("queued", "retrying")
STATUSES = ("queued", "active", "retrying", "completed", "failed")


@dataclass(frozen=True)
class QueueDefinition:
    kind: JobKind
    queue_name: str
    max_attempts: int
    backoff_seconds: float
    priority: int
    delay_seconds: float = 0


QUEUES: Dict[JobKind, QueueDefinition] = {
    JobKind.INGEST: QueueDefinition(JobKind.INGEST, "asset-processing", 5, 2, 10),
    JobKind.EXTRACT_METADATA: QueueDefinition(JobKind.EXTRACT_METADATA, "metadata-extraction", 3, 2, 8),
    JobKind.GENERATE_THUMBNAILS: QueueDefinition(JobKind.GENERATE_THUMBNAILS, "image-processing", 3, 2, 5),
    JobKind.TRANSCODE: QueueDefinition(JobKind.TRANSCODE, "video-processing", 2, 2, 3, delay_seconds=1),
    JobKind.CLEANUP: QueueDefinition(JobKind.CLEANUP, "cleanup", 5, 2, 1, delay_seconds=30),
}


def backoff_delay(definition: QueueDefinition, attempts: int, cap_seconds: float) -> float:
    """Exponential backoff after the given (1-based) failed attempt."""
    return min(definition.backoff_seconds * 2 ** max(attempts - 1, 0), cap_seconds)


def log_entry(message: str, level: str = "info", now: Optional[datetime] = None) -> Dict[str, str]:
    return {
        "timestamp": (now or utcnow()).isoformat(),
        "level": level,
        "message": message,
    }


class JobQueue:
    """Service for enqueuing, claiming and settling processing jobs."""

    def __init__(
        self,
        db: AsyncSession,
        max_backoff_seconds: float = 300,
        visibility_timeout_seconds: float = 300,
    ):
        self.db = db
        self.max_backoff_seconds = max_backoff_seconds
        self.visibility_timeout_seconds = visibility_timeout_seconds

    # --- Producing ---

    async def enqueue(
        self,
        kind: JobKind,
        asset_id: UUID,
        organization_id: UUID,
        payload: Dict[str, Any],
        lineage_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> ProcessingJob:
        """
        Add a job to the current transaction.

        The caller commits; nothing is visible to workers before that.
        """
        now = now or utcnow()
        definition = QUEUES[JobKind(kind)]
        job = ProcessingJob(
            kind=definition.kind.value,
            queue_name=definition.queue_name,
            asset_id=asset_id,
            organization_id=organization_id,
            lineage_id=lineage_id,
            status="queued",
            priority=definition.priority,
            attempts=0,
            max_attempts=definition.max_attempts,
            available_at=now + timedelta(seconds=definition.delay_seconds),
            payload=payload,
            logs=[log_entry("Job queued", now=now)],
            queued_at=now,
        )
        self.db.add(job)
        await self.db.flush()
        logger.info(
            "Enqueued %s job %s for asset %s on %s",
            job.kind, job.id, asset_id, job.queue_name,
        )
        return job

    # --- Consuming ---

    async def claim_next(
        self,
        worker_id: str,
        kinds: Optional[Iterable[JobKind]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ProcessingJob]:
        """
        Claim the highest-priority due job, oldest first within a priority.

        Commits the claim. Returns None when nothing is due.
        """
        kind_values = [JobKind(k).value for k in kinds] if kinds else None

        # A lost race just means another worker got that job; look again
        for _ in range(5):
            now = now or utcnow()
            query = (
                select(ProcessingJob.id)
                .where(ProcessingJob.status.in_(CLAIMABLE))
                .where(ProcessingJob.available_at <= now)
                .order_by(ProcessingJob.priority.desc(), ProcessingJob.available_at.asc())
                .limit(1)
            )
            if kind_values:
                query = query.where(ProcessingJob.kind.in_(kind_values))
            job_id = (await self.db.execute(query)).scalar_one_or_none()
            if job_id is None:
                return None

            result = await self.db.execute(
                update(ProcessingJob)
                .where(ProcessingJob.id == job_id)
                .where(ProcessingJob.status.in_(CLAIMABLE))
                .values(
                    status="active",
                    attempts=ProcessingJob.attempts + 1,
                    worker_id=worker_id,
                    started_at=now,
                    heartbeat_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            if result.rowcount == 1:
                job = await self.get_job(job_id)
                logger.info(
                    "Worker %s claimed %s job %s (attempt %d/%d)",
                    worker_id, job.kind, job.id, job.attempts, job.max_attempts,
                )
                return job
        return None

    async def heartbeat(self, job_id: UUID, worker_id: str) -> bool:
        """Extend the claim on an active job. False if the claim was lost."""
        result = await self.db.execute(
            update(ProcessingJob)
            .where(ProcessingJob.id == job_id)
            .where(ProcessingJob.status == "active")
            .where(ProcessingJob.worker_id == worker_id)
            .values(heartbeat_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    def _stale_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(seconds=self.visibility_timeout_seconds)

    async def requeue_stale(self, now: Optional[datetime] = None) -> int:
        """
        Return active jobs whose worker stopped heartbeating to the queue.

        Only jobs with attempts left are requeued; exhausted ones are listed
        by list_lost and failed through AssetService.fail_lost_jobs.
        """
        now = now or utcnow()
        result = await self.db.execute(
            update(ProcessingJob)
            .where(ProcessingJob.status == "active")
            .where(ProcessingJob.heartbeat_at < self._stale_cutoff(now))
            .where(ProcessingJob.attempts < ProcessingJob.max_attempts)
            .values(status="retrying", worker_id=None, available_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.warning("Requeued %d stale jobs", result.rowcount)
        return result.rowcount

    async def list_lost(self, now: Optional[datetime] = None) -> List[ProcessingJob]:
        """Stale active jobs whose last allowed attempt was the one that was lost."""
        now = now or utcnow()
        result = await self.db.execute(
            select(ProcessingJob)
            .where(ProcessingJob.status == "active")
            .where(ProcessingJob.heartbeat_at < self._stale_cutoff(now))
            .where(ProcessingJob.attempts >= ProcessingJob.max_attempts)
            .order_by(ProcessingJob.heartbeat_at.asc())
        )
        return list(result.scalars().all())

    # --- Settling (no commit; the caller's transaction applies it) ---

    def add_log(self, job: ProcessingJob, message: str, level: str = "info") -> None:
        job.logs = (job.logs or []) + [log_entry(message, level)]

    def complete(
        self,
        job: ProcessingJob,
        result: Optional[Dict[str, Any]] = None,
        message: str = "Job completed successfully",
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        job.status = "completed"
        job.completed_at = now
        job.heartbeat_at = None
        if result:
            job.result = {**(job.result or {}), **result}
        if job.started_at:
            job.duration_ms = int((now - job.started_at).total_seconds() * 1000)
        self.add_log(job, message)

    def register_failure(
        self,
        job: ProcessingJob,
        failure: JobFailure,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Record a failed attempt.

        Returns True when attempts are exhausted and the job is now failed;
        otherwise the job is rescheduled with exponential backoff.
        """
        now = now or utcnow()
        job.error_name = failure.name
        job.error_message = failure.message
        job.error_stack = failure.stack
        job.heartbeat_at = None

        if job.attempts >= job.max_attempts:
            job.status = "failed"
            job.completed_at = now
            if job.started_at:
                job.duration_ms = int((now - job.started_at).total_seconds() * 1000)
            self.add_log(job, f"Job failed: {failure.name}: {failure.message}", "error")
            logger.warning(
                "%s job %s failed permanently after %d attempts: %s",
                job.kind, job.id, job.attempts, failure.message,
            )
            return True

        delay = backoff_delay(QUEUES[JobKind(job.kind)], job.attempts, self.max_backoff_seconds)
        job.status = "retrying"
        job.worker_id = None
        job.available_at = now + timedelta(seconds=delay)
        self.add_log(
            job,
            f"Attempt {job.attempts} failed: {failure.message}; retrying in {delay:g}s",
            "warn",
        )
        logger.info(
            "%s job %s attempt %d failed, retrying in %gs",
            job.kind, job.id, job.attempts, delay,
        )
        return False

    # --- Reads ---

    async def get_job(self, job_id: UUID) -> Optional[ProcessingJob]:
        """Get job by ID."""
        result = await self.db.execute(
            select(ProcessingJob)
            .where(ProcessingJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        asset_id: Optional[UUID] = None,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        limit: int = 50,
    ) -> List[ProcessingJob]:
        """List jobs with optional filters, newest first."""
        query = select(ProcessingJob).order_by(ProcessingJob.queued_at.desc()).limit(limit)

        if asset_id:
            query = query.where(ProcessingJob.asset_id == asset_id)
        if status:
            query = query.where(ProcessingJob.status == status)
        if kind:
            query = query.where(ProcessingJob.kind == kind)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def stats(self) -> Dict[str, Dict[str, int]]:
        """Job counts per queue and status; every queue and status is present."""
        counts = {
            definition.queue_name: {status: 0 for status in STATUSES}
            for definition in QUEUES.values()
        }
        result = await self.db.execute(
            select(ProcessingJob.queue_name, ProcessingJob.status, func.count())
            .group_by(ProcessingJob.queue_name, ProcessingJob.status)
        )
        for queue_name, status, count in result.all():
            counts.setdefault(queue_name, {s: 0 for s in STATUSES})[status] = count
        return counts
