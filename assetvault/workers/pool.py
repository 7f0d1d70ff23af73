"""
Worker Pool

A fixed number of asyncio workers, each looping:
claim → start (pending → processing) → run handler with heartbeats →
report the outcome through AssetService.apply_processing_result.

Every database step uses its own short session; handlers only see storage
and the media processor. A reaper task returns jobs whose worker stopped
heartbeating to the queue, or fails them when that was their last attempt.
Results from a worker that lost its claim are ignored.
"""
import asyncio
import logging
import socket
import tempfile
import traceback
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetvault.jobs.cleanup_job import run_cleanup_job
from assetvault.jobs.ingest_job import run_ingest_job
from assetvault.jobs.metadata_job import run_metadata_job
from assetvault.jobs.thumbnail_job import run_thumbnail_job
from assetvault.jobs.transcode_job import run_transcode_job
from assetvault.lib.config import Settings
from assetvault.models.job import ProcessingJob
from assetvault.services.asset_service import AssetService
from assetvault.services.job_queue import JobQueue
from assetvault.services.lifecycle import JobKind, ProcessingOutcome
from assetvault.services.storage_service import StorageService
from assetvault.workers.context import JobContext

logger = logging.getLogger(__name__)

Handler = Callable[[JobContext], Awaitable[ProcessingOutcome]]

HANDLERS: Dict[JobKind, Handler] = {
    JobKind.INGEST: run_ingest_job,
    JobKind.EXTRACT_METADATA: run_metadata_job,
    JobKind.GENERATE_THUMBNAILS: run_thumbnail_job,
    JobKind.TRANSCODE: run_transcode_job,
    JobKind.CLEANUP: run_cleanup_job,
}


class WorkerPool:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: StorageService,
        settings: Settings,
        media,
        handlers: Optional[Dict[JobKind, Handler]] = None,
        name: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.settings = settings
        self.media = media
        self.handlers = handlers or HANDLERS
        self.name = name or socket.gethostname()
        self._stopping = asyncio.Event()

    def _queue(self, session: AsyncSession) -> JobQueue:
        return JobQueue(
            session,
            max_backoff_seconds=self.settings.max_backoff_seconds,
            visibility_timeout_seconds=self.settings.job_visibility_timeout_seconds,
        )

    def _service(self, session: AsyncSession) -> AssetService:
        return AssetService(session, storage=self.storage, settings=self.settings)

    # --- One job ---

    async def run_once(self, worker_id: str) -> bool:
        """Claim and fully process one due job. Returns False if none was due."""
        async with self.session_factory() as session:
            job = await self._queue(session).claim_next(worker_id)
        if job is None:
            return False
        await self._process(job, worker_id)
        return True

    async def _process(self, job: ProcessingJob, worker_id: str) -> None:
        async with self.session_factory() as session:
            proceed = await self._service(session).start_job(job.id)
        if not proceed:
            return

        heartbeat = asyncio.create_task(self._heartbeat(job.id, worker_id))
        try:
            outcome = await self._run_handler(job)
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass

        async with self.session_factory() as session:
            await self._service(session).apply_processing_result(job.id, outcome, worker_id=worker_id)

    async def _run_handler(self, job: ProcessingJob) -> ProcessingOutcome:
        """Run the job's handler; any exception becomes a failed outcome."""
        kind = JobKind(job.kind)
        handler = self.handlers.get(kind)
        if handler is None:
            return ProcessingOutcome.failed("UnknownJobKind", f"No handler for {job.kind}")

        with tempfile.TemporaryDirectory(prefix=f"job-{job.id}-") as workdir:
            ctx = JobContext(
                job_id=job.id,
                kind=kind,
                attempt=job.attempts,
                payload=dict(job.payload or {}),
                storage=self.storage,
                media=self.media,
                workdir=Path(workdir),
            )
            try:
                return await handler(ctx)
            except Exception as e:
                logger.warning(
                    "%s job %s attempt %d raised %s: %s",
                    job.kind, job.id, job.attempts, type(e).__name__, e,
                )
                return ProcessingOutcome.failed(
                    name=type(e).__name__,
                    message=str(e) or type(e).__name__,
                    stack=traceback.format_exc(),
                )

    async def _heartbeat(self, job_id: UUID, worker_id: str) -> None:
        interval = self.settings.job_heartbeat_interval_seconds
        while True:
            await asyncio.sleep(interval)
            async with self.session_factory() as session:
                if not await self._queue(session).heartbeat(job_id, worker_id):
                    logger.warning("Worker %s lost its claim on job %s", worker_id, job_id)
                    return

    # --- Loops ---

    async def _worker(self, index: int) -> None:
        worker_id = f"{self.name}:{index}"
        logger.info("Worker %s started", worker_id)
        while not self._stopping.is_set():
            try:
                processed = await self.run_once(worker_id)
            except Exception:
                logger.exception("Worker %s failed to process a job", worker_id)
                processed = False
            if not processed:
                await self._sleep(self.settings.worker_poll_interval_seconds)
        logger.info("Worker %s stopped", worker_id)

    async def sweep_stale(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        """Fail lost jobs that were on their last attempt, requeue the rest. Returns (failed, requeued)."""
        async with self.session_factory() as session:
            failed = await self._service(session).fail_lost_jobs(now)
        async with self.session_factory() as session:
            requeued = await self._queue(session).requeue_stale(now)
        return failed, requeued

    async def _reaper(self) -> None:
        interval = max(self.settings.job_visibility_timeout_seconds / 2, 1)
        while not self._stopping.is_set():
            try:
                await self.sweep_stale()
            except Exception:
                logger.exception("Stale job sweep failed")
            await self._sleep(interval)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """Run until stop() is called; in-flight jobs finish first."""
        tasks = [
            asyncio.create_task(self._worker(i + 1))
            for i in range(self.settings.worker_concurrency)
        ]
        tasks.append(asyncio.create_task(self._reaper()))
        logger.info("Worker pool %s running %d workers", self.name, self.settings.worker_concurrency)
        await asyncio.gather(*tasks)

    def stop(self) -> None:
        logger.info("Stopping worker pool %s", self.name)
        self._stopping.set()
