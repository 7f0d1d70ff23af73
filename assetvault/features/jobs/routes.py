"""
Jobs API endpoints.

Read-only view of the processing queue.
"""
from uuid import UUID

from fastapi import APIRouter, Depends

from assetvault.lib.deps import get_current_caller, get_job_queue
from assetvault.lib.errors import JobNotFoundError
from assetvault.lib.security import Caller
from assetvault.schemas.job import JobResponse, QueueStatsResponse
from assetvault.services.job_queue import JobQueue

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.get("/stats", response_model=QueueStatsResponse)
async def get_queue_stats(
    queue: JobQueue = Depends(get_job_queue),
    caller: Caller = Depends(get_current_caller),
):
    """Job counts per queue and status."""
    return QueueStatsResponse(queues=await queue.stats())


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: UUID,
    queue: JobQueue = Depends(get_job_queue),
    caller: Caller = Depends(get_current_caller),
):
    """
    Get job status and details.

    Returns full job state including all logs.
    """
    job = await queue.get_job(job_id)
    if not job or job.organization_id != caller.organization_id:
        raise JobNotFoundError(job_id=str(job_id))
    return job.to_dict()
