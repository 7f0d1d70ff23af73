"""
Cleanup Job

Deletes every stored object of a soft-deleted asset. Objects that are
already gone count as deleted, so the job is safe to redeliver.
"""
from assetvault.services.lifecycle import ProcessingOutcome
from assetvault.workers.context import JobContext


async def run_cleanup_job(ctx: JobContext) -> ProcessingOutcome:
    deleted = await ctx.storage.delete_keys(ctx.payload.get("storage_keys", []))
    return ProcessingOutcome(result={"deleted": len(deleted)})
