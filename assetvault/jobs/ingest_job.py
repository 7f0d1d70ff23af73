"""
Ingest Job

First step of the processing chain: confirm the uploaded object is in
storage with the expected size, then hand over to metadata extraction.
"""
import logging

from assetvault.lib.errors import ProcessingError
from assetvault.services.lifecycle import JobKind, ProcessingOutcome
from assetvault.workers.context import JobContext

logger = logging.getLogger(__name__)


async def run_ingest_job(ctx: JobContext) -> ProcessingOutcome:
    key = ctx.source_key
    head = await ctx.storage.confirm_upload(key)
    if head is None:
        raise ProcessingError(f"Uploaded object not found: {key}")

    expected = ctx.payload["file_size_bytes"]
    if head["size"] != expected:
        raise ProcessingError(
            f"Stored object is {head['size']} bytes, expected {expected}"
        )

    logger.info("Ingested %s (%d bytes)", key, head["size"])
    return ProcessingOutcome(
        follow_up=(JobKind.EXTRACT_METADATA,),
        result={
            "size": head["size"],
            "etag": head.get("etag"),
            "content_type": head.get("content_type"),
        },
    )
