"""
Metadata Extraction Job

Probes the source for technical metadata and picks the next step:
thumbnails for images, a preview transcode for videos, nothing otherwise.
"""
import logging

from assetvault.services.lifecycle import AssetType, JobKind, ProcessingOutcome
from assetvault.workers.context import JobContext

logger = logging.getLogger(__name__)

FOLLOW_UPS = {
    AssetType.IMAGE: (JobKind.GENERATE_THUMBNAILS,),
    AssetType.VIDEO: (JobKind.TRANSCODE,),
}


async def run_metadata_job(ctx: JobContext) -> ProcessingOutcome:
    asset_type = AssetType(ctx.payload["asset_type"])
    mime_type = ctx.payload["mime_type"].lower()

    metadata = None
    if asset_type == AssetType.IMAGE:
        metadata = await ctx.media.probe_image(await ctx.download_source())
    elif asset_type in (AssetType.VIDEO, AssetType.AUDIO):
        metadata = await ctx.media.probe_av(await ctx.download_source())
    elif asset_type == AssetType.DOCUMENT and mime_type == "application/pdf":
        metadata = await ctx.media.probe_document(await ctx.download_source())

    extracted = metadata.to_dict() if metadata else {}
    logger.info("Extracted metadata for asset %s: %s", ctx.payload["asset_id"], extracted)
    return ProcessingOutcome(
        metadata=metadata,
        follow_up=FOLLOW_UPS.get(asset_type, ()),
        result={"metadata": extracted},
    )
