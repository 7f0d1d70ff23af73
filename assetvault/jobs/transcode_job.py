"""
Transcode Job

Produces the 720p H.264 preview of a video asset.
"""
import logging

from assetvault.services.lifecycle import ProcessingOutcome, Rendition, RenditionName
from assetvault.workers.context import JobContext

logger = logging.getLogger(__name__)

PREVIEW_HEIGHT = 720


async def run_transcode_job(ctx: JobContext) -> ProcessingOutcome:
    source = await ctx.download_source()
    output = ctx.workdir / "preview.mp4"

    info = await ctx.media.transcode_preview(source, output, PREVIEW_HEIGHT)
    content = output.read_bytes()

    name = RenditionName.PREVIEW_720P
    key = ctx.rendition_key(name.value, f"{name.value}.mp4")
    await ctx.storage.upload_rendition(key, content, "video/mp4")

    logger.info("Transcoded preview for asset %s (%d bytes)", ctx.payload["asset_id"], len(content))
    return ProcessingOutcome(
        renditions=(Rendition(
            name=name,
            storage_key=key,
            content_type="video/mp4",
            width=info.get("width"),
            height=info.get("height"),
            file_size_bytes=len(content),
        ),),
        result={"preview": key, "duration": info.get("duration")},
    )
