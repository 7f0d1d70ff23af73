"""
Thumbnail Generation Job

Renders the small and large JPEG thumbnails of an image asset. Keys are
deterministic, so a redelivered job overwrites the same objects.
"""
import logging

from assetvault.services.lifecycle import ProcessingOutcome, Rendition, RenditionName
from assetvault.workers.context import JobContext

logger = logging.getLogger(__name__)

# Bounding box edge in pixels
THUMBNAIL_SIZES = (
    (RenditionName.THUMBNAIL_SMALL, 256),
    (RenditionName.THUMBNAIL_LARGE, 640),
)


async def run_thumbnail_job(ctx: JobContext) -> ProcessingOutcome:
    source = await ctx.download_source()

    renditions = []
    for name, size in THUMBNAIL_SIZES:
        thumbnail = await ctx.media.thumbnail(source, size)
        key = ctx.rendition_key(name.value, f"{name.value}.jpg")
        await ctx.storage.upload_rendition(key, thumbnail["content"], "image/jpeg")
        renditions.append(Rendition(
            name=name,
            storage_key=key,
            content_type="image/jpeg",
            width=thumbnail["width"],
            height=thumbnail["height"],
            file_size_bytes=len(thumbnail["content"]),
        ))

    logger.info("Generated %d thumbnails for asset %s", len(renditions), ctx.payload["asset_id"])
    return ProcessingOutcome(
        renditions=tuple(renditions),
        result={"renditions": [r.storage_key for r in renditions]},
    )
