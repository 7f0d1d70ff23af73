"""
Media Processing

Probing and rendition generation on local files: libvips for images and
PDFs, ffmpeg for audio/video. libvips calls block, so they run in a
thread; ffmpeg runs as a subprocess.
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict

import ffmpeg
import pyvips

from assetvault.services.lifecycle import ContentMetadata

logger = logging.getLogger(__name__)


class MediaProcessingError(Exception):
    """Raised when a probe or conversion fails."""


def _int(value) -> Any:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _float(value) -> Any:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class MediaProcessor:
    """
    Image and video processing.

    Uses libvips for images (thumbnail shrinks on load, so large
    originals never have to fit in memory) and ffmpeg for video.
    """

    def __init__(self, jpeg_quality: int = 85, crf: int = 23, preset: str = "veryfast"):
        self.jpeg_quality = jpeg_quality
        self.crf = crf
        self.preset = preset

    # --- Probing ---

    async def probe_image(self, path: Path) -> ContentMetadata:
        return await asyncio.to_thread(self._probe_image, path)

    def _probe_image(self, path: Path) -> ContentMetadata:
        try:
            image = pyvips.Image.new_from_file(str(path), access="sequential")
        except pyvips.Error as e:
            raise MediaProcessingError(f"Cannot read image: {e}")
        return ContentMetadata(width=image.width, height=image.height)

    async def probe_document(self, path: Path) -> ContentMetadata:
        return await asyncio.to_thread(self._probe_document, path)

    def _probe_document(self, path: Path) -> ContentMetadata:
        try:
            image = pyvips.Image.new_from_file(str(path), access="sequential")
        except pyvips.Error as e:
            raise MediaProcessingError(f"Cannot read document: {e}")
        pages = image.get("n-pages") if "n-pages" in image.get_fields() else 1
        return ContentMetadata(width=image.width, height=image.height, page_count=pages)

    async def probe_av(self, path: Path) -> ContentMetadata:
        try:
            probe = await asyncio.to_thread(ffmpeg.probe, str(path))
        except ffmpeg.Error as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else str(e)
            raise MediaProcessingError(f"ffprobe failed: {stderr}")

        streams = probe.get("streams", [])
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
        primary = video or audio
        if primary is None:
            raise MediaProcessingError("No audio or video stream found")

        fmt = probe.get("format", {})
        return ContentMetadata(
            width=_int(video.get("width")) if video else None,
            height=_int(video.get("height")) if video else None,
            duration=_float(fmt.get("duration")),
            codec=primary.get("codec_name"),
            bitrate=_int(fmt.get("bit_rate")),
        )

    # --- Renditions ---

    async def thumbnail(self, path: Path, size: int) -> Dict[str, Any]:
        """JPEG scaled down to fit a size×size box (never upscaled)."""
        return await asyncio.to_thread(self._thumbnail, path, size)

    def _thumbnail(self, path: Path, size: int) -> Dict[str, Any]:
        try:
            image = pyvips.Image.thumbnail(str(path), size, height=size, size="down")
            if image.hasalpha():
                image = image.flatten(background=[255, 255, 255])
            content = image.write_to_buffer(f".jpg[Q={self.jpeg_quality}]")
        except pyvips.Error as e:
            raise MediaProcessingError(f"Thumbnail failed: {e}")
        return {"content": content, "width": image.width, "height": image.height}

    async def transcode_preview(self, source: Path, output: Path, height: int) -> Dict[str, Any]:
        """H.264/AAC MP4 at most `height` lines tall, aspect preserved."""
        stream = ffmpeg.input(str(source))
        stream = ffmpeg.output(
            stream,
            str(output),
            vcodec="libx264",
            acodec="aac",
            vf=f"scale=-2:'min({height},ih)'",
            preset=self.preset,
            crf=self.crf,
            movflags="+faststart",
        ).overwrite_output()

        process = await asyncio.create_subprocess_exec(
            *stream.compile(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            raise MediaProcessingError(
                f"FFmpeg transcode failed: {stderr.decode(errors='replace') if stderr else 'Unknown error'}"
            )
        if not output.exists() or output.stat().st_size == 0:
            raise MediaProcessingError("Transcode produced no output")

        metadata = await self.probe_av(output)
        return {"width": metadata.width, "height": metadata.height, "duration": metadata.duration}
