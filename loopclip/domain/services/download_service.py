import asyncio
import logging
from dataclasses import dataclass

from loopclip.config import Settings
from loopclip.domain.errors import SourceUnavailable, TimeRangeExceedsSourceDuration
from loopclip.domain.models import ClipRequest, SourceMetadata, format_seconds
from loopclip.domain.services.filenames import build_clip_filename
from loopclip.infrastructure.downloaders import resolve_source_metadata
from loopclip.infrastructure.pipeline import PipelineHandle, open_pipeline

logger = logging.getLogger(__name__)


@dataclass
class ClipDownload:
    clip: ClipRequest
    metadata: SourceMetadata
    filename: str
    pipeline: PipelineHandle


def check_source_duration(clip: ClipRequest, metadata: SourceMetadata) -> None:
    """Reject ranges ending past the source, when the source reports a duration."""
    duration = metadata.duration_seconds
    if not duration:
        return
    if clip.end_seconds > duration:
        raise TimeRangeExceedsSourceDuration(
            f"End time ({format_seconds(clip.end_seconds)}s) exceeds "
            f"video duration ({format_seconds(duration)}s)"
        )


class DownloadService:
    """
    Runs one clip request end to end:
    - Resolve source metadata, retrying transient failures with backoff
    - Check the requested range against the real duration
    - Spawn the yt-dlp -> ffmpeg pipeline
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def resolve_metadata(self, clip: ClipRequest) -> SourceMetadata:
        attempts = self.settings.metadata_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await resolve_source_metadata(clip.source_url, self.settings)
            except SourceUnavailable as exc:
                logger.warning(
                    "Video info fetch failed for %s (attempt %d/%d): %s",
                    clip.source_url,
                    attempt,
                    attempts,
                    exc.__cause__ or exc,
                )
                if attempt == attempts:
                    raise
            await asyncio.sleep(self.settings.metadata_retry_delay_seconds * (2 ** (attempt - 1)))
        raise SourceUnavailable()

    async def start(self, clip: ClipRequest) -> ClipDownload:
        metadata = await self.resolve_metadata(clip)
        check_source_duration(clip, metadata)

        filename = build_clip_filename(clip, metadata)
        pipeline = await open_pipeline(clip, self.settings)
        logger.info(
            "Streaming %s [%ss-%ss%s] as %s",
            clip.source_url,
            format_seconds(clip.start_seconds),
            format_seconds(clip.end_seconds),
            ", loop" if clip.optimize_loop else "",
            filename,
        )
        return ClipDownload(clip=clip, metadata=metadata, filename=filename, pipeline=pipeline)
