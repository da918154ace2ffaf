"""
yt-dlp access: metadata lookup through the library and the command line
used to stream source audio to stdout.

If YouTube asks to "sign in to confirm you're not a bot" (common on
datacenter IPs), set YT_COOKIES_FILE to a Netscape-format cookies file
exported from your browser. Both the lookup and the stream pick it up.
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, List, Optional

import yt_dlp

from loopclip.config import Settings
from loopclip.domain.errors import SourceUnavailable
from loopclip.domain.models import SourceMetadata

logger = logging.getLogger(__name__)

# The android client is blocked less often than the web client.
EXTRACTOR_ARGS = "youtube:player_client=android"
AUDIO_FORMAT = "bestaudio/best"


def _cookies_file(settings: Settings) -> Optional[str]:
    cookies_file = settings.yt_cookies_file
    if cookies_file and Path(cookies_file).is_file():
        return cookies_file
    return None


def build_info_options(settings: Settings) -> dict:
    opts = {
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
        "noplaylist": True,
        "nocheckcertificate": True,
        "socket_timeout": settings.metadata_timeout_seconds,
        "extractor_args": {"youtube": {"player_client": ["android"]}},
    }
    cookies_file = _cookies_file(settings)
    if cookies_file:
        opts["cookiefile"] = cookies_file
    return opts


def _parse_duration(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def fetch_source_metadata(url: str, settings: Settings) -> SourceMetadata:
    """
    Ask yt-dlp for the video's title and duration without downloading media.
    Raises SourceUnavailable on any extraction failure.
    """
    try:
        with yt_dlp.YoutubeDL(build_info_options(settings)) as ydl:
            info = ydl.extract_info(url, download=False)
    except (yt_dlp.utils.YoutubeDLError, OSError) as e:
        raise SourceUnavailable() from e

    if not isinstance(info, dict):
        raise SourceUnavailable()

    title = info.get("title")
    return SourceMetadata(
        title=title if isinstance(title, str) and title else None,
        duration_seconds=_parse_duration(info.get("duration")),
    )


async def resolve_source_metadata(url: str, settings: Settings) -> SourceMetadata:
    """
    Run the blocking lookup in a worker thread, bounded by the metadata timeout.
    A timed-out thread is abandoned; yt-dlp's own socket timeout ends it.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(fetch_source_metadata, url, settings),
            timeout=settings.metadata_timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        logger.warning("Metadata lookup timed out after %ss for %s", settings.metadata_timeout_seconds, url)
        raise SourceUnavailable() from e


def build_source_stream_command(url: str, settings: Settings) -> List[str]:
    """yt-dlp command line that writes the best audio stream to stdout."""
    cmd = [
        settings.yt_dlp_path,
        "--format", AUDIO_FORMAT,
        "--extractor-args", EXTRACTOR_ARGS,
        "--no-playlist",
        "--no-part",
        "--quiet",
        "--no-warnings",
    ]
    cookies_file = _cookies_file(settings)
    if cookies_file:
        cmd += ["--cookies", cookies_file]
    cmd += ["--output", "-", "--", url]
    return cmd
