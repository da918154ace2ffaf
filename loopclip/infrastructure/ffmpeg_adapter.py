from typing import List, Optional

import ffmpeg

from loopclip.domain.models import ClipRequest, format_seconds

LOOP_FADE_SECONDS = 0.05
OUTPUT_FORMAT = "mp3"
OUTPUT_CODEC = "libmp3lame"
OUTPUT_BITRATE = "320k"


def loop_fade_filter(duration_seconds: float) -> str:
    """
    Symmetric 50ms fade-in/fade-out so the segment can repeat without a click.
    Offsets are relative to the trimmed segment, not the source timeline.
    """
    fade = format_seconds(LOOP_FADE_SECONDS)
    fade_out_start = format_seconds(duration_seconds - LOOP_FADE_SECONDS)
    return f"afade=t=in:st=0:d={fade},afade=t=out:st={fade_out_start}:d={fade}"


def audio_filters(clip: ClipRequest) -> Optional[str]:
    if clip.optimize_loop:
        return loop_fade_filter(clip.duration_seconds)
    return None


def build_transcode_command(clip: ClipRequest, ffmpeg_path: str = "ffmpeg") -> List[str]:
    """
    ffmpeg command line reading source audio on stdin and writing MP3 to stdout.
    Seeking happens on the input side so discarded audio is never decoded.
    """
    output_kwargs = {
        "format": OUTPUT_FORMAT,
        "acodec": OUTPUT_CODEC,
        "audio_bitrate": OUTPUT_BITRATE,
    }
    filters = audio_filters(clip)
    if filters:
        output_kwargs["af"] = filters

    return (
        ffmpeg.input(
            "pipe:0",
            ss=format_seconds(clip.start_seconds),
            t=format_seconds(clip.duration_seconds),
        )
        .output("pipe:1", **output_kwargs)
        .compile(cmd=[ffmpeg_path, "-hide_banner", "-loglevel", "error"])
    )
