import re
import unicodedata
from urllib.parse import quote

from loopclip.domain.models import DEFAULT_TITLE, ClipRequest, SourceMetadata, format_seconds

MAX_TITLE_LENGTH = 200

_FORBIDDEN_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")


def sanitize_filename(title: str) -> str:
    """
    Make a video title safe to use as a filename stem.
    Idempotent: sanitizing the output again returns it unchanged.
    """
    cleaned = _FORBIDDEN_CHARS.sub("", title)
    cleaned = _WHITESPACE.sub("_", cleaned)
    return cleaned[:MAX_TITLE_LENGTH]


def build_clip_filename(clip: ClipRequest, metadata: SourceMetadata) -> str:
    stem = sanitize_filename(metadata.display_title) or DEFAULT_TITLE
    loop_suffix = "_loop" if clip.optimize_loop else ""
    return (
        f"{stem}_{format_seconds(clip.start_seconds)}-{format_seconds(clip.end_seconds)}"
        f"{loop_suffix}.mp3"
    )


def content_disposition(filename: str) -> str:
    """
    Attachment header for the clip. HTTP headers are latin-1, so titles
    outside ASCII get an ASCII fallback plus an RFC 5987 ``filename*``.
    """
    if filename.isascii():
        return f'attachment; filename="{filename}"'

    fallback = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
    if fallback.startswith("_"):
        fallback = DEFAULT_TITLE + fallback
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
