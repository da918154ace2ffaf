"""
Static validation of a download request body.

Nothing here touches the network or spawns a process. Time-range and loop
checks run before the URL check so their messages win for any URL.
"""
import math
from typing import Any
from urllib.parse import parse_qs, urlsplit

from pydantic import ValidationError

from loopclip.app.schemas.download import DownloadRequest
from loopclip.domain.errors import (
    InvalidTimeRange,
    InvalidUrl,
    LoopDurationTooShort,
    MalformedRequestBody,
)
from loopclip.domain.models import ClipRequest

MIN_LOOP_DURATION_SECONDS = 1.0

# Hosts that identify a video through the ``v`` query parameter.
WATCH_HOSTS = frozenset({"youtube.com", "www.youtube.com", "m.youtube.com"})
# Hosts that identify a video through the first path segment.
SHORT_LINK_HOSTS = frozenset({"youtu.be"})

_TIME_FIELDS = ("startTime", "endTime")


def is_supported_video_url(url: Any) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parts = urlsplit(url.strip())
        hostname = (parts.hostname or "").lower()
    except ValueError:
        return False

    if parts.scheme.lower() not in ("http", "https"):
        return False

    if hostname in WATCH_HOSTS:
        video_ids = parse_qs(parts.query).get("v", [])
        return any(v.strip() for v in video_ids)
    if hostname in SHORT_LINK_HOSTS:
        return bool(parts.path.strip("/"))
    return False


def _parse_body(body: Any) -> DownloadRequest:
    if not isinstance(body, dict):
        raise MalformedRequestBody()
    try:
        return DownloadRequest.model_validate(body)
    except ValidationError as exc:
        fields = {err["loc"][0] for err in exc.errors() if err.get("loc")}
        if fields.intersection(_TIME_FIELDS):
            raise InvalidTimeRange() from exc
        raise MalformedRequestBody() from exc


def parse_clip_request(body: Any) -> ClipRequest:
    """
    Turn a decoded JSON body into a ClipRequest.

    Raises MalformedRequestBody, InvalidTimeRange, LoopDurationTooShort or
    InvalidUrl, in that order of precedence.
    """
    payload = _parse_body(body)

    start, end = payload.start_time, payload.end_time
    if start is None or end is None:
        raise InvalidTimeRange()
    try:
        start, end = float(start), float(end)
    except OverflowError as exc:
        # integers past the float range, e.g. 1e400 written out in full
        raise InvalidTimeRange() from exc
    if not (math.isfinite(start) and math.isfinite(end)):
        raise InvalidTimeRange()
    if start < 0 or end <= start:
        raise InvalidTimeRange()

    optimize_loop = bool(payload.optimize_loop)
    if optimize_loop and end - start < MIN_LOOP_DURATION_SECONDS:
        raise LoopDurationTooShort()

    if not is_supported_video_url(payload.url):
        raise InvalidUrl()

    return ClipRequest(
        source_url=payload.url.strip(),
        start_seconds=start,
        end_seconds=end,
        optimize_loop=optimize_loop,
    )
