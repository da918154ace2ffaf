"""
Errors raised while turning a download request into an MP3 stream.

Each error carries the HTTP status and the message returned to the client
as ``{"error": message}`` when it happens before any audio bytes are sent.
"""
from typing import Optional


class ClipError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error during download"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class MalformedRequestBody(ClipError):
    status_code = 400
    default_message = "Invalid request body"


class InvalidUrl(ClipError):
    status_code = 400
    default_message = "Invalid YouTube URL"


class InvalidTimeRange(ClipError):
    status_code = 400
    default_message = "Invalid time range. startTime must be >= 0 and endTime must be > startTime"


class LoopDurationTooShort(ClipError):
    status_code = 400
    default_message = "Loop optimization requires segment duration of at least 1 second"


class TimeRangeExceedsSourceDuration(ClipError):
    status_code = 400
    default_message = "End time exceeds video duration"


class SourceUnavailable(ClipError):
    status_code = 404
    default_message = "Video not found or unavailable"


class SourceStreamUnavailable(ClipError):
    status_code = 500
    default_message = "Failed to get audio stream"


class TranscodeFailed(ClipError):
    status_code = 500
    default_message = "Failed to process audio segment"


class InternalError(ClipError):
    status_code = 500
