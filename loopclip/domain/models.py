from dataclasses import dataclass
from enum import Enum
from typing import Optional

DEFAULT_TITLE = "video"


def format_seconds(value: float) -> str:
    """
    Shortest decimal form of a number of seconds: 10.0 -> "10", 0.1234567 ->
    "0.1234567". Values are rounded to the nanosecond first, which drops
    subtraction noise such as 5 - 0.05 -> 4.95 but keeps any precision a
    client could reasonably send.
    """
    rounded = round(float(value), 9)
    text = repr(rounded)
    if "e" in text:
        text = f"{rounded:.9f}".rstrip("0").rstrip(".")
    elif text.endswith(".0"):
        text = text[:-2]
    return "0" if text in ("", "-0") else text


@dataclass(frozen=True)
class ClipRequest:
    source_url: str
    start_seconds: float
    end_seconds: float
    optimize_loop: bool = False

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds


@dataclass(frozen=True)
class SourceMetadata:
    title: Optional[str] = None
    duration_seconds: Optional[float] = None  # None or 0 when the source reports none

    @property
    def display_title(self) -> str:
        return self.title or DEFAULT_TITLE


class PipelineState(str, Enum):
    SPAWNING = "spawning"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.COMPLETED, PipelineState.FAILED, PipelineState.CANCELED)
