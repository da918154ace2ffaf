"""
Configuration using Pydantic Settings.

Binary locations default to Homebrew paths on macOS and to a PATH lookup
everywhere else; FFMPEG_PATH and YT_DLP_PATH override them.
"""
import sys
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_binary_path(name: str, platform: str = sys.platform) -> str:
    if platform == "darwin":
        return f"/opt/homebrew/bin/{name}"
    return name


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"

    # External engines
    ffmpeg_path: str = Field(default_factory=lambda: default_binary_path("ffmpeg"))
    yt_dlp_path: str = Field(default_factory=lambda: default_binary_path("yt-dlp"))
    # Netscape-format cookies exported from a browser, for hosts YouTube flags as bots
    yt_cookies_file: Optional[str] = None

    # Metadata lookup
    metadata_timeout_seconds: float = Field(default=30.0, gt=0)
    metadata_max_attempts: int = Field(default=2, ge=1)
    metadata_retry_delay_seconds: float = Field(default=1.0, ge=0)

    # Streaming
    stream_idle_timeout_seconds: float = Field(default=60.0, gt=0)
    stream_chunk_size: int = Field(default=64 * 1024, gt=0)
    relay_buffer_chunks: int = Field(default=16, gt=0)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
