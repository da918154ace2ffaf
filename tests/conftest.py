"""
Pytest configuration and fixtures.

Child processes are replaced by in-memory fakes exposing the parts of
asyncio.subprocess.Process the pipeline touches.
"""

import asyncio

import pytest

from loopclip.config import Settings


class FakeStdin:
    """Stand-in for a subprocess stdin StreamWriter."""

    def __init__(self, broken: bool = False):
        self.data = bytearray()
        self.closed = False
        self.broken = broken

    def write(self, chunk: bytes) -> None:
        if self.broken:
            raise BrokenPipeError()
        self.data.extend(chunk)

    async def drain(self) -> None:
        if self.broken:
            raise ConnectionResetError()

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, stdout=None, stdin=None, stderr=None):
        self.stdout = stdout
        self.stdin = stdin
        self.stderr = stderr
        self.returncode = None
        self.kill_calls = 0
        self._exited = asyncio.Event()

    def kill(self) -> None:
        self.kill_calls += 1
        if self.returncode is None:
            self.returncode = -9
            self._exited.set()
        # a dead process closes its end of every pipe
        for reader in (self.stdout, self.stderr):
            if reader is not None:
                reader.feed_eof()

    def exit(self, code: int = 0) -> None:
        self.returncode = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


def make_reader(*chunks: bytes, eof: bool = True) -> asyncio.StreamReader:
    """StreamReader preloaded with chunks; must be called inside a running loop."""
    reader = asyncio.StreamReader()
    for chunk in chunks:
        reader.feed_data(chunk)
    if eof:
        reader.feed_eof()
    return reader


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        ffmpeg_path="ffmpeg",
        yt_dlp_path="yt-dlp",
        yt_cookies_file=None,
        metadata_timeout_seconds=5.0,
        metadata_max_attempts=2,
        metadata_retry_delay_seconds=0.0,
        stream_idle_timeout_seconds=5.0,
        stream_chunk_size=1024,
        relay_buffer_chunks=4,
    )


@pytest.fixture
def reader_factory():
    return make_reader


@pytest.fixture
def process_factory():
    return FakeProcess


@pytest.fixture
def stdin_factory():
    return FakeStdin
