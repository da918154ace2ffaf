"""
Streaming pipeline: yt-dlp stdout -> ffmpeg stdin, ffmpeg stdout -> relay buffer.

A PipelineHandle owns both child processes, the tasks moving bytes between
them and the relay buffer read by the HTTP response. It reaches exactly one
terminal state (completed, failed or canceled) and every terminal transition
runs the same teardown: kill whatever is still running, cancel the copy
tasks, destroy the relay buffer. Reaper tasks then read the killed
processes' pipes to EOF and wait for them to exit.

Backpressure is end to end: a slow reader leaves the relay buffer full, the
relay task stops reading ffmpeg stdout, ffmpeg blocks on its output pipe and
stops reading stdin, and the pump's ``drain()`` stalls reading from yt-dlp.
"""
import asyncio
import logging
from collections import deque
from typing import AsyncIterator, Deque, List, Optional, Set

from loopclip.config import Settings
from loopclip.domain.errors import SourceStreamUnavailable, TranscodeFailed
from loopclip.domain.models import ClipRequest, PipelineState
from loopclip.infrastructure.downloaders import build_source_stream_command
from loopclip.infrastructure.ffmpeg_adapter import build_transcode_command

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20
REAP_TIMEOUT_SECONDS = 5.0
REAP_READ_SIZE = 64 * 1024

_END = object()
_WAKE = object()

# Reapers outlive their handle; keep them referenced until they finish.
_reapers: Set[asyncio.Task] = set()


class RelayBuffer:
    """Bounded in-memory conduit between ffmpeg stdout and the HTTP response."""

    def __init__(self, max_chunks: int) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_chunks)
        self._error: Optional[BaseException] = None
        self.destroyed = False

    async def write(self, chunk: bytes) -> None:
        if not self.destroyed:
            await self._queue.put(chunk)

    async def end(self) -> None:
        if not self.destroyed:
            await self._queue.put(_END)

    def abort(self, error: BaseException) -> None:
        """Make the next read raise ``error``, even if chunks are still queued."""
        self._error = error
        self._wake()

    def destroy(self) -> None:
        self.destroyed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._wake()

    def _wake(self) -> None:
        try:
            self._queue.put_nowait(_WAKE)
        except asyncio.QueueFull:
            pass  # queue non-empty, so no reader is blocked

    async def read(self) -> Optional[bytes]:
        """Next chunk, or None once the stream has ended."""
        while True:
            if self._error is not None:
                raise self._error
            if self.destroyed:
                return None
            item = await self._queue.get()
            if item is _WAKE:
                continue
            if item is _END:
                return None
            return item


async def _read_to_eof(reader: Optional[asyncio.StreamReader]) -> None:
    if reader is None:
        return
    while await reader.read(REAP_READ_SIZE):
        pass


async def reap_process(
    proc: asyncio.subprocess.Process, timeout: float = REAP_TIMEOUT_SECONDS
) -> Optional[int]:
    """
    Read a killed process's output pipes to EOF and wait for it to exit.

    A paused pipe transport never sees EOF on its own, so without this the
    pipes stay open and ``wait()`` never returns. Returns the exit code, or
    None if the process outlived ``timeout``.
    """
    try:
        await asyncio.wait_for(
            asyncio.gather(_read_to_eof(proc.stdout), _read_to_eof(proc.stderr), proc.wait()),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("Child process still running %ss after kill", timeout)
        return None
    return proc.returncode


def _spawn_reaper(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _reapers.add(task)
    task.add_done_callback(_reapers.discard)
    return task


class PipelineHandle:
    def __init__(
        self,
        source: asyncio.subprocess.Process,
        transcoder: asyncio.subprocess.Process,
        *,
        chunk_size: int = 64 * 1024,
        relay_chunks: int = 16,
        idle_timeout: Optional[float] = None,
        failure_message: Optional[str] = None,
    ) -> None:
        self.source = source
        self.transcoder = transcoder
        self.relay = RelayBuffer(relay_chunks)
        self.state = PipelineState.SPAWNING
        self._chunk_size = chunk_size
        self._idle_timeout = idle_timeout
        self._failure_message = failure_message
        self._tasks: List[asyncio.Task] = []
        self._stderr_task: Optional[asyncio.Task] = None
        self._reapers: List[asyncio.Task] = []
        self._stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self.bytes_relayed = 0

    # -- lifecycle --------------------------------------------------------

    def start(self) -> None:
        if self.source.stdout is None:
            self._finish(PipelineState.FAILED)
            raise SourceStreamUnavailable()

        self._tasks.append(asyncio.create_task(self._guard(self._pump_source)))
        self._tasks.append(asyncio.create_task(self._guard(self._relay_output)))
        if self.transcoder.stderr is not None:
            self._stderr_task = asyncio.create_task(self._drain_transcoder_stderr())
            self._tasks.append(self._stderr_task)
        if self.source.stderr is not None:
            self._tasks.append(asyncio.create_task(self._drain_source_stderr()))
        self.state = PipelineState.STREAMING

    def close(self) -> None:
        """Cancel the pipeline unless it already reached a terminal state."""
        self._finish(PipelineState.CANCELED)

    def _fail(self, error: TranscodeFailed) -> None:
        if self.state.is_terminal:
            return
        self.relay.abort(error)
        self._finish(PipelineState.FAILED)

    def _finish(self, state: PipelineState) -> bool:
        if self.state.is_terminal:
            return False
        previous, self.state = self.state, state
        self._teardown()
        log = logger.warning if state is PipelineState.FAILED else logger.info
        log(
            "Pipeline %s -> %s (%d bytes relayed)",
            previous.value,
            state.value,
            self.bytes_relayed,
        )
        return True

    def _teardown(self) -> None:
        for proc in (self.transcoder, self.source):
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass

        stdin = self.transcoder.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current and not task.done()]
        for task in pending:
            task.cancel()

        self.relay.destroy()

        self._reapers = [
            _spawn_reaper(self._reap(proc, pending)) for proc in (self.transcoder, self.source)
        ]

    async def _reap(self, proc: asyncio.subprocess.Process, pending: List[asyncio.Task]) -> None:
        # the canceled copy tasks must let go of the pipes before they are read here
        if pending:
            await asyncio.wait(pending, timeout=REAP_TIMEOUT_SECONDS)
        await reap_process(proc)

    async def wait_closed(self) -> None:
        """Wait until teardown has reaped both processes and closed their pipes."""
        if self._reapers:
            await asyncio.wait(self._reapers)

    # -- byte movers ------------------------------------------------------

    async def _guard(self, step) -> None:
        try:
            await step()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Pipeline task failed")
            self._fail(TranscodeFailed(self._failure_message))

    async def _pump_source(self) -> None:
        stdin = self.transcoder.stdin
        try:
            while True:
                chunk = await self.source.stdout.read(self._chunk_size)
                if not chunk:
                    break
                stdin.write(chunk)
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # ffmpeg stops reading once it has the requested duration
            logger.debug("Transcoder closed its input")
        finally:
            if not stdin.is_closing():
                stdin.close()

    async def _relay_output(self) -> None:
        while True:
            chunk = await self.transcoder.stdout.read(self._chunk_size)
            if not chunk:
                break
            self.bytes_relayed += len(chunk)
            await self.relay.write(chunk)

        returncode = await self.transcoder.wait()
        if self._stderr_task is not None:
            await asyncio.wait({self._stderr_task}, timeout=1.0)

        if returncode != 0:
            logger.error(
                "FFmpeg exited with code %s: %s",
                returncode,
                " | ".join(self._stderr_tail) or "no diagnostics",
            )
            self._fail(TranscodeFailed(self._failure_message))
            return
        if self.bytes_relayed == 0:
            logger.error("FFmpeg produced no audio")
            self._fail(TranscodeFailed(self._failure_message))
            return

        logger.info("FFmpeg processing complete")
        await self.relay.end()

    async def _drain_transcoder_stderr(self) -> None:
        async for line in self.transcoder.stderr:
            text = line.decode("utf-8", "ignore").strip()
            if text:
                self._stderr_tail.append(text)

    async def _drain_source_stderr(self) -> None:
        async for line in self.source.stderr:
            text = line.decode("utf-8", "ignore").strip()
            if text:
                logger.debug("yt-dlp: %s", text)

    # -- reading ----------------------------------------------------------

    async def _next_chunk(self) -> Optional[bytes]:
        if self._idle_timeout is None:
            return await self.relay.read()
        try:
            return await asyncio.wait_for(self.relay.read(), timeout=self._idle_timeout)
        except asyncio.TimeoutError:
            logger.error("Pipeline stalled for %ss without output", self._idle_timeout)
            self._fail(TranscodeFailed(self._failure_message))
            raise TranscodeFailed(self._failure_message)

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """
        Yield transcoded MP3 chunks as they arrive.

        Raises TranscodeFailed if the pipeline fails. Leaving the iteration
        early (client disconnect, aclose) cancels the pipeline.
        """
        try:
            while True:
                chunk = await self._next_chunk()
                if chunk is None:
                    break
                yield chunk
            self._finish(PipelineState.COMPLETED)
        finally:
            self.close()


async def open_pipeline(clip: ClipRequest, settings: Settings) -> PipelineHandle:
    """Spawn yt-dlp and ffmpeg for ``clip`` and start moving bytes between them."""
    source_cmd = build_source_stream_command(clip.source_url, settings)
    transcode_cmd = build_transcode_command(clip, settings.ffmpeg_path)
    failure_message = (
        "Failed to process audio with loop optimization" if clip.optimize_loop else None
    )

    try:
        source = await asyncio.create_subprocess_exec(
            *source_cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error("Could not start yt-dlp (%s): %s", settings.yt_dlp_path, e)
        raise SourceStreamUnavailable() from e

    try:
        transcoder = await asyncio.create_subprocess_exec(
            *transcode_cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error("Could not start ffmpeg (%s): %s", settings.ffmpeg_path, e)
        source.kill()
        await reap_process(source)
        raise TranscodeFailed(failure_message) from e

    logger.info("FFmpeg command: %s", " ".join(transcode_cmd))

    handle = PipelineHandle(
        source,
        transcoder,
        chunk_size=settings.stream_chunk_size,
        relay_chunks=settings.relay_buffer_chunks,
        idle_timeout=settings.stream_idle_timeout_seconds,
        failure_message=failure_message,
    )
    handle.start()
    return handle
