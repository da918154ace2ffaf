"""
Adapts a running pipeline into the HTTP response.

The first MP3 chunk is awaited before any header goes out, so setup failures
still reach the client as JSON. After that the bytes are relayed as they
arrive; a later failure can only cut the transfer short.
"""
import logging
from typing import AsyncIterator

from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from loopclip.domain.errors import TranscodeFailed
from loopclip.domain.services.download_service import ClipDownload
from loopclip.domain.services.filenames import content_disposition

logger = logging.getLogger(__name__)

AUDIO_MEDIA_TYPE = "audio/mpeg"


class PipelineStreamingResponse(StreamingResponse):
    """
    StreamingResponse that always tears its pipeline down when the ASGI call
    ends, and returns only once both child processes have been reaped.
    """

    def __init__(self, pipeline, content: AsyncIterator[bytes], **kwargs) -> None:
        super().__init__(content, **kwargs)
        self.pipeline = pipeline

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except Exception:
            logger.exception("Clip stream aborted after headers were sent")
            raise
        finally:
            self.pipeline.close()
            await self.pipeline.wait_closed()


async def _relay(first_chunk: bytes, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    yield first_chunk
    async for chunk in chunks:
        yield chunk


async def open_clip_response(download: ClipDownload) -> PipelineStreamingResponse:
    pipeline = download.pipeline
    chunks = pipeline.iter_chunks()
    try:
        first_chunk = await chunks.__anext__()
    except Exception as e:
        pipeline.close()
        await pipeline.wait_closed()
        if isinstance(e, StopAsyncIteration):
            raise TranscodeFailed() from e
        raise

    return PipelineStreamingResponse(
        pipeline,
        _relay(first_chunk, chunks),
        media_type=AUDIO_MEDIA_TYPE,
        headers={"Content-Disposition": content_disposition(download.filename)},
    )
