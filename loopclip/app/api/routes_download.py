import logging

from fastapi import APIRouter, Depends, Request

from loopclip.app.api.streaming import AUDIO_MEDIA_TYPE, open_clip_response
from loopclip.app.schemas.download import DownloadRequest, ErrorResponse
from loopclip.config import get_settings
from loopclip.domain.errors import ClipError, InternalError, MalformedRequestBody
from loopclip.domain.services.download_service import DownloadService
from loopclip.domain.services.validation import parse_clip_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["download"])


def get_download_service() -> DownloadService:
    return DownloadService(get_settings())


@router.post(
    "/download",
    responses={
        200: {"content": {AUDIO_MEDIA_TYPE: {}}, "description": "MP3 clip stream"},
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": DownloadRequest.model_json_schema()}},
        }
    },
)
async def download_clip(
    request: Request,
    service: DownloadService = Depends(get_download_service),
):
    """
    Extract ``[startTime, endTime)`` from a YouTube video as a 320 kbps MP3,
    optionally with 50ms fades for seamless looping. The body is streamed
    while ffmpeg produces it.
    """
    try:
        try:
            body = await request.json()
        except ValueError as e:
            raise MalformedRequestBody() from e

        clip = parse_clip_request(body)
        download = await service.start(clip)
        return await open_clip_response(download)
    except ClipError:
        raise
    except Exception as e:
        logger.exception("Download error")
        raise InternalError() from e
