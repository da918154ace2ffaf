import logging
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from loopclip.app.api import routes_download
from loopclip.config import Settings, get_settings
from loopclip.domain.errors import ClipError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def check_external_tools(settings: Settings) -> dict:
    """Report whether the configured engine binaries resolve on this host."""
    return {
        "yt-dlp": shutil.which(settings.yt_dlp_path) is not None,
        "ffmpeg": shutil.which(settings.ffmpeg_path) is not None,
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    for tool, available in check_external_tools(get_settings()).items():
        if available:
            logger.info("%s available", tool)
        else:
            logger.warning("%s NOT FOUND - downloads will fail until it is installed", tool)
    yield


app = FastAPI(title="loopclip API", version="0.1.0", lifespan=lifespan)


class LogRequestsMiddleware(BaseHTTPMiddleware):
    """Log when a request is received, before the clip starts streaming."""

    async def dispatch(self, request, call_next):
        logger.info("Request started: %s %s", request.method, request.url.path)
        return await call_next(request)


@app.exception_handler(ClipError)
async def clip_error_handler(request: Request, exc: ClipError) -> JSONResponse:
    logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


app.add_middleware(LogRequestsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

app.include_router(routes_download.router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/tools")
async def health_tools():
    return check_external_tools(get_settings())
