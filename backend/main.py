"""
FastAPI Backend for the audio extraction service
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, settings
from middleware import BodySizeLimitMiddleware, RequestLoggingMiddleware
from routers import extract_audio
from services.errors import ConversionError
from services.temp_artifacts import TempArtifactManager


def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging"""
    level_value = logging.getLevelName(level.upper())
    if not isinstance(level_value, int):
        level_value = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


configure_logging(settings.LOG_LEVEL)
logger = structlog.get_logger()


async def conversion_error_handler(request: Request, exc: ConversionError):
    """Map conversion failures to plain-text HTTP errors"""
    log_method = logger.warning if exc.status_code < 500 else logger.error
    context = {
        "request_id": getattr(request.state, "request_id", None),
        "path": request.url.path,
        "method": request.method,
    }
    # Error details may repeat request fields (e.g. "method")
    context.update(exc.log_context())
    log_method("conversion_error", **context)
    return PlainTextResponse(exc.user_message, status_code=exc.status_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)


async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions"""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_type=type(exc).__name__
    )
    return PlainTextResponse("internal server error", status_code=500)


async def health_check():
    """
    Health check endpoint

    Returns:
        str: "ok"
    """
    return "ok"


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        app_settings: Settings to serve with; defaults to the environment-based
            global settings. Stored read-only on app.state.settings.
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        TempArtifactManager(app_settings.TMP_DIR).ensure_scratch_dir()
        logger.info(
            "application_startup",
            addr=app_settings.ADDR,
            tmp_dir=str(app_settings.TMP_DIR),
            ffmpeg_path=app_settings.FFMPEG_PATH,
            ffmpeg_timeout_sec=app_settings.FFMPEG_TIMEOUT_SEC,
            max_upload_mb=app_settings.MAX_UPLOAD_MB,
            default_video_path=str(app_settings.DEFAULT_VIDEO_PATH),
            **app_settings.audio_profile.model_dump()
        )
        yield
        logger.info("application_shutdown", message="FastAPI application shutting down")

    app = FastAPI(
        title="Audio Extraction API",
        description="Extracts the audio track of a video as an MP3 download",
        version="1.0.0",
        debug=app_settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.settings = app_settings

    # Added first so it sits inside the request logger
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=app_settings.max_upload_bytes)
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(ConversionError, conversion_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.add_api_route("/health", health_check, methods=["GET"], response_class=PlainTextResponse, tags=["Health"])
    app.include_router(extract_audio.router)

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve on ADDR"""
    host, port = settings.listen_address
    logger.info("listening", host=host, port=port)
    uvicorn.run(app, host=host, port=port, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
