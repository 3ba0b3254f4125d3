"""
Audio extraction endpoint router

Converts the audio track of an uploaded (or the server's default) video
into an MP3 download.
"""

import asyncio

import structlog
from fastapi import APIRouter, Request

from config import Settings
from services.audio_streamer import open_audio_response
from services.errors import ExternalProcessError, MethodNotAllowedError
from services.input_resolver import display_name, parse_conversion_request, resolve_source
from services.temp_artifacts import ArtifactKind, ArtifactScope, TempArtifactManager, new_request_id
from services.transcoder import transcode

logger = structlog.get_logger()

router = APIRouter(tags=["Audio Extraction"])

EXTRACT_PATH = "/extract-audio"


async def watch_disconnect(request: Request, cancelled: asyncio.Event, interval: float) -> None:
    """Set `cancelled` once the client has gone away."""
    while not await request.is_disconnected():
        await asyncio.sleep(interval)
    cancelled.set()


async def stop_watcher(watcher: asyncio.Task, log) -> None:
    """Cancel the disconnect watcher and collect its result."""
    watcher.cancel()
    try:
        await watcher
    except asyncio.CancelledError:
        pass
    except Exception as e:
        log.warning("disconnect_watcher_failed", error=str(e))


@router.post(
    EXTRACT_PATH,
    responses={
        200: {"description": "MP3 audio file", "content": {"audio/mpeg": {}}},
        400: {"description": "Malformed multipart body or default video missing", "content": {"text/plain": {}}},
        413: {"description": "Request body over MAX_UPLOAD_MB", "content": {"text/plain": {}}},
        500: {"description": "Upload save, ffmpeg or output I/O failure", "content": {"text/plain": {}}}
    },
    summary="Extract Audio as MP3",
    description="""
Extract the audio track of a video and return it as an MP3 download.

This endpoint:
1. Saves the multipart `file` upload to a temp file (or uses the server's default video)
2. Runs ffmpeg with the configured bitrate / sample rate / channel count
3. Streams the MP3 back as an attachment
4. Deletes every temp file once the response is done

**Optional Fields:**
- file: media file (multipart/form-data)
- name: download name hint (form field or query parameter; the query wins)
"""
)
async def extract_audio(request: Request):
    """
    Run one conversion: resolve source -> allocate output -> transcode -> stream.

    Temp artifacts belong to the request's ArtifactScope. Once the response is
    built it takes over the release; any earlier exit releases here.
    """
    app_settings: Settings = request.app.state.settings
    profile = app_settings.audio_profile

    request_id = new_request_id()
    request.state.request_id = request_id
    log = logger.bind(request_id=request_id)

    artifacts = ArtifactScope(TempArtifactManager(app_settings.TMP_DIR), request_id)
    watcher = None
    handed_off = False

    try:
        conv = await parse_conversion_request(request, request_id, app_settings.FFMPEG_TIMEOUT_SEC, log)
        log.info(
            "extract_audio_request_received",
            has_upload=conv.upload is not None,
            filename=conv.upload_filename,
            name_hint=conv.name_hint
        )

        source = await resolve_source(conv, artifacts, app_settings.DEFAULT_VIDEO_PATH, log)
        download_name = display_name(conv, source)
        out_path = artifacts.allocate(ArtifactKind.AUDIO)

        watcher = asyncio.create_task(
            watch_disconnect(request, conv.cancelled, app_settings.DISCONNECT_POLL_SEC)
        )
        outcome = await transcode(
            source.path,
            out_path,
            profile,
            ffmpeg_path=app_settings.FFMPEG_PATH,
            timeout=conv.timeout,
            cancelled=conv.cancelled,
            log=log
        )
        if not outcome.ok:
            raise ExternalProcessError(outcome.detail, outcome.status.value)

        response = await open_audio_response(
            out_path,
            download_name,
            profile,
            on_close=artifacts.release_all,
            chunk_size=app_settings.STREAM_CHUNK_SIZE,
            log=log
        )
        handed_off = True
        return response
    finally:
        # Synchronous, so it runs even if the awaits below are cancelled
        if not handed_off:
            artifacts.release_all()
        if watcher is not None:
            await stop_watcher(watcher, log)
        # Closes spooled multipart parts
        await request.close()


@router.api_route(
    EXTRACT_PATH,
    methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"],
    include_in_schema=False
)
async def extract_audio_wrong_method(request: Request):
    raise MethodNotAllowedError(request.method)
