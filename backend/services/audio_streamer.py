"""
MP3 Response Streaming

Serves a finished conversion to the client: opens the artifact, sets the
download and diagnostic headers, and streams the bytes. The response owns
the request's temp artifacts from the moment it is built and releases them
once streaming ends, however it ends.
"""

from pathlib import Path
from typing import AsyncIterator, Callable, Optional

import aiofiles
import aiofiles.os
import anyio
import structlog
from fastapi.responses import StreamingResponse
from starlette.requests import ClientDisconnect
from starlette.types import Receive, Scope, Send

from schemas import AudioEncodingProfile
from services.errors import ErrorCode, ResourceError
from services.filenames import content_disposition_attachment

logger = structlog.get_logger()

AUDIO_MEDIA_TYPE = "audio/mpeg"
DEFAULT_CHUNK_SIZE = 64 * 1024


def audio_headers(display_name: str, profile: AudioEncodingProfile, size: int) -> dict:
    # X-Audio-* headers make the active profile visible with curl -v
    return {
        "X-Audio-Bitrate": profile.bitrate,
        "X-Audio-Sample-Rate": str(profile.sample_rate),
        "X-Audio-Channels": str(profile.channels),
        "Content-Disposition": content_disposition_attachment(display_name),
        "Content-Length": str(size),
    }


class AudioStreamResponse(StreamingResponse):
    """
    Streams an open MP3 handle, then closes it and runs on_close.

    A client that disconnects mid-stream is logged, not raised: the status
    line is already on the wire, so there is nobody left to report to.
    """

    def __init__(
        self,
        handle,
        size: int,
        display_name: str,
        profile: AudioEncodingProfile,
        on_close: Optional[Callable[[], None]] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        log=None
    ):
        self._handle = handle
        self._on_close = on_close
        self.chunk_size = chunk_size
        self.size = size
        self.bytes_sent = 0
        self.completed = False
        self.log = log or logger
        super().__init__(
            self._iter_file(),
            status_code=200,
            media_type=AUDIO_MEDIA_TYPE,
            headers=audio_headers(display_name, profile, size),
        )

    async def _iter_file(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._handle.read(self.chunk_size)
            if not chunk:
                break
            yield chunk
            self.bytes_sent += len(chunk)
        self.completed = True

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except (ClientDisconnect, OSError) as e:
            self.log.warning("response_stream_interrupted", bytes_sent=self.bytes_sent, size=self.size, error=str(e))
        else:
            if not self.completed:
                self.log.warning("response_stream_interrupted", bytes_sent=self.bytes_sent, size=self.size)
            else:
                self.log.info("response_stream_completed", bytes_sent=self.bytes_sent)
        finally:
            # Shielded: a cancelled stream must still close and clean up
            with anyio.CancelScope(shield=True):
                await self.close()

    async def close(self) -> None:
        """Close the file handle and release artifacts; safe to call twice."""
        handle, self._handle = self._handle, None
        on_close, self._on_close = self._on_close, None
        try:
            if handle is not None:
                await handle.close()
        finally:
            if on_close is not None:
                on_close()


async def open_audio_response(
    path: Path,
    display_name: str,
    profile: AudioEncodingProfile,
    *,
    on_close: Optional[Callable[[], None]] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    log=None
) -> AudioStreamResponse:
    """
    Open a finished MP3 and wrap it in a streaming response.

    Raises:
        ResourceError: If the artifact cannot be opened or stat'ed. on_close
            is not called in that case; the caller still owns cleanup.
    """
    log = log or logger
    try:
        handle = await aiofiles.open(path, "rb")
    except OSError as e:
        log.error("open_output_failed", path=str(path), error=str(e))
        raise ResourceError(ErrorCode.OPEN_OUTPUT_FAILED, "open output failed", cause=e)

    try:
        stat = await aiofiles.os.stat(path)
    except OSError as e:
        await handle.close()
        log.error("stat_output_failed", path=str(path), error=str(e))
        raise ResourceError(ErrorCode.STAT_OUTPUT_FAILED, "stat output failed", cause=e)

    log.info("audio_file_serving", path=str(path), filename=display_name, size_bytes=stat.st_size)
    return AudioStreamResponse(
        handle,
        stat.st_size,
        display_name,
        profile,
        on_close=on_close,
        chunk_size=chunk_size,
        log=log,
    )
