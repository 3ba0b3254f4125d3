"""
Input Resolution

Decides where a conversion reads from: the uploaded `file` part of a
multipart request, or the server-side default video when no upload is
present. Also derives the download name shown to the client.
"""

import asyncio
import stat
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os
import structlog
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import Request

from services.errors import ClientError, ErrorCode, ResourceError, UploadTooLargeError
from services.filenames import base_name, output_file_name
from services.temp_artifacts import ArtifactKind, ArtifactScope

logger = structlog.get_logger()

UPLOAD_FIELD = "file"
NAME_FIELD = "name"
SAVE_CHUNK_SIZE = 1024 * 1024


class SourceKind(str, Enum):
    UPLOAD = "upload"  # request-owned temp file
    DEFAULT = "default"  # shared, read-only, never deleted


@dataclass(frozen=True)
class SourceReference:
    kind: SourceKind
    path: Path

    @property
    def owned_by_request(self) -> bool:
        return self.kind is SourceKind.UPLOAD


@dataclass
class ConversionRequest:
    """Everything one call to the extract endpoint carries"""
    request_id: str
    timeout: float
    upload: Optional[UploadFile] = None
    name_hint: str = ""
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def upload_filename(self) -> str:
        return self.upload.filename if self.upload is not None else ""


def _limit_error(exc: BaseException) -> Optional[UploadTooLargeError]:
    """
    The upload-limit error behind a form parsing failure, if any.

    Starlette re-raises multipart errors as HTTPException(400) from inside
    its except block, so the original error is the __context__.
    """
    for candidate in (exc, exc.__context__):
        if isinstance(candidate, UploadTooLargeError):
            return candidate
    return None


def _form_text(value) -> str:
    if isinstance(value, str):
        return value.strip()
    return ""


async def parse_conversion_request(request: Request, request_id: str, timeout: float, log=None) -> ConversionRequest:
    """
    Read the upload and name hint from the request.

    A multipart body without a usable `file` part is not an error: the
    request falls back to the default video.

    Raises:
        ClientError: If the multipart body cannot be parsed
        UploadTooLargeError: If the body crosses the upload limit
    """
    log = log or logger
    conv = ConversionRequest(request_id=request_id, timeout=timeout)
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data"):
        try:
            form = await request.form()
        except (MultiPartException, StarletteHTTPException) as e:
            too_large = _limit_error(e)
            if too_large is not None:
                raise too_large
            message = getattr(e, "message", None) or getattr(e, "detail", None) or str(e)
            raise ClientError(ErrorCode.MALFORMED_UPLOAD, f"parse multipart failed: {message}")
        conv.name_hint = _form_text(form.get(NAME_FIELD))
        upload = form.get(UPLOAD_FIELD)
        # A part without a filename is a plain field, not a file
        if isinstance(upload, UploadFile) and upload.filename:
            conv.upload = upload
        else:
            log.info("upload_field_missing", field=UPLOAD_FIELD)
    elif content_type.startswith("application/x-www-form-urlencoded"):
        try:
            form = await request.form()
        except (MultiPartException, StarletteHTTPException, ValueError) as e:
            too_large = _limit_error(e)
            if too_large is not None:
                raise too_large
            # The name hint is optional; an unreadable form only loses it
            log.warning("form_parse_failed", error=str(e))
        else:
            conv.name_hint = _form_text(form.get(NAME_FIELD))

    query_name = request.query_params.get(NAME_FIELD, "").strip()
    if query_name:
        conv.name_hint = query_name

    return conv


async def save_upload(upload: UploadFile, dest: Path, chunk_size: int = SAVE_CHUNK_SIZE) -> int:
    """Copy an upload to dest in chunks; returns the number of bytes written."""
    written = 0
    await upload.seek(0)
    async with aiofiles.open(dest, "wb") as out:
        while True:
            chunk = await upload.read(chunk_size)
            if not chunk:
                break
            await out.write(chunk)
            written += len(chunk)
    return written


async def check_default_video(path: Path) -> None:
    """The default video must exist and must not be a directory."""
    try:
        st = await aiofiles.os.stat(path)
    except OSError:
        st = None
    if st is None or stat.S_ISDIR(st.st_mode):
        raise ClientError(
            ErrorCode.DEFAULT_MEDIA_MISSING,
            "default video not found on server",
            details={"default_video_path": str(path)}
        )


async def resolve_source(
    conv: ConversionRequest,
    artifacts: ArtifactScope,
    default_video_path: Path,
    log=None
) -> SourceReference:
    """
    Materialize the conversion input.

    Uploads are written to an upload_<id>_<name> temp file registered with
    the request's artifact scope before the first byte is written.

    Raises:
        ResourceError: If the upload cannot be saved
        ClientError: If there is no upload and no default video
    """
    log = log or logger

    if conv.upload is not None:
        in_path = artifacts.allocate(ArtifactKind.UPLOAD, conv.upload_filename)
        try:
            size = await save_upload(conv.upload, in_path)
        except OSError as e:
            log.error("save_upload_failed", path=str(in_path), error=str(e))
            raise ResourceError(ErrorCode.SAVE_UPLOAD_FAILED, "save upload failed", cause=e)
        log.info("upload_saved", path=str(in_path), filename=conv.upload_filename, size_bytes=size)
        return SourceReference(SourceKind.UPLOAD, in_path)

    await check_default_video(default_video_path)
    log.info("using_default_video", path=str(default_video_path))
    return SourceReference(SourceKind.DEFAULT, default_video_path)


def display_name(conv: ConversionRequest, source: SourceReference) -> str:
    """Name hint, else the uploaded filename, else the default video's name; always .mp3."""
    if conv.name_hint:
        return output_file_name(conv.name_hint, ".mp3")
    if source.kind is SourceKind.UPLOAD:
        return output_file_name(conv.upload_filename, ".mp3")
    return output_file_name(base_name(str(source.path)), ".mp3")
