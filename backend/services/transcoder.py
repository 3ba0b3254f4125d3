"""
FFmpeg Transcode Invoker

Runs one ffmpeg conversion (media -> MP3) as a child process under a
wall-clock deadline that is also tied to the caller's cancellation. The child
is always killed and reaped before this module returns control, so no
ffmpeg process outlives the request that started it.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

import anyio
import structlog

from schemas import AudioEncodingProfile

logger = structlog.get_logger()


class TranscodeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"  # ffmpeg exited non-zero
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"  # client went away
    LAUNCH_FAILED = "launch_failed"


@dataclass(frozen=True)
class TranscodeOutcome:
    """Result of one ffmpeg invocation"""
    status: TranscodeStatus
    detail: str = ""
    return_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status is TranscodeStatus.SUCCEEDED


def build_command(
    ffmpeg_path: str,
    source_path: Path,
    output_path: Path,
    profile: AudioEncodingProfile
) -> List[str]:
    """
    FFmpeg argument list for MP3 extraction.

    -y: overwrite output
    -vn: drop video
    -acodec libmp3lame: MP3 encoder
    -b:a / -ar / -ac: profile values, applied as configured (channels are
    forced, not detected from the source)
    """
    return [
        ffmpeg_path,
        "-y",
        "-i", str(source_path),
        "-vn",
        "-acodec", "libmp3lame",
        "-b:a", profile.bitrate.strip(),
        "-ar", str(profile.sample_rate),
        "-ac", str(profile.channels),
        str(output_path),
    ]


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


async def transcode(
    source_path: Path,
    output_path: Path,
    profile: AudioEncodingProfile,
    *,
    ffmpeg_path: str = "ffmpeg",
    timeout: float,
    cancelled: Optional[asyncio.Event] = None,
    log=None
) -> TranscodeOutcome:
    """
    Convert source_path to an MP3 at output_path.

    Args:
        source_path: Input media file
        output_path: Destination MP3 (overwritten)
        profile: Encoding parameters
        ffmpeg_path: ffmpeg executable
        timeout: Maximum run time in seconds
        cancelled: Event set when the HTTP request is gone; ends the run early
        log: Optional bound structlog logger (request correlation)

    Returns:
        TranscodeOutcome. Non-zero exits carry ffmpeg's merged stdout/stderr.

    Cancelling the calling task kills the child and re-raises CancelledError.
    """
    log = log or logger
    cmd = build_command(ffmpeg_path, source_path, output_path, profile)
    log.info("ffmpeg_starting", command=" ".join(cmd), timeout_sec=timeout)

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        log.error("ffmpeg_launch_failed", ffmpeg_path=ffmpeg_path, error=str(e))
        return TranscodeOutcome(TranscodeStatus.LAUNCH_FAILED, detail=str(e))

    communicate = asyncio.ensure_future(process.communicate())
    waiters = {communicate}
    cancel_wait = None
    if cancelled is not None:
        cancel_wait = asyncio.ensure_future(cancelled.wait())
        waiters.add(cancel_wait)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        if communicate not in done:
            await _kill(process)
            if cancel_wait is not None and cancel_wait in done:
                log.warning("ffmpeg_cancelled", pid=process.pid)
                return TranscodeOutcome(
                    TranscodeStatus.CANCELLED,
                    detail="request cancelled, ffmpeg terminated",
                    return_code=process.returncode,
                )
            log.error("ffmpeg_timeout", pid=process.pid, timeout_sec=timeout)
            return TranscodeOutcome(
                TranscodeStatus.TIMED_OUT,
                detail=f"ffmpeg timed out after {timeout:g}s and was terminated",
                return_code=process.returncode,
            )
    finally:
        # Covers task cancellation (server shutdown) as well as the early returns
        if cancel_wait is not None:
            cancel_wait.cancel()
        if not communicate.done():
            communicate.cancel()
        if process.returncode is None:
            with anyio.CancelScope(shield=True):
                await _kill(process)

    output, _ = communicate.result()
    if process.returncode != 0:
        message = (output or b"").decode("utf-8", errors="replace").strip()
        if not message:
            message = f"exit status {process.returncode}"
        log.error("ffmpeg_failed", return_code=process.returncode, error=message)
        return TranscodeOutcome(TranscodeStatus.FAILED, detail=message, return_code=process.returncode)

    log.info("ffmpeg_completed", output_path=str(output_path))
    return TranscodeOutcome(TranscodeStatus.SUCCEEDED, return_code=0)
