"""
Configuration management for the audio extraction service
"""

import os
import tempfile
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from schemas import AudioEncodingProfile

# Load environment variables
load_dotenv()

DEFAULT_ADDR = ":3003"
DEFAULT_MAX_UPLOAD_MB = 2048  # 2GB
DEFAULT_TIMEOUT_SEC = 1800  # 30min


def getenv(key: str, default: str) -> str:
    """Read a string variable; blank values fall back to the default."""
    value = os.getenv(key, "").strip()
    if not value:
        return default
    return value


def getenv_int(key: str, default: int) -> int:
    """Read a positive integer; anything else silently falls back to the default."""
    value = os.getenv(key, "").strip()
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    if parsed <= 0:
        return default
    return parsed


class Settings(BaseModel):
    """Application settings, read once at startup and never mutated"""

    model_config = ConfigDict(frozen=True)

    # Server
    ADDR: str = DEFAULT_ADDR
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Uploads
    MAX_UPLOAD_MB: int = DEFAULT_MAX_UPLOAD_MB
    TMP_DIR: Path = Path(tempfile.gettempdir())

    # FFmpeg
    FFMPEG_PATH: str = "ffmpeg"
    FFMPEG_TIMEOUT_SEC: float = DEFAULT_TIMEOUT_SEC

    # MP3 output (lower bitrate/sample rate shrinks the download)
    MP3_BITRATE: str = "96k"  # e.g. 64k/96k/128k/192k
    MP3_CHANNELS: int = 2  # forced stereo
    MP3_SAMPLE_RATE: int = 44100  # e.g. 22050/32000/44100

    # Fallback input when the request carries no file
    DEFAULT_VIDEO_PATH: Path = Path("/opt/video-audio/default.mp4")

    # Request plumbing
    DISCONNECT_POLL_SEC: float = 0.5
    STREAM_CHUNK_SIZE: int = 64 * 1024

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (and .env, if present)."""
        return cls(
            ADDR=getenv("ADDR", DEFAULT_ADDR),
            DEBUG=getenv("DEBUG", "false").lower() == "true",
            LOG_LEVEL=getenv("LOG_LEVEL", "INFO").upper(),
            MAX_UPLOAD_MB=getenv_int("MAX_UPLOAD_MB", DEFAULT_MAX_UPLOAD_MB),
            TMP_DIR=Path(getenv("TMP_DIR", tempfile.gettempdir())),
            FFMPEG_PATH=getenv("FFMPEG_PATH", "ffmpeg"),
            FFMPEG_TIMEOUT_SEC=getenv_int("FFMPEG_TIMEOUT_SEC", DEFAULT_TIMEOUT_SEC),
            MP3_BITRATE=getenv("MP3_BITRATE", "96k"),
            MP3_CHANNELS=getenv_int("MP3_CHANNELS", 2),
            MP3_SAMPLE_RATE=getenv_int("MP3_SAMPLE_RATE", 44100),
            DEFAULT_VIDEO_PATH=Path(getenv("DEFAULT_VIDEO_PATH", "/opt/video-audio/default.mp4")),
        )

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_MB * 1024 * 1024

    @property
    def audio_profile(self) -> AudioEncodingProfile:
        """Encoding parameters shared by every conversion"""
        return AudioEncodingProfile(
            bitrate=self.MP3_BITRATE,
            sample_rate=self.MP3_SAMPLE_RATE,
            channels=self.MP3_CHANNELS,
        )

    @property
    def listen_address(self) -> Tuple[str, int]:
        """Split ADDR ("host:port" or ":port") into a (host, port) pair."""
        host, _, port = self.ADDR.rpartition(":")
        try:
            port_number = int(port)
        except ValueError:
            port_number = int(DEFAULT_ADDR.lstrip(":"))
        return host or "0.0.0.0", port_number


# Global settings instance
settings = Settings.from_env()
