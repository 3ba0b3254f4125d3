"""
Pydantic schemas shared across the service
"""

from pydantic import BaseModel, ConfigDict, Field


class AudioEncodingProfile(BaseModel):
    """Bitrate / sample rate / channel count applied to every conversion"""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "bitrate": "96k",
                "sample_rate": 44100,
                "channels": 2
            }
        },
    )

    bitrate: str = Field("96k", min_length=1, description="Target MP3 bitrate passed to ffmpeg (-b:a)")
    sample_rate: int = Field(44100, gt=0, description="Output sample rate in Hz (-ar)")
    channels: int = Field(2, gt=0, description="Forced output channel count (-ac)")
