"""
Services module for the audio extraction request flow
"""

from .errors import ClientError, ConversionError, ExternalProcessError, ResourceError
from .temp_artifacts import ArtifactKind, ArtifactScope, TempArtifactManager, new_request_id
from .transcoder import TranscodeOutcome, TranscodeStatus, transcode

__all__ = [
    "ArtifactKind",
    "ArtifactScope",
    "ClientError",
    "ConversionError",
    "ExternalProcessError",
    "ResourceError",
    "TempArtifactManager",
    "TranscodeOutcome",
    "TranscodeStatus",
    "new_request_id",
    "transcode",
]
