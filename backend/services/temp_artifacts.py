"""
Temporary Artifact Management

Allocates per-request paths in the scratch directory and guarantees they are
removed. Paths embed a random request identifier, so concurrent requests
never collide and need no coordination.
"""

import secrets
from enum import Enum
from pathlib import Path
from typing import List, Optional

import structlog

from services.filenames import safe_base_name

logger = structlog.get_logger()

REQUEST_ID_BYTES = 12


class ArtifactKind(str, Enum):
    """Purpose tag used as the temp file name prefix"""
    UPLOAD = "upload_"
    AUDIO = "audio_"


def new_request_id(nbytes: int = REQUEST_ID_BYTES) -> str:
    """Hex identifier from a cryptographically random byte sequence."""
    if nbytes < REQUEST_ID_BYTES:
        raise ValueError(f"request ids need at least {REQUEST_ID_BYTES} random bytes, got {nbytes}")
    return secrets.token_hex(nbytes)


class TempArtifactManager:
    """
    Computes and deletes temp paths under a scratch directory.

    Example:
        >>> manager = TempArtifactManager(Path("/tmp"))
        >>> manager.allocate(ArtifactKind.AUDIO, "ab12")
        PosixPath('/tmp/audio_ab12.mp3')
    """

    def __init__(self, scratch_dir: Path):
        self.scratch_dir = Path(scratch_dir)

    def ensure_scratch_dir(self) -> None:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)

    def allocate(self, kind: ArtifactKind, request_id: str, filename: Optional[str] = None) -> Path:
        """
        Path for a new artifact.

        Uploads keep a sanitized copy of the client filename
        (upload_<id>_<name>); audio outputs are always audio_<id>.mp3.
        """
        if kind is ArtifactKind.UPLOAD:
            name = f"{kind.value}{request_id}_{safe_base_name(filename or '')}"
        else:
            name = f"{kind.value}{request_id}.mp3"
        return self.scratch_dir / name

    def release(self, path: Path) -> None:
        """Best-effort delete; a missing file is fine, other failures are only logged."""
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning("temp_artifact_release_failed", path=str(path), error=str(e))
            return
        logger.debug("temp_artifact_released", path=str(path))


class ArtifactScope:
    """
    Per-request registry of allocated paths.

    Allocation and registration happen in one call, so a path can never exist
    without a pending release. release_all() runs each release exactly once.
    """

    def __init__(self, manager: TempArtifactManager, request_id: str):
        self.manager = manager
        self.request_id = request_id
        self._paths: List[Path] = []
        self._released = False

    @property
    def paths(self) -> List[Path]:
        return list(self._paths)

    def allocate(self, kind: ArtifactKind, filename: Optional[str] = None) -> Path:
        if self._released:
            raise RuntimeError(f"artifact scope for request {self.request_id} already released")
        path = self.manager.allocate(kind, self.request_id, filename)
        self._paths.append(path)
        return path

    def release_all(self) -> None:
        if self._released:
            return
        self._released = True
        for path in self._paths:
            self.manager.release(path)
        logger.debug("temp_artifacts_cleaned", request_id=self.request_id, count=len(self._paths))

    def __enter__(self) -> "ArtifactScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release_all()
