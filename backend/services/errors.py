"""
Error taxonomy for the conversion endpoint.

Every failure the request flow can hit is raised as a ConversionError
subclass carrying:
- An error code for categorization and logs
- The HTTP status the client receives
- A plain-text message that is safe to expose
- Optional internal detail that is only logged
"""

from enum import Enum
from typing import Any, Dict, Optional

from starlette.formparsers import MultiPartException


class ErrorCode(Enum):
    """
    Enumeration of all error codes raised by the request flow.

    Organized by category:
    - Client Errors: bad method, malformed or oversized upload, missing default media
    - Resource Errors: temp file create/open/stat failures
    - External Process Errors: ffmpeg exit, timeout or forced termination
    """

    # Client Errors (4xx)
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    MALFORMED_UPLOAD = "MALFORMED_UPLOAD"
    UPLOAD_TOO_LARGE = "UPLOAD_TOO_LARGE"
    DEFAULT_MEDIA_MISSING = "DEFAULT_MEDIA_MISSING"

    # Resource Errors (500)
    SAVE_UPLOAD_FAILED = "SAVE_UPLOAD_FAILED"
    OPEN_OUTPUT_FAILED = "OPEN_OUTPUT_FAILED"
    STAT_OUTPUT_FAILED = "STAT_OUTPUT_FAILED"

    # External Process Errors (500)
    FFMPEG_ERROR = "FFMPEG_ERROR"


class ConversionError(Exception):
    """
    Base exception for the conversion flow.

    Example:
        >>> raise ConversionError(
        ...     ErrorCode.MALFORMED_UPLOAD,
        ...     "parse multipart failed: boundary missing",
        ...     status_code=400
        ... )
    """

    status_code: int = 500

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    @property
    def user_message(self) -> str:
        """Text written to the plain-text response body."""
        return self.message

    def log_context(self) -> Dict[str, Any]:
        return {
            "error_code": self.code.value,
            "status_code": self.status_code,
            "error": self.message,
            **self.details
        }


class ClientError(ConversionError):
    """Caller mistake or unavailable resource; message is exposed verbatim."""

    status_code = 400


class MethodNotAllowedError(ClientError):
    status_code = 405

    def __init__(self, method: str):
        super().__init__(
            ErrorCode.METHOD_NOT_ALLOWED,
            "method not allowed",
            details={"method": method}
        )


class UploadTooLargeError(ClientError, MultiPartException):
    """
    Raised once a request body crosses the configured upload limit.

    Also a MultiPartException, so Starlette's multipart parser closes the
    parts it already spooled before the error leaves request.form().
    """

    status_code = 413

    def __init__(self, limit_bytes: int):
        super().__init__(
            ErrorCode.UPLOAD_TOO_LARGE,
            f"request body too large (limit {limit_bytes // (1024 * 1024)}MB)",
            details={"limit_bytes": limit_bytes}
        )


class ResourceError(ConversionError):
    """Local I/O failure; the client only sees the generic message."""

    status_code = 500

    def __init__(self, code: ErrorCode, message: str, cause: Optional[BaseException] = None):
        details = {"cause": str(cause)} if cause is not None else {}
        super().__init__(code, message, details=details)


class ExternalProcessError(ConversionError):
    """ffmpeg failed, timed out or was terminated; diagnostic text is included."""

    status_code = 500

    def __init__(self, diagnostic: str, status: str):
        super().__init__(
            ErrorCode.FFMPEG_ERROR,
            f"ffmpeg extract failed: {diagnostic}",
            details={"transcode_status": status}
        )
