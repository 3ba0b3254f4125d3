"""
ASGI middleware for the audio extraction service
"""

import time

import structlog
from fastapi.responses import PlainTextResponse
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from services.errors import UploadTooLargeError

logger = structlog.get_logger()


class BodySizeLimitMiddleware:
    """
    Caps request bodies at max_bytes.

    A declared Content-Length over the limit is rejected with 413 before the
    app runs. Bodies without (or lying about) Content-Length are counted as
    they stream in; crossing the limit raises UploadTooLargeError out of
    receive(), which aborts form parsing before any temp file exists.
    """

    def __init__(self, app: ASGIApp, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared = Headers(scope=scope).get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            error = UploadTooLargeError(self.max_bytes)
            logger.warning(
                "request_body_rejected",
                path=scope.get("path"),
                content_length=int(declared),
                limit_bytes=self.max_bytes
            )
            response = PlainTextResponse(error.user_message, status_code=error.status_code)
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise UploadTooLargeError(self.max_bytes)
            return message

        await self.app(scope, limited_receive, send)


class RequestLoggingMiddleware:
    """
    Logs every request with its status and duration.

    Pure ASGI so that receive() reaches the app untouched and
    request.is_disconnected() still sees http.disconnect.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        headers = Headers(scope=scope)
        client = scope.get("client")
        client_host = client[0] if client else None
        status_code = None

        async def send_with_status(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_with_status)
        except Exception as e:
            logger.error(
                "request_failed",
                method=scope.get("method"),
                path=scope.get("path"),
                client_host=client_host,
                error=str(e),
                process_time=f"{time.time() - start_time:.3f}s"
            )
            raise

        logger.info(
            "request_completed",
            method=scope.get("method"),
            path=scope.get("path"),
            client_host=client_host,
            user_agent=headers.get("user-agent"),
            status_code=status_code,
            process_time=f"{time.time() - start_time:.3f}s"
        )
