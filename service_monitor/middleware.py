"""Request correlation middleware.

Binds a correlation ID to every HTTP request (taken from the
X-Correlation-ID header or freshly generated) and echoes it back in the
response, so API log lines can be grouped per request.
"""

import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from service_monitor.logging_config import bind_correlation_id, get_logger

logger = get_logger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware:
    """Pure ASGI middleware; BaseHTTPMiddleware does not mix well with asyncpg."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        correlation_id = headers.get(b"x-correlation-id", b"").decode() or str(
            uuid.uuid4()
        )
        method = scope.get("method", "")
        path = scope.get("path", "")
        start_time = time.perf_counter()
        status_code: int | None = None

        async def send_with_header(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status")
                response_headers = list(message.get("headers", []))
                response_headers.append(
                    (CORRELATION_ID_HEADER.lower().encode(), correlation_id.encode())
                )
                message = {**message, "headers": response_headers}
            await send(message)

        with bind_correlation_id(correlation_id):
            try:
                await self.app(scope, receive, send_with_header)
            except Exception:
                logger.exception("Request failed", method=method, path=path)
                raise
            logger.info(
                "Request completed",
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
