"""Error Handling Middleware.

ASGI middleware that catches exceptions escaping the route layer and
returns structured error responses.
"""

import json
import logging
import time
from typing import Any, Dict, Optional

from src.errors.config import DEFAULT_ERROR_CONFIG, ErrorConfig
from src.errors.exceptions import ChatServiceError
from src.errors.handlers import handle_chat_error, handle_unhandled_error

logger = logging.getLogger(__name__)


class ErrorHandlingMiddleware:
    """ASGI middleware that catches unhandled exceptions.

    Wraps the application to ensure all errors produce structured
    JSON responses rather than raw stack traces. WebSocket scopes are
    passed through untouched; the socket handler reports its own errors
    as ``error`` events.
    """

    def __init__(self, app: Any, config: Optional[ErrorConfig] = None):
        self.app = app
        self.config = config or DEFAULT_ERROR_CONFIG

    async def __call__(self, scope: Dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        response_started = False

        async def send_wrapper(message: Dict[str, Any]) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except ChatServiceError as exc:
            if response_started:
                raise
            error_response = handle_chat_error(exc, self.config)
            await self._send_error(send, error_response, exc.headers)
        except Exception as exc:
            if response_started:
                raise
            error_response = handle_unhandled_error(exc, self.config)
            await self._send_error(send, error_response)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            if duration_ms > 5000:
                path = scope.get("path", "unknown")
                logger.warning(
                    f"Slow request: {path} took {duration_ms:.1f}ms",
                    extra={"duration_ms": round(duration_ms, 2)},
                )

    async def _send_error(
        self,
        send: Any,
        error_response: Any,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """Send a structured error response over ASGI."""
        body = json.dumps(error_response.to_dict()).encode("utf-8")
        response_headers = [
            [b"content-type", b"application/json"],
            [b"content-length", str(len(body)).encode()],
        ]
        if headers:
            for key, value in headers.items():
                response_headers.append([key.encode(), value.encode()])

        await send({
            "type": "http.response.start",
            "status": error_response.status_code,
            "headers": response_headers,
        })
        await send({
            "type": "http.response.body",
            "body": body,
        })
