"""ASGI Request & Socket Tracing Middleware.

Binds a request id and the caller's user id to every log line emitted
while serving an HTTP request or a WebSocket session, logs the lifecycle
of each, and echoes the request id back to the client.
"""

import logging
import time
from typing import Optional
from urllib.parse import parse_qs

from src.logging_config.config import DEFAULT_LOGGING_CONFIG, LoggingConfig
from src.logging_config.context import RequestContext, generate_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"
USER_ID_HEADER = "X-User-Id"
USER_ID_QUERY_PARAM = "user_id"


class RequestTracingMiddleware:
    """ASGI middleware that traces HTTP requests and WebSocket sessions.

    HTTP callers identify themselves with ``X-User-Id``; socket clients
    with ``?user_id=``. The request id is added to the HTTP response
    headers or to the WebSocket accept frame.

    Usage:
        app.add_middleware(RequestTracingMiddleware)
    """

    def __init__(self, app, config: Optional[LoggingConfig] = None):
        self.app = app
        self.config = config or DEFAULT_LOGGING_CONFIG

    async def __call__(self, scope, receive, send):
        scope_type = scope["type"]
        if scope_type not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = self._get_header(headers, REQUEST_ID_HEADER) or generate_request_id()
        correlation_id = self._get_header(headers, CORRELATION_ID_HEADER) or request_id
        user_id = self._get_header(headers, USER_ID_HEADER) or ""
        if scope_type == "websocket":
            user_id = self._get_query_param(scope, USER_ID_QUERY_PARAM) or user_id

        path = scope.get("path", "")
        should_log = path not in self.config.exclude_paths
        start_time = time.perf_counter()
        trace_headers = [
            (REQUEST_ID_HEADER.lower().encode(), request_id.encode()),
            (CORRELATION_ID_HEADER.lower().encode(), correlation_id.encode()),
        ]
        outcome = {"status_code": 500, "close_code": None}

        async def send_wrapper(message):
            message_type = message["type"]
            if message_type in ("http.response.start", "websocket.accept"):
                if message_type == "http.response.start":
                    outcome["status_code"] = message.get("status", 500)
                else:
                    outcome["status_code"] = 101
                message = {**message, "headers": list(message.get("headers") or []) + trace_headers}
            elif message_type == "websocket.close":
                outcome["close_code"] = message.get("code", 1000)
            await send(message)

        with RequestContext(
            request_id=request_id,
            correlation_id=correlation_id,
            user_id=user_id,
        ):
            if should_log:
                started = "Request started" if scope_type == "http" else "WebSocket session opening"
                logger.info(started, extra={"method": scope.get("method", "WS"), "path": path})

            try:
                await self.app(scope, receive, send_wrapper)
            except Exception:
                if scope_type == "http":
                    outcome["status_code"] = 500
                raise
            finally:
                if should_log:
                    self._log_completion(scope_type, scope.get("method", "WS"), path, outcome, start_time)

    @staticmethod
    def _log_completion(scope_type, method, path, outcome, start_time) -> None:
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        if scope_type == "http":
            status_code = outcome["status_code"]
            logger.log(
                logging.WARNING if status_code >= 400 else logging.INFO,
                "Request completed",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                },
            )
            return
        # a socket rejected before accept never reaches 101
        accepted = outcome["status_code"] == 101
        logger.log(
            logging.INFO if accepted else logging.WARNING,
            "WebSocket session closed" if accepted else "WebSocket session rejected",
            extra={
                "path": path,
                "close_code": outcome["close_code"],
                "duration_ms": duration_ms,
            },
        )

    @staticmethod
    def _get_header(headers: dict, name: str) -> Optional[str]:
        """Extract a header value from ASGI-style headers dict."""
        value = headers.get(name.lower().encode())
        if value:
            return value.decode("utf-8", errors="replace")
        return None

    @staticmethod
    def _get_query_param(scope, name: str) -> Optional[str]:
        query = scope.get("query_string", b"").decode("utf-8", errors="replace")
        values = parse_qs(query).get(name)
        return values[0] if values else None
