"""API Configuration.

Settings for the REST routes and the WebSocket endpoint.
"""

from dataclasses import dataclass, field


@dataclass
class APIConfig:
    """Core API settings."""

    title: str = "Chat Presence API"
    version: str = "1.0.0"
    description: str = "Presence, messaging and call-signalling fan-out for the chat app"
    prefix: str = "/api/v1"
    docs_url: str = "/docs"
    user_header: str = "X-User-Id"
    cors_methods: list[str] = field(default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "OPTIONS"])
    cors_headers: list[str] = field(default_factory=lambda: ["*"])


@dataclass
class WebSocketConfig:
    """WebSocket settings."""

    path: str = "/ws"
    user_query_param: str = "user_id"
    invalid_user_close_code: int = 4001
    send_queue_size: int = 1000


DEFAULT_API_CONFIG = APIConfig()
DEFAULT_WS_CONFIG = WebSocketConfig()
