"""Chat presence API.

HTTP and WebSocket transport for the realtime core:
- REST endpoints for HTTP-originated messages and chat change notifications
- WebSocket endpoint for presence, typing, messages and call signalling

Example:
    from src.api import create_app
    app = create_app()
"""

from src.api.config import (
    APIConfig,
    WebSocketConfig,
    DEFAULT_API_CONFIG,
    DEFAULT_WS_CONFIG,
)
from src.api.app import create_app
from src.api.routes.ws import WebSocketConnection

__all__ = [
    "APIConfig",
    "WebSocketConfig",
    "DEFAULT_API_CONFIG",
    "DEFAULT_WS_CONFIG",
    "create_app",
    "WebSocketConnection",
]
