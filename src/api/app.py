"""FastAPI Application Factory.

Creates the chat presence API with its middleware stack (request
tracing, error handling, CORS), the REST notification routes and the
WebSocket endpoint, all sharing one realtime gateway.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.models import HealthResponse
from src.api.routes import chats, messages, presence, ws
from src.errors.handlers import register_exception_handlers
from src.errors.middleware import ErrorHandlingMiddleware
from src.logging_config import config_from_settings, configure_logging
from src.logging_config.middleware import RequestTracingMiddleware
from src.realtime.config import RealtimeConfig
from src.realtime.gateway import RealtimeGateway, build_gateway
from src.settings import Settings, get_settings

logger = logging.getLogger(__name__)


# ── Lifespan (startup / shutdown) ────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize logging at startup."""
    # ── Startup ──
    configure_logging(config_from_settings(app.state.settings))
    logger.info("Chat presence API starting up")
    yield
    # ── Shutdown ──
    stats = app.state.gateway.get_stats()
    logger.info("Chat presence API shutting down", extra={"extra_data": stats})


def _default_gateway(settings: Settings) -> RealtimeGateway:
    config = RealtimeConfig.from_settings(settings)
    if settings.use_database:
        from src.db.engine import create_sync_engine
        from src.db.store import SqlChatStore
        return build_gateway(SqlChatStore(create_sync_engine(settings.database_url)), config)
    return build_gateway(config=config)


# ── App Factory ──────────────────────────────────────────────────────


def create_app(
    config: Optional[APIConfig] = None,
    gateway: Optional[RealtimeGateway] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Middleware stack (outermost → innermost):
        RequestTracing → ErrorHandling → CORS → App

    Args:
        config: API configuration. Uses defaults if not provided.
        gateway: Realtime gateway to serve. Built from settings if omitted.
        settings: Process settings. Uses the cached settings if omitted.

    Returns:
        Configured FastAPI application.
    """
    config = config or DEFAULT_API_CONFIG
    settings = settings or get_settings()

    app = FastAPI(
        title=config.title,
        version=config.version,
        description=config.description,
        docs_url=config.docs_url,
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.gateway = gateway or _default_gateway(settings)

    # ── Middleware stack ──────────────────────────────────────────
    # add_middleware prepends, so order here is innermost-first.

    # 1. CORS (innermost, answers preflight before routing)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=config.cors_methods,
        allow_headers=config.cors_headers,
    )

    # 2. Error handling (catches exceptions → structured JSON responses)
    app.add_middleware(ErrorHandlingMiddleware)

    # 3. Request tracing (assigns X-Request-ID, logs lifecycle)
    app.add_middleware(RequestTracingMiddleware)

    register_exception_handlers(app)

    # ── Health check ─────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            version=config.version,
            online_users=app.state.gateway.registry.get_connection_count(),
        )

    # ── Route modules ────────────────────────────────────────────

    app.include_router(messages.router, prefix=config.prefix)
    app.include_router(chats.router, prefix=config.prefix)
    app.include_router(presence.router, prefix=config.prefix)

    # WebSocket endpoint at the absolute path /ws
    app.include_router(ws.router)

    logger.info(f"Chat presence API v{config.version} initialized")
    return app
