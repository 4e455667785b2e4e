"""Structured Logging & Request Tracing.

Provides structured JSON logging, request and connection id
propagation, and performance timing for the chat service.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel, config_from_settings
from src.logging_config.context import RequestContext, generate_request_id
from src.logging_config.performance import log_performance
from src.logging_config.setup import configure_logging, get_logger

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "RequestContext",
    "config_from_settings",
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "log_performance",
]
