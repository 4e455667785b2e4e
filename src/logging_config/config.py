"""Logging Configuration.

Settings for structured logging, log levels, and output formats.
"""

from dataclasses import dataclass, field
from enum import Enum


class LogLevel(str, Enum):
    """Log level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output format."""
    JSON = "json"
    CONSOLE = "console"


@dataclass
class LoggingConfig:
    """Structured logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    include_caller: bool = True
    slow_threshold_ms: float = 500.0
    exclude_paths: list[str] = field(
        default_factory=lambda: ["/health", "/api/v1/presence/online"]
    )
    service_name: str = "chat-presence"


def config_from_settings(settings) -> LoggingConfig:
    """Build a LoggingConfig from the service Settings (log_level, log_format)."""
    level = str(settings.log_level).upper()
    fmt = str(settings.log_format).lower()
    return LoggingConfig(
        level=LogLevel(level) if level in LogLevel.__members__ else LogLevel.INFO,
        format=LogFormat(fmt) if fmt in [f.value for f in LogFormat] else LogFormat.JSON,
    )


DEFAULT_LOGGING_CONFIG = LoggingConfig()
