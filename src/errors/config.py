"""Error Configuration.

Defines error codes, severity levels, and configuration for
structured error handling across the chat service.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict


class ErrorCode(Enum):
    """Standardized error codes for API responses and socket error events."""

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_USER_ID = "INVALID_USER_ID"
    INVALID_EVENT = "INVALID_EVENT"
    EMPTY_MESSAGE = "EMPTY_MESSAGE"

    # Authentication errors (401)
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"

    # Policy errors (403)
    BLOCKED = "BLOCKED"
    NOT_A_MEMBER = "NOT_A_MEMBER"

    # Not found errors (404)
    CHAT_NOT_FOUND = "CHAT_NOT_FOUND"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"

    # Service unavailable (503)
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorSeverity(Enum):
    """Severity levels for error logging."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Map error codes to HTTP status codes
ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_USER_ID: 400,
    ErrorCode.INVALID_EVENT: 400,
    ErrorCode.EMPTY_MESSAGE: 400,
    ErrorCode.AUTHENTICATION_REQUIRED: 401,
    ErrorCode.BLOCKED: 403,
    ErrorCode.NOT_A_MEMBER: 403,
    ErrorCode.CHAT_NOT_FOUND: 404,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.PERSISTENCE_ERROR: 500,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
}

# Map error codes to severity
ERROR_SEVERITY_MAP: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.VALIDATION_ERROR: ErrorSeverity.LOW,
    ErrorCode.INVALID_USER_ID: ErrorSeverity.LOW,
    ErrorCode.INVALID_EVENT: ErrorSeverity.LOW,
    ErrorCode.EMPTY_MESSAGE: ErrorSeverity.LOW,
    ErrorCode.AUTHENTICATION_REQUIRED: ErrorSeverity.MEDIUM,
    ErrorCode.BLOCKED: ErrorSeverity.LOW,
    ErrorCode.NOT_A_MEMBER: ErrorSeverity.MEDIUM,
    ErrorCode.CHAT_NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.INTERNAL_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.PERSISTENCE_ERROR: ErrorSeverity.HIGH,
    ErrorCode.SERVICE_UNAVAILABLE: ErrorSeverity.HIGH,
}


@dataclass
class ErrorConfig:
    """Configuration for error handling."""

    include_request_id: bool = True
    log_all_errors: bool = True
    suppress_internal_details: bool = True
    custom_error_messages: Dict[str, str] = field(default_factory=dict)


DEFAULT_ERROR_CONFIG = ErrorConfig()
