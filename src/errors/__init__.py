"""Error Handling & Validation.

Provides the shared error taxonomy, structured error responses,
global exception handlers, and input validation utilities for the
realtime core and the FastAPI layer.
"""

from src.errors.config import (
    ErrorCode,
    ErrorConfig,
    ErrorSeverity,
)
from src.errors.exceptions import (
    AuthenticationError,
    BlockedError,
    ChatNotFoundError,
    ChatServiceError,
    NotAMemberError,
    PersistenceError,
    ValidationError,
)
from src.errors.handlers import (
    ErrorResponse,
    create_error_response,
    register_exception_handlers,
)
from src.errors.middleware import ErrorHandlingMiddleware
from src.errors.validators import (
    validate_channel,
    validate_message_content,
    validate_user_id,
)

__all__ = [
    # Config
    "ErrorCode",
    "ErrorConfig",
    "ErrorSeverity",
    # Exceptions
    "AuthenticationError",
    "BlockedError",
    "ChatNotFoundError",
    "ChatServiceError",
    "NotAMemberError",
    "PersistenceError",
    "ValidationError",
    # Handlers
    "ErrorResponse",
    "create_error_response",
    "register_exception_handlers",
    # Middleware
    "ErrorHandlingMiddleware",
    # Validators
    "validate_channel",
    "validate_message_content",
    "validate_user_id",
]
