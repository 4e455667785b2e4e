"""Custom Exception Hierarchy.

Typed exceptions shared by the realtime core and the HTTP layer. Each
carries an ErrorCode that maps to an HTTP status for REST callers and to
an ``error`` event for socket callers.
"""

from typing import Any, Dict, List, Optional

from src.errors.config import ErrorCode, ERROR_STATUS_MAP


class ChatServiceError(Exception):
    """Base exception for all chat service errors.

    All custom exceptions inherit from this, allowing a single
    exception handler to catch the entire hierarchy.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = ERROR_STATUS_MAP.get(error_code, 500)
        self.details = details or []
        self.headers = headers or {}

    def to_event_payload(self) -> Dict[str, Any]:
        """Payload for an ``error`` event pushed to the originating socket."""
        payload: Dict[str, Any] = {"code": self.error_code.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ChatServiceError):
    """Raised when request or event input fails validation."""

    def __init__(
        self,
        message: str = "Validation failed",
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[List[Dict[str, Any]]] = None,
        field: Optional[str] = None,
    ):
        if field and not details:
            details = [{"field": field, "issue": message}]
        super().__init__(message, error_code, details)


class AuthenticationError(ChatServiceError):
    """Raised when the caller's identity is missing."""

    def __init__(
        self,
        message: str = "Authentication required",
        error_code: ErrorCode = ErrorCode.AUTHENTICATION_REQUIRED,
    ):
        super().__init__(message, error_code)


class BlockedError(ChatServiceError):
    """Raised when either party of a direct message has blocked the other."""

    def __init__(
        self,
        message: str = "Cannot send message to a blocked user",
        sender_id: Optional[str] = None,
        receiver_id: Optional[str] = None,
    ):
        details = []
        if sender_id or receiver_id:
            details = [{"sender_id": sender_id, "receiver_id": receiver_id}]
        super().__init__(message, ErrorCode.BLOCKED, details)


class NotAMemberError(ChatServiceError):
    """Raised when a user acts on a group chat they do not belong to."""

    def __init__(
        self,
        message: str = "You are not a member of this group",
        chat_id: Optional[str] = None,
    ):
        details = [{"chat_id": chat_id}] if chat_id else []
        super().__init__(message, ErrorCode.NOT_A_MEMBER, details)


class ChatNotFoundError(ChatServiceError):
    """Raised when a referenced chat does not exist."""

    def __init__(
        self,
        message: str = "Chat not found",
        chat_id: Optional[str] = None,
    ):
        details = [{"chat_id": chat_id}] if chat_id else []
        super().__init__(message, ErrorCode.CHAT_NOT_FOUND, details)


class PersistenceError(ChatServiceError):
    """Raised when the message store fails; delivery is never attempted."""

    def __init__(
        self,
        message: str = "Failed to persist message",
        error_code: ErrorCode = ErrorCode.PERSISTENCE_ERROR,
    ):
        super().__init__(message, error_code)
