"""Configuration for the realtime presence & fan-out core."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class OutboundEventType(str, Enum):
    """Event names pushed to client connections."""
    NEW_MESSAGE = "new_message"
    NOTIFICATION = "notification"
    TYPING = "typing"
    INCOMING_CALL = "incoming_call"
    CALL_INITIATED = "call_initiated"
    CALL_ACCEPTED = "call_accepted"
    CALL_REJECTED = "call_rejected"
    CALL_ENDED = "call_ended"
    CALL_ERROR = "call_error"
    PRESENCE_CHANGED = "presence_changed"
    USER_ONLINE = "user_online"
    USER_OFFLINE = "user_offline"
    CHAT_CLEARED = "chat_cleared"
    GROUP_UPDATED = "group_updated"
    GROUP_DELETED = "group_deleted"
    USER_REMOVED = "user_removed"
    USER_DELETED = "user_deleted"
    CONNECTED = "connected"
    HEARTBEAT_ACK = "heartbeat_ack"
    ERROR = "error"


class CallState(str, Enum):
    """Lifecycle states for a signalling-only call session."""
    RINGING = "ringing"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ENDED = "ended"

    @property
    def is_terminal(self) -> bool:
        return self in (CallState.REJECTED, CallState.ENDED)


class DeliveryMode(str, Enum):
    """Whether a fan-out to a user set includes the originating user."""
    NOTIFY_OTHERS = "notify_others"
    ECHO = "echo"


class ChangeKind(str, Enum):
    """Registry transitions reported to listeners."""
    CONNECTED = "connected"
    REPLACED = "replaced"
    DISCONNECTED = "disconnected"


@dataclass
class RealtimeConfig:
    """Knobs for the presence & fan-out core."""

    suppress_redundant_presence: bool = True
    replaced_close_code: int = 4000
    replaced_close_reason: str = "replaced by a newer connection"
    deleted_close_code: int = 4003
    image_placeholder: str = "Image"
    audio_placeholder: str = "Audio"
    offline_call_message: str = "User not found or offline"
    busy_call_message: str = "already in a call"

    @classmethod
    def from_settings(cls, settings: Optional[object] = None) -> "RealtimeConfig":
        """Build the core config from the process settings."""
        if settings is None:
            from src.settings import get_settings
            settings = get_settings()
        return cls(
            suppress_redundant_presence=settings.suppress_redundant_presence,
            replaced_close_code=settings.replaced_close_code,
            image_placeholder=settings.image_placeholder,
            audio_placeholder=settings.audio_placeholder,
        )
