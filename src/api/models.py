"""API Request/Response Models.

Pydantic schemas for the message, chat-notification and presence
endpoints.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


# ─── Common ──────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "1.0.0"
    online_users: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotifyResponse(BaseModel):
    """How many live connections a notification reached."""

    delivered: int = 0


# ─── Messages ────────────────────────────────────────────────────────────


class SendMessageRequest(BaseModel):
    """A message body; at least text or one attachment URL."""

    text: str = Field(default="", max_length=10000)
    image_url: Optional[str] = None
    audio_url: Optional[str] = None


class MessageResponse(BaseModel):
    """A stored message."""

    message_id: str
    sender_id: str
    receiver_id: Optional[str] = None
    chat_id: Optional[str] = None
    text: str = ""
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    created_at: datetime
    recipients: list[str] = Field(default_factory=list)


# ─── Chats ───────────────────────────────────────────────────────────────


class GroupUpdateRequest(BaseModel):
    """The current state of a group after an update."""

    member_ids: list[str] = Field(default_factory=list)
    creator_id: Optional[str] = None
    name: str = ""
    description: str = ""


class GroupResponse(BaseModel):
    chat_id: str
    member_ids: list[str]
    creator_id: Optional[str] = None
    name: str = ""
    description: str = ""
    delivered: int = 0


# ─── Presence ────────────────────────────────────────────────────────────


class OnlineUsersResponse(BaseModel):
    online_user_ids: list[str]
    count: int
