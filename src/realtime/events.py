"""Inbound and outbound event types for the realtime core.

Inbound events form a closed set of frozen dataclasses parsed from the
``{"action": ...}`` JSON frames clients send. Outbound events carry a
delivery target that the router resolves against the registry.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

from src.errors.config import ErrorCode
from src.errors.exceptions import ValidationError
from src.errors.validators import validate_channel, validate_user_id
from src.realtime.config import DeliveryMode, OutboundEventType


# ── Delivery targets ─────────────────────────────────────────────────


class TargetKind(str, Enum):
    USER = "user"
    USERS = "users"
    ALL = "all"


@dataclass(frozen=True)
class Target:
    """Who an outbound event is addressed to."""

    kind: TargetKind
    user_ids: FrozenSet[str] = frozenset()
    exclude: FrozenSet[str] = frozenset()

    @classmethod
    def user(cls, user_id: str) -> "Target":
        return cls(TargetKind.USER, frozenset([user_id]))

    @classmethod
    def users(cls, user_ids: Iterable[str], exclude: Iterable[str] = ()) -> "Target":
        return cls(TargetKind.USERS, frozenset(user_ids), frozenset(exclude))

    @classmethod
    def everyone(cls, exclude: Iterable[str] = ()) -> "Target":
        return cls(TargetKind.ALL, frozenset(), frozenset(exclude))

    @classmethod
    def group(cls, member_ids: Iterable[str], origin_id: str, mode: DeliveryMode) -> "Target":
        """Fan-out to a member set, with or without the originating user."""
        if mode == DeliveryMode.NOTIFY_OTHERS:
            return cls.users(member_ids, exclude=[origin_id])
        return cls.users(set(member_ids) | {origin_id})

    def resolve(self, online_user_ids: Iterable[str]) -> FrozenSet[str]:
        """Return the user ids to deliver to.

        For ``ALL`` this is the online roster; for explicit targets it is
        the addressed set (offline users are skipped later by the router).
        """
        if self.kind == TargetKind.ALL:
            base = frozenset(online_user_ids)
        else:
            base = self.user_ids
        return base - self.exclude


@dataclass
class OutboundEvent:
    """An event pushed to one or more live connections."""

    event_type: OutboundEventType
    payload: Dict[str, Any] = field(default_factory=dict)
    target: Target = field(default_factory=Target.everyone)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Wire form sent over the socket."""
        return {
            "event": self.event_type.value,
            "data": self.payload,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


# ── Inbound events ───────────────────────────────────────────────────


@dataclass(frozen=True)
class CallRequest:
    sender_id: str
    to: str
    channel: str


@dataclass(frozen=True)
class CallAccept:
    sender_id: str
    to: str
    channel: str = ""


@dataclass(frozen=True)
class CallReject:
    sender_id: str
    to: str


@dataclass(frozen=True)
class CallEnd:
    sender_id: str
    to: str


@dataclass(frozen=True)
class TypingIndicator:
    sender_id: str
    receiver_id: str
    typing: bool


@dataclass(frozen=True)
class SendMessage:
    sender_id: str
    text: str = ""
    receiver_id: Optional[str] = None
    chat_id: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None


@dataclass(frozen=True)
class Heartbeat:
    sender_id: str


InboundEvent = Union[
    CallRequest,
    CallAccept,
    CallReject,
    CallEnd,
    TypingIndicator,
    SendMessage,
    Heartbeat,
]


def _invalid(message: str, field_name: Optional[str] = None) -> ValidationError:
    return ValidationError(message=message, error_code=ErrorCode.INVALID_EVENT, field=field_name)


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _peer(data: Dict[str, Any], *keys: str) -> str:
    return validate_user_id(_first(data, *keys), field=keys[0])


def parse_inbound(sender_id: str, raw: Union[str, bytes, Dict[str, Any]]) -> InboundEvent:
    """Parse a client frame into an InboundEvent.

    ``sender_id`` is the authenticated identity of the connection; any
    ``from`` field in the frame is ignored.

    Supported frames:
    - {"action": "call", "to": "...", "channel": "..."}
    - {"action": "accept_call", "to": "...", "channel": "..."}
    - {"action": "reject_call", "to": "..."}
    - {"action": "end_call", "to": "..."}
    - {"action": "typing", "receiver_id": "...", "typing": true}
    - {"action": "send_message", "receiver_id" | "chat_id": "...", "text": "..."}
    - {"action": "heartbeat"}

    Raises:
        ValidationError: If the frame is not valid JSON or not a known action.
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise _invalid("Invalid JSON")
    else:
        data = raw

    if not isinstance(data, dict):
        raise _invalid("Event must be a JSON object")

    action = data.get("action")

    if action == "call":
        return CallRequest(
            sender_id=sender_id,
            to=_peer(data, "to"),
            channel=validate_channel(data.get("channel")),
        )
    if action == "accept_call":
        return CallAccept(
            sender_id=sender_id,
            to=_peer(data, "to"),
            channel=str(data.get("channel") or ""),
        )
    if action == "reject_call":
        return CallReject(sender_id=sender_id, to=_peer(data, "to"))
    if action == "end_call":
        return CallEnd(sender_id=sender_id, to=_peer(data, "to"))
    if action == "typing":
        typing = data.get("typing")
        if not isinstance(typing, bool):
            raise _invalid("'typing' must be a boolean", "typing")
        return TypingIndicator(
            sender_id=sender_id,
            receiver_id=_peer(data, "receiver_id", "receiverId"),
            typing=typing,
        )
    if action == "send_message":
        receiver_id = _first(data, "receiver_id", "receiverId")
        chat_id = _first(data, "chat_id", "chatId")
        if (receiver_id is None) == (chat_id is None):
            raise _invalid("Exactly one of 'receiver_id' or 'chat_id' is required")
        text = data.get("text") or ""
        if not isinstance(text, str):
            raise _invalid("'text' must be a string", "text")
        return SendMessage(
            sender_id=sender_id,
            text=text,
            receiver_id=validate_user_id(receiver_id, "receiver_id") if receiver_id is not None else None,
            chat_id=validate_user_id(chat_id, "chat_id") if chat_id is not None else None,
            image_url=data.get("image_url") or None,
            audio_url=data.get("audio_url") or None,
        )
    if action == "heartbeat":
        return Heartbeat(sender_id=sender_id)

    raise _invalid(f"Unknown action: {action}", "action")
