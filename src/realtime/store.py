"""Persistence collaborator boundary for the realtime core.

The core consumes only three store operations: persist a message, check
whether one user blocked another, and read a chat's membership. Any
object implementing :class:`ChatStore` can be injected; the in-memory
store below backs development runs and tests, and ``src.db.store``
provides the SQLAlchemy implementation.
"""

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Protocol, Set, Tuple

from src.errors.exceptions import ChatNotFoundError


@dataclass(frozen=True)
class OutgoingMessage:
    """A message as submitted by its sender, before persistence."""

    sender_id: str
    text: str = ""
    receiver_id: Optional[str] = None
    chat_id: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None


@dataclass(frozen=True)
class StoredMessage:
    """A message after the store accepted it."""

    message_id: str
    sender_id: str
    text: str = ""
    receiver_id: Optional[str] = None
    chat_id: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "chat_id": self.chat_id,
            "text": self.text,
            "image_url": self.image_url,
            "audio_url": self.audio_url,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ChatMembership:
    """Read-only view of a chat's members."""

    chat_id: str
    member_ids: FrozenSet[str]
    creator_id: Optional[str] = None
    name: str = ""
    description: str = ""
    is_group: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "member_ids": sorted(self.member_ids),
            "creator_id": self.creator_id,
            "name": self.name,
            "description": self.description,
            "is_group": self.is_group,
        }


class ChatStore(Protocol):
    """The persistence operations the realtime core depends on."""

    async def persist_message(self, message: OutgoingMessage) -> StoredMessage:
        ...

    async def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        ...

    async def get_chat_members(self, chat_id: str) -> ChatMembership:
        """Raises ChatNotFoundError for unknown chats."""
        ...


class ChatAdminStore(ChatStore, Protocol):
    """A ChatStore that can also apply the chat changes the REST layer reports."""

    def add_chat(
        self,
        chat_id: str,
        member_ids: Iterable[str],
        creator_id: Optional[str] = None,
        name: str = "",
        description: str = "",
    ) -> ChatMembership:
        """Create or replace a group chat."""
        ...

    def remove_member(self, chat_id: str, user_id: str) -> ChatMembership:
        ...

    def delete_chat(self, chat_id: str) -> None:
        ...


class InMemoryChatStore:
    """Process-local ChatStore used for development and tests."""

    def __init__(self):
        self._messages: List[StoredMessage] = []
        self._blocks: Set[Tuple[str, str]] = set()
        self._chats: Dict[str, ChatMembership] = {}
        self._lock = asyncio.Lock()

    async def persist_message(self, message: OutgoingMessage) -> StoredMessage:
        stored = StoredMessage(
            message_id=uuid.uuid4().hex,
            sender_id=message.sender_id,
            text=message.text,
            receiver_id=message.receiver_id,
            chat_id=message.chat_id,
            image_url=message.image_url,
            audio_url=message.audio_url,
        )
        async with self._lock:
            self._messages.append(stored)
        return stored

    async def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        return (blocker_id, blocked_id) in self._blocks

    async def get_chat_members(self, chat_id: str) -> ChatMembership:
        chat = self._chats.get(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id=chat_id)
        return chat

    # ── Administrative helpers ───────────────────────────────────────

    def block(self, blocker_id: str, blocked_id: str) -> None:
        self._blocks.add((blocker_id, blocked_id))

    def unblock(self, blocker_id: str, blocked_id: str) -> None:
        self._blocks.discard((blocker_id, blocked_id))

    def add_chat(
        self,
        chat_id: str,
        member_ids: Iterable[str],
        creator_id: Optional[str] = None,
        name: str = "",
        description: str = "",
    ) -> ChatMembership:
        members = frozenset(member_ids)
        if creator_id:
            members = members | {creator_id}
        chat = ChatMembership(chat_id, members, creator_id, name, description)
        self._chats[chat_id] = chat
        return chat

    def remove_member(self, chat_id: str, user_id: str) -> ChatMembership:
        chat = self._chats.get(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id=chat_id)
        updated = replace(chat, member_ids=chat.member_ids - {user_id})
        self._chats[chat_id] = updated
        return updated

    def delete_chat(self, chat_id: str) -> None:
        self._chats.pop(chat_id, None)

    def list_messages(self) -> List[StoredMessage]:
        return list(self._messages)
