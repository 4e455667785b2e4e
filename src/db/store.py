"""SQLAlchemy-backed ChatStore.

Sessions are synchronous; each store call runs in a worker thread via
``asyncio.to_thread`` so the event loop is never blocked on I/O.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from src.db.base import Base
from src.db.engine import get_sync_engine, get_sync_session_factory
from src.db.models import Chat, ChatMember, Message, User, UserBlock
from src.errors.exceptions import ChatNotFoundError, PersistenceError
from src.logging_config.performance import log_performance
from src.realtime.store import ChatMembership, OutgoingMessage, StoredMessage

logger = logging.getLogger(__name__)


class SqlChatStore:
    """ChatStore implementation over the ``users``/``chats``/``messages`` tables."""

    def __init__(self, engine=None, create_tables: bool = True):
        self._engine = engine or get_sync_engine()
        self._session_factory = get_sync_session_factory(self._engine)
        if create_tables:
            Base.metadata.create_all(self._engine)

    # ── ChatStore protocol ───────────────────────────────────────────

    @log_performance(threshold_ms=200)
    async def persist_message(self, message: OutgoingMessage) -> StoredMessage:
        return await asyncio.to_thread(self._persist_message, message)

    async def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        return await asyncio.to_thread(self._is_blocked, blocker_id, blocked_id)

    async def get_chat_members(self, chat_id: str) -> ChatMembership:
        return await asyncio.to_thread(self._get_chat_members, chat_id)

    # ── Administrative helpers ───────────────────────────────────────

    def add_user(self, user_id: str, username: Optional[str] = None) -> None:
        with self._session_factory() as session, session.begin():
            self._ensure_users(session, [user_id])
            if username:
                session.get(User, user_id).username = username

    def block(self, blocker_id: str, blocked_id: str) -> None:
        with self._session_factory() as session, session.begin():
            self._ensure_users(session, [blocker_id, blocked_id])
            if session.get(UserBlock, (blocker_id, blocked_id)) is None:
                session.add(UserBlock(blocker_id=blocker_id, blocked_id=blocked_id))

    def unblock(self, blocker_id: str, blocked_id: str) -> None:
        with self._session_factory() as session, session.begin():
            row = session.get(UserBlock, (blocker_id, blocked_id))
            if row is not None:
                session.delete(row)

    def add_chat(
        self,
        chat_id: str,
        member_ids: Iterable[str],
        creator_id: Optional[str] = None,
        name: str = "",
        description: str = "",
    ) -> ChatMembership:
        members = set(member_ids)
        if creator_id:
            members.add(creator_id)
        with self._session_factory() as session, session.begin():
            self._ensure_users(session, members)
            chat = session.get(Chat, chat_id)
            if chat is None:
                chat = Chat(id=chat_id)
                session.add(chat)
            chat.name = name
            chat.description = description
            chat.creator_id = creator_id
            existing = {m.user_id: m for m in chat.members}
            chat.members = [
                existing.get(user_id) or ChatMember(user_id=user_id) for user_id in sorted(members)
            ]
        return ChatMembership(chat_id, frozenset(members), creator_id, name, description)

    def remove_member(self, chat_id: str, user_id: str) -> ChatMembership:
        with self._session_factory() as session, session.begin():
            row = session.get(ChatMember, (chat_id, user_id))
            if row is not None:
                session.delete(row)
        return self._get_chat_members(chat_id)

    def delete_chat(self, chat_id: str) -> None:
        with self._session_factory() as session, session.begin():
            chat = session.get(Chat, chat_id)
            if chat is not None:
                session.delete(chat)

    def list_messages(self, chat_id: Optional[str] = None) -> List[StoredMessage]:
        with self._session_factory() as session:
            stmt = select(Message).order_by(Message.created_at)
            if chat_id is not None:
                stmt = stmt.where(Message.chat_id == chat_id)
            return [self._to_stored(row) for row in session.scalars(stmt)]

    # ── Sync implementations ─────────────────────────────────────────

    def _persist_message(self, message: OutgoingMessage) -> StoredMessage:
        row = Message(
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            chat_id=message.chat_id,
            text=message.text,
            image_url=message.image_url,
            audio_url=message.audio_url,
            created_at=datetime.now(timezone.utc),
        )
        try:
            with self._session_factory() as session, session.begin():
                users = [message.sender_id]
                if message.receiver_id:
                    users.append(message.receiver_id)
                self._ensure_users(session, users)
                session.add(row)
                session.flush()
                stored = self._to_stored(row)
        except SQLAlchemyError as exc:
            logger.error("Failed to persist message from %s: %s", message.sender_id, exc)
            raise PersistenceError(f"Failed to persist message: {type(exc).__name__}") from exc
        return stored

    def _is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        try:
            with self._session_factory() as session:
                return session.get(UserBlock, (blocker_id, blocked_id)) is not None
        except SQLAlchemyError as exc:
            logger.error("Failed to read block %s -> %s: %s", blocker_id, blocked_id, exc)
            raise PersistenceError(f"Failed to check block list: {type(exc).__name__}") from exc

    def _get_chat_members(self, chat_id: str) -> ChatMembership:
        try:
            with self._session_factory() as session:
                chat = session.get(Chat, chat_id)
                if chat is None:
                    raise ChatNotFoundError(chat_id=chat_id)
                return ChatMembership(
                    chat_id=chat.id,
                    member_ids=frozenset(m.user_id for m in chat.members),
                    creator_id=chat.creator_id,
                    name=chat.name or "",
                    description=chat.description or "",
                    is_group=bool(chat.is_group),
                )
        except SQLAlchemyError as exc:
            logger.error("Failed to read members of chat %s: %s", chat_id, exc)
            raise PersistenceError(f"Failed to load chat members: {type(exc).__name__}") from exc

    @staticmethod
    def _ensure_users(session, user_ids: Iterable[str]) -> None:
        for user_id in set(user_ids):
            if session.get(User, user_id) is None:
                session.add(User(id=user_id))
        session.flush()

    @staticmethod
    def _to_stored(row: Message) -> StoredMessage:
        created_at = row.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return StoredMessage(
            message_id=row.id,
            sender_id=row.sender_id,
            text=row.text or "",
            receiver_id=row.receiver_id,
            chat_id=row.chat_id,
            image_url=row.image_url,
            audio_url=row.audio_url,
            created_at=created_at,
        )
