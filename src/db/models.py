"""SQLAlchemy ORM models for the chat store.

Tables:
- users: Known accounts (profile data lives upstream)
- user_blocks: Directed block relation (blocker -> blocked)
- chats: Group chats with name, description and creator
- chat_members: Group membership
- messages: Persisted 1:1 and group messages
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from src.db.base import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """A chat account."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    username = Column(String(100))
    created_at = Column(DateTime, server_default=func.now())


class UserBlock(Base):
    """``blocker_id`` has blocked ``blocked_id``."""

    __tablename__ = "user_blocks"

    blocker_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    blocked_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    created_at = Column(DateTime, server_default=func.now())


class Chat(Base):
    """A group chat."""

    __tablename__ = "chats"

    id = Column(String(64), primary_key=True, default=_new_id)
    name = Column(String(200), default="")
    description = Column(Text, default="")
    creator_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"))
    is_group = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    members = relationship("ChatMember", back_populates="chat", cascade="all, delete-orphan")


class ChatMember(Base):
    """Membership of a user in a group chat."""

    __tablename__ = "chat_members"

    chat_id = Column(String(64), ForeignKey("chats.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    joined_at = Column(DateTime, server_default=func.now())

    chat = relationship("Chat", back_populates="members")

    __table_args__ = (UniqueConstraint("chat_id", "user_id", name="uq_chat_member"),)


class Message(Base):
    """A stored message; exactly one of receiver_id / chat_id is set."""

    __tablename__ = "messages"

    id = Column(String(64), primary_key=True, default=_new_id)
    sender_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    receiver_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"))
    chat_id = Column(String(64), ForeignKey("chats.id", ondelete="CASCADE"))
    text = Column(Text, default="")
    image_url = Column(String(500))
    audio_url = Column(String(500))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_messages_pair", "sender_id", "receiver_id", "created_at"),
        Index("ix_messages_chat", "chat_id", "created_at"),
    )
