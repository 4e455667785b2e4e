"""Database package for the chat store."""

from src.db.base import Base
from src.db.engine import create_sync_engine, get_sync_engine, SyncSessionLocal
from src.db.models import (
    User,
    UserBlock,
    Chat,
    ChatMember,
    Message,
)
from src.db.store import SqlChatStore

__all__ = [
    "Base",
    "create_sync_engine",
    "get_sync_engine",
    "SyncSessionLocal",
    "User",
    "UserBlock",
    "Chat",
    "ChatMember",
    "Message",
    "SqlChatStore",
]
