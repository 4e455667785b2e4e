"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path
from typing import List, Optional

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.realtime.config import OutboundEventType, RealtimeConfig  # noqa: E402
from src.realtime.gateway import RealtimeGateway, build_gateway  # noqa: E402
from src.realtime.registry import ConnectionHandle  # noqa: E402
from src.realtime.store import InMemoryChatStore  # noqa: E402


class RecordingHandle(ConnectionHandle):
    """In-process ConnectionHandle that records what it was sent."""

    def __init__(self, user_id: str, connection_id: Optional[str] = None):
        super().__init__(user_id, connection_id)
        self.events = []

    def _push(self, event) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [e.event_type.value for e in self.events]

    def of_type(self, event_type: OutboundEventType) -> list:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()


class FailingHandle(RecordingHandle):
    """Handle whose transport raises on every push."""

    def _push(self, event) -> None:
        raise ConnectionResetError("socket gone")


@pytest.fixture
def realtime_config() -> RealtimeConfig:
    return RealtimeConfig()


@pytest.fixture
def store() -> InMemoryChatStore:
    return InMemoryChatStore()


@pytest.fixture
def gateway(store, realtime_config) -> RealtimeGateway:
    return build_gateway(store, realtime_config)


@pytest.fixture
def connect(gateway):
    """Connect a RecordingHandle for a user and return it."""

    def _connect(user_id: str) -> RecordingHandle:
        handle = RecordingHandle(user_id)
        gateway.on_connect(user_id, handle)
        return handle

    return _connect
