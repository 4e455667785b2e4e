"""Realtime presence & event fan-out core."""

from .config import (
    CallState,
    ChangeKind,
    DeliveryMode,
    OutboundEventType,
    RealtimeConfig,
)
from .events import (
    CallAccept,
    CallEnd,
    CallReject,
    CallRequest,
    Heartbeat,
    InboundEvent,
    OutboundEvent,
    SendMessage,
    Target,
    TargetKind,
    TypingIndicator,
    parse_inbound,
)
from .registry import ConnectionHandle, ConnectionRegistry, RegistryChange
from .presence import PresenceBroadcaster
from .router import EventDispatcher, EventRouter
from .calls import CallSession, CallSignaling
from .store import (
    ChatAdminStore,
    ChatMembership,
    ChatStore,
    InMemoryChatStore,
    OutgoingMessage,
    StoredMessage,
)
from .delivery import (
    DeliveryReport,
    DirectTarget,
    GroupTarget,
    MessageDeliveryPipeline,
)
from .gateway import RealtimeGateway, build_gateway

__all__ = [
    # Config
    "CallState",
    "ChangeKind",
    "DeliveryMode",
    "OutboundEventType",
    "RealtimeConfig",
    # Events
    "CallAccept",
    "CallEnd",
    "CallReject",
    "CallRequest",
    "Heartbeat",
    "InboundEvent",
    "OutboundEvent",
    "SendMessage",
    "Target",
    "TargetKind",
    "TypingIndicator",
    "parse_inbound",
    # Registry
    "ConnectionHandle",
    "ConnectionRegistry",
    "RegistryChange",
    # Presence
    "PresenceBroadcaster",
    # Router
    "EventDispatcher",
    "EventRouter",
    # Calls
    "CallSession",
    "CallSignaling",
    # Store
    "ChatAdminStore",
    "ChatMembership",
    "ChatStore",
    "InMemoryChatStore",
    "OutgoingMessage",
    "StoredMessage",
    # Delivery
    "DeliveryReport",
    "DirectTarget",
    "GroupTarget",
    "MessageDeliveryPipeline",
    # Gateway
    "RealtimeGateway",
    "build_gateway",
]
