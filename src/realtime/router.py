"""Event routing and fan-out.

The dispatcher resolves an outbound event's target against the
connection registry and pushes it to each live connection. The router
handles inbound client events (one arm per event type) and the
notifications the REST layer raises after it changes chats or users.
"""

import logging
from typing import Iterable, List, Optional

from src.errors.exceptions import ChatServiceError
from src.realtime.calls import CallSignaling
from src.realtime.config import DeliveryMode, OutboundEventType, RealtimeConfig
from src.realtime.delivery import DirectTarget, GroupTarget, MessageDeliveryPipeline
from src.realtime.events import (
    CallAccept,
    CallEnd,
    CallReject,
    CallRequest,
    Heartbeat,
    InboundEvent,
    OutboundEvent,
    SendMessage,
    Target,
    TypingIndicator,
)
from src.realtime.registry import ConnectionHandle, ConnectionRegistry
from src.realtime.store import ChatMembership, OutgoingMessage

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Pushes outbound events to the live connections of their targets.

    Delivery is best-effort: offline users are skipped and a connection
    that fails to accept an event is logged and skipped.
    """

    def __init__(self, registry: ConnectionRegistry):
        self._registry = registry
        self._dispatched = 0
        self._skipped_offline = 0
        self._send_failures = 0

    def dispatch(self, event: OutboundEvent) -> int:
        """Deliver *event* and return the number of connections reached."""
        user_ids = event.target.resolve(self._registry.all_online_user_ids())
        reached = 0
        for user_id in user_ids:
            handle = self._registry.lookup(user_id)
            if handle is None:
                self._skipped_offline += 1
                continue
            try:
                if handle.send(event):
                    reached += 1
            except Exception:
                self._send_failures += 1
                logger.exception(
                    "Failed to push %s to connection %s (user=%s)",
                    event.event_type.value,
                    handle.connection_id,
                    user_id,
                )

        self._dispatched += 1
        logger.debug(
            "Dispatched %s to %d/%d connection(s)",
            event.event_type.value,
            reached,
            len(user_ids),
            extra={"event_type": event.event_type.value, "recipients": reached},
        )
        return reached

    def get_stats(self) -> dict:
        return {
            "dispatched": self._dispatched,
            "skipped_offline": self._skipped_offline,
            "send_failures": self._send_failures,
        }


class EventRouter:
    """Routes inbound client events and REST-originated notifications."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        dispatcher: EventDispatcher,
        calls: CallSignaling,
        pipeline: MessageDeliveryPipeline,
        config: Optional[RealtimeConfig] = None,
    ):
        self._registry = registry
        self._dispatcher = dispatcher
        self._calls = calls
        self._pipeline = pipeline
        self._config = config or RealtimeConfig()

    def dispatch(self, event: OutboundEvent) -> int:
        return self._dispatcher.dispatch(event)

    async def route(self, handle: ConnectionHandle, event: InboundEvent) -> List[OutboundEvent]:
        """Handle one inbound event from *handle*.

        Events for other users are dispatched through the registry. The
        returned events are replies for the originating connection
        (confirmations and errors), which the caller sends on *handle*.
        """
        if isinstance(event, CallRequest):
            if self._registry.lookup(event.to) is None:
                logger.info("Call from %s failed: %s is offline", event.sender_id, event.to)
                events = [
                    OutboundEvent(
                        OutboundEventType.CALL_ERROR,
                        {"message": self._config.offline_call_message, "to": event.to},
                        Target.user(event.sender_id),
                    )
                ]
            else:
                events = self._calls.start_call(event.sender_id, event.to, event.channel)
        elif isinstance(event, CallAccept):
            events = self._calls.accept(event.sender_id, event.to, event.channel)
        elif isinstance(event, CallReject):
            events = self._calls.reject(event.sender_id, event.to)
        elif isinstance(event, CallEnd):
            events = self._calls.end(event.sender_id, event.to)
        elif isinstance(event, TypingIndicator):
            events = self._typing(event)
        elif isinstance(event, SendMessage):
            return await self._send_message(event)
        elif isinstance(event, Heartbeat):
            handle.touch()
            return [
                OutboundEvent(
                    OutboundEventType.HEARTBEAT_ACK,
                    {"connection_id": handle.connection_id},
                    Target.user(handle.user_id),
                )
            ]
        else:
            raise TypeError(f"Unhandled inbound event: {type(event).__name__}")

        return self._emit(handle, events)

    # ── REST-originated notifications ────────────────────────────────

    def notify_chat_cleared(
        self,
        target_user_ids: Iterable[str],
        cleared_by_user_id: str,
        chat_id: Optional[str] = None,
    ) -> int:
        """Tell participants a conversation's history was cleared.

        For a 1:1 chat (no *chat_id*) the clearer is told which peer's
        conversation was cleared and each peer is told who cleared it.
        For a group every target receives the chat id.
        """
        targets = set(target_user_ids)
        if chat_id is not None:
            return self.dispatch(
                OutboundEvent(
                    OutboundEventType.CHAT_CLEARED,
                    {"chat_id": chat_id, "cleared_by": cleared_by_user_id},
                    Target.group(targets, cleared_by_user_id, DeliveryMode.ECHO),
                )
            )

        targets.discard(cleared_by_user_id)
        reached = 0
        for peer_id in sorted(targets):
            reached += self.dispatch(
                OutboundEvent(
                    OutboundEventType.CHAT_CLEARED,
                    {"user_id": peer_id, "cleared_by": cleared_by_user_id},
                    Target.user(cleared_by_user_id),
                )
            )
            reached += self.dispatch(
                OutboundEvent(
                    OutboundEventType.CHAT_CLEARED,
                    {"user_id": cleared_by_user_id, "cleared_by": cleared_by_user_id},
                    Target.user(peer_id),
                )
            )
        return reached

    def notify_group_updated(self, group: ChatMembership) -> int:
        return self.dispatch(
            OutboundEvent(
                OutboundEventType.GROUP_UPDATED,
                {"group": group.to_dict()},
                Target.users(group.member_ids),
            )
        )

    def notify_group_deleted(self, group_id: str, member_ids: Iterable[str]) -> int:
        """Tell members a group is gone; with no members left, tell everyone."""
        members = frozenset(member_ids)
        target = Target.users(members) if members else Target.everyone()
        return self.dispatch(
            OutboundEvent(OutboundEventType.GROUP_DELETED, {"chat_id": group_id}, target)
        )

    def notify_user_removed(
        self,
        chat_id: str,
        user_id: str,
        remaining_member_ids: Iterable[str],
    ) -> int:
        return self.dispatch(
            OutboundEvent(
                OutboundEventType.USER_REMOVED,
                {"chat_id": chat_id, "user_id": user_id},
                Target.users(remaining_member_ids, exclude=[user_id]),
            )
        )

    def notify_user_deleted(self, user_id: str) -> int:
        return self.dispatch(
            OutboundEvent(OutboundEventType.USER_DELETED, {"user_id": user_id}, Target.everyone())
        )

    # ── Internals ────────────────────────────────────────────────────

    def _typing(self, event: TypingIndicator) -> List[OutboundEvent]:
        if not self._registry.is_online(event.receiver_id):
            logger.debug("Dropping typing from %s: %s is offline", event.sender_id, event.receiver_id)
            return []
        return [
            OutboundEvent(
                OutboundEventType.TYPING,
                {"user_id": event.sender_id, "typing": event.typing},
                Target.user(event.receiver_id),
            )
        ]

    async def _send_message(self, event: SendMessage) -> List[OutboundEvent]:
        message = OutgoingMessage(
            sender_id=event.sender_id,
            text=event.text,
            receiver_id=event.receiver_id,
            chat_id=event.chat_id,
            image_url=event.image_url,
            audio_url=event.audio_url,
        )
        target = DirectTarget(event.receiver_id) if event.receiver_id else GroupTarget(event.chat_id)
        try:
            report = await self._pipeline.deliver(message, event.sender_id, target)
        except ChatServiceError as exc:
            logger.info("Send from %s refused: %s", event.sender_id, exc.message)
            return [
                OutboundEvent(
                    OutboundEventType.ERROR,
                    {"action": "send_message", **exc.to_event_payload()},
                    Target.user(event.sender_id),
                )
            ]
        if report.mode == DeliveryMode.ECHO:
            # the sender already received the echoed new_message
            return []
        return [
            OutboundEvent(
                OutboundEventType.NEW_MESSAGE,
                {"message": report.message.to_dict()},
                Target.user(event.sender_id),
            )
        ]

    def _emit(self, handle: ConnectionHandle, events: List[OutboundEvent]) -> List[OutboundEvent]:
        """Dispatch events for others; keep those addressed only to the origin."""
        origin = Target.user(handle.user_id)
        replies = []
        for event in events:
            if event.target == origin:
                replies.append(event)
            else:
                self.dispatch(event)
        return replies
