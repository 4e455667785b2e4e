"""Realtime gateway: the composition root of the presence & fan-out core.

Transport adapters call ``on_connect`` / ``on_disconnect`` /
``on_inbound_event`` for socket sessions; the REST layer calls the
``notify_*`` methods and ``send_message`` after it has changed state.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from src.errors.config import ErrorCode
from src.errors.exceptions import ChatServiceError, ValidationError
from src.errors.validators import validate_user_id
from src.logging_config.context import RequestContext
from src.realtime.calls import CallSignaling
from src.realtime.config import ChangeKind, OutboundEventType, RealtimeConfig
from src.realtime.delivery import (
    DeliveryReport,
    DirectTarget,
    GroupTarget,
    MessageDeliveryPipeline,
)
from src.realtime.events import OutboundEvent, Target, parse_inbound
from src.realtime.presence import PresenceBroadcaster
from src.realtime.registry import ConnectionHandle, ConnectionRegistry, RegistryChange
from src.realtime.router import EventDispatcher, EventRouter
from src.realtime.store import ChatMembership, ChatStore, InMemoryChatStore, OutgoingMessage

logger = logging.getLogger(__name__)


class RealtimeGateway:
    """Owns one registry, presence broadcaster, router, call tracker and pipeline."""

    def __init__(
        self,
        store: ChatStore,
        config: Optional[RealtimeConfig] = None,
    ):
        self.config = config or RealtimeConfig()
        self.store = store
        self.registry = ConnectionRegistry(self.config)
        self.dispatcher = EventDispatcher(self.registry)
        self.presence = PresenceBroadcaster(self.registry, self.dispatcher.dispatch, self.config)
        self.calls = CallSignaling(self.config)
        self.pipeline = MessageDeliveryPipeline(store, self.dispatcher.dispatch, self.config)
        self.router = EventRouter(
            self.registry, self.dispatcher, self.calls, self.pipeline, self.config
        )
        self.registry.add_listener(self._on_registry_change)

    # ── Socket lifecycle ─────────────────────────────────────────────

    def on_connect(self, user_id: str, handle: ConnectionHandle) -> Optional[RegistryChange]:
        """Register *handle* as the live connection for *user_id*.

        Raises:
            ValidationError: If the user id is missing or malformed.
        """
        user_id = validate_user_id(user_id)
        if handle.user_id != user_id:
            raise ValidationError(
                message="Connection handle belongs to another user", field="user_id"
            )
        return self.registry.register(user_id, handle)

    def on_disconnect(self, handle: ConnectionHandle) -> bool:
        """Unregister *handle*; returns False when it had been superseded.

        A superseded handle's calls already ended when it was replaced.
        """
        user_id = self.registry.unregister(handle)
        if user_id is None:
            return False
        for event in self.calls.drop_user(user_id):
            self.dispatcher.dispatch(event)
        return True

    def _on_registry_change(self, change: RegistryChange) -> None:
        # calls end with the connection that was replaced, not with its successor
        if change.kind == ChangeKind.REPLACED:
            for event in self.calls.drop_user(change.user_id):
                self.dispatcher.dispatch(event)

    async def on_inbound_event(
        self,
        handle: ConnectionHandle,
        raw: Union[str, bytes, Dict[str, Any]],
    ) -> List[OutboundEvent]:
        """Parse and route one client frame; never raises.

        Replies for the originating connection are sent on *handle* and
        also returned.
        """
        if handle.closed or self.registry.lookup(handle.user_id) is not handle:
            logger.debug(
                "Ignoring event from inactive connection %s (user=%s)",
                handle.connection_id,
                handle.user_id,
            )
            return []

        with RequestContext(user_id=handle.user_id, connection_id=handle.connection_id):
            try:
                event = parse_inbound(handle.user_id, raw)
                replies = await self.router.route(handle, event)
            except ChatServiceError as exc:
                logger.info("Rejected event from user=%s: %s", handle.user_id, exc.message)
                replies = [self._error_event(handle.user_id, exc.to_event_payload())]
            except Exception:
                logger.exception("Unhandled error routing event from user=%s", handle.user_id)
                replies = [
                    self._error_event(
                        handle.user_id,
                        {"code": ErrorCode.INTERNAL_ERROR.value, "message": "Internal server error"},
                    )
                ]

            for reply in replies:
                try:
                    handle.send(reply)
                except Exception:
                    logger.exception(
                        "Failed to reply %s on connection %s (user=%s)",
                        reply.event_type.value,
                        handle.connection_id,
                        handle.user_id,
                    )
        return replies

    # ── REST boundary ────────────────────────────────────────────────

    async def send_message(
        self,
        sender_id: str,
        text: str = "",
        receiver_id: Optional[str] = None,
        chat_id: Optional[str] = None,
        image_url: Optional[str] = None,
        audio_url: Optional[str] = None,
    ) -> DeliveryReport:
        """Deliver an HTTP-originated message; errors propagate to the caller."""
        if (receiver_id is None) == (chat_id is None):
            raise ValidationError("Exactly one of receiver_id or chat_id is required")
        message = OutgoingMessage(
            sender_id=sender_id,
            text=text,
            receiver_id=receiver_id,
            chat_id=chat_id,
            image_url=image_url,
            audio_url=audio_url,
        )
        target = DirectTarget(receiver_id) if receiver_id else GroupTarget(chat_id)
        return await self.pipeline.deliver(message, sender_id, target)

    def notify_chat_cleared(
        self,
        target_user_ids: Iterable[str],
        cleared_by_user_id: str,
        chat_id: Optional[str] = None,
    ) -> int:
        return self.router.notify_chat_cleared(target_user_ids, cleared_by_user_id, chat_id)

    async def notify_group_chat_cleared(self, chat_id: str, cleared_by: str) -> int:
        membership = await self.store.get_chat_members(chat_id)
        return self.router.notify_chat_cleared(membership.member_ids, cleared_by, chat_id)

    def notify_group_updated(self, group: ChatMembership) -> int:
        return self.router.notify_group_updated(group)

    def notify_group_deleted(self, group_id: str, member_ids: Iterable[str]) -> int:
        return self.router.notify_group_deleted(group_id, member_ids)

    def notify_user_removed(
        self,
        chat_id: str,
        user_id: str,
        remaining_member_ids: Iterable[str],
    ) -> int:
        return self.router.notify_user_removed(chat_id, user_id, remaining_member_ids)

    def notify_user_deleted(self, user_id: str) -> int:
        """Broadcast the deletion, then close the user's live connection."""
        reached = self.router.notify_user_deleted(user_id)
        handle = self.registry.lookup(user_id)
        if handle is not None:
            handle.close(self.config.deleted_close_code, "account deleted")
            self.on_disconnect(handle)
        return reached

    def get_stats(self) -> dict:
        return {
            "registry": self.registry.get_stats(),
            "presence": self.presence.get_stats(),
            "dispatch": self.dispatcher.get_stats(),
            "calls": self.calls.get_stats(),
            "delivery": self.pipeline.get_stats(),
        }

    @staticmethod
    def _error_event(user_id: str, payload: Dict[str, Any]) -> OutboundEvent:
        return OutboundEvent(OutboundEventType.ERROR, payload, Target.user(user_id))


def build_gateway(
    store: Optional[ChatStore] = None,
    config: Optional[RealtimeConfig] = None,
) -> RealtimeGateway:
    """Wire a gateway around *store* (in-memory when omitted)."""
    return RealtimeGateway(store if store is not None else InMemoryChatStore(), config)
