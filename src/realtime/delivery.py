"""Message delivery pipeline: validate, persist, then notify.

Delivery never precedes successful persistence. Live pushes are
best-effort: recipients without a connection are skipped and see the
message on their next history fetch.
"""

import logging
from dataclasses import dataclass
from typing import Callable, FrozenSet, List, Optional, Union

from src.errors.exceptions import (
    BlockedError,
    ChatServiceError,
    NotAMemberError,
    PersistenceError,
    ValidationError,
)
from src.errors.validators import validate_message_content
from src.realtime.config import DeliveryMode, OutboundEventType, RealtimeConfig
from src.realtime.events import OutboundEvent, Target
from src.realtime.store import ChatStore, OutgoingMessage, StoredMessage

logger = logging.getLogger(__name__)

DispatchFn = Callable[[OutboundEvent], int]


@dataclass(frozen=True)
class DirectTarget:
    """A one-to-one conversation."""

    receiver_id: str


@dataclass(frozen=True)
class GroupTarget:
    """A group chat, resolved to its members at delivery time."""

    chat_id: str


DeliveryTarget = Union[DirectTarget, GroupTarget]


@dataclass
class DeliveryReport:
    """Outcome of one delivery: the stored message and who was pushed."""

    message: StoredMessage
    recipients: FrozenSet[str]
    mode: DeliveryMode
    connections_reached: int = 0


class MessageDeliveryPipeline:
    """Runs the persist-then-notify flow for chat messages.

    1:1 sends echo the stored message to both participants; group sends
    notify every member except the sender, whose confirmation is the
    returned message itself.
    """

    def __init__(
        self,
        store: ChatStore,
        dispatch: DispatchFn,
        config: Optional[RealtimeConfig] = None,
    ):
        self._store = store
        self._dispatch = dispatch
        self._config = config or RealtimeConfig()
        self._delivered = 0
        self._failed = 0

    async def deliver(
        self,
        message: OutgoingMessage,
        sender_id: str,
        target: DeliveryTarget,
    ) -> DeliveryReport:
        """Persist *message* and push it to the participants' connections.

        Raises:
            ValidationError: Empty message or a message to oneself.
            BlockedError: Either direct-message party blocked the other.
            ChatNotFoundError: The group chat does not exist.
            NotAMemberError: The sender is not in the group.
            PersistenceError: The store failed; nothing was delivered.
        """
        text = validate_message_content(message.text, message.image_url, message.audio_url)

        if isinstance(target, DirectTarget):
            await self._check_direct(sender_id, target.receiver_id)
            outgoing = OutgoingMessage(
                sender_id=sender_id,
                text=text,
                receiver_id=target.receiver_id,
                image_url=message.image_url,
                audio_url=message.audio_url,
            )
            recipients = frozenset((sender_id, target.receiver_id))
            mode = DeliveryMode.ECHO
        else:
            members = await self._check_group(sender_id, target.chat_id)
            outgoing = OutgoingMessage(
                sender_id=sender_id,
                text=text,
                chat_id=target.chat_id,
                image_url=message.image_url,
                audio_url=message.audio_url,
            )
            recipients = members
            mode = DeliveryMode.NOTIFY_OTHERS

        stored = await self._persist(outgoing)

        events = self.build_events(stored, recipients, mode)
        reached = 0
        for event in events:
            reached += self._dispatch(event)

        self._delivered += 1
        logger.info(
            "Delivered message %s from %s (%s) to %d connection(s)",
            stored.message_id,
            sender_id,
            mode.value,
            reached,
        )
        return DeliveryReport(stored, events[0].target.resolve(()), mode, reached)

    def build_events(
        self,
        stored: StoredMessage,
        recipients: FrozenSet[str],
        mode: DeliveryMode,
    ) -> List[OutboundEvent]:
        """``new_message`` for every target plus ``notification`` for non-senders."""
        sender_id = stored.sender_id
        return [
            OutboundEvent(
                OutboundEventType.NEW_MESSAGE,
                {"message": stored.to_dict()},
                Target.group(recipients, sender_id, mode),
            ),
            OutboundEvent(
                OutboundEventType.NOTIFICATION,
                {
                    "message_id": stored.message_id,
                    "sender_id": sender_id,
                    "chat_id": stored.chat_id,
                    "summary": self.summarize(stored),
                },
                Target.users(recipients, exclude=[sender_id]),
            ),
        ]

    def summarize(self, stored: StoredMessage) -> str:
        """Notification text: the message text or an attachment placeholder."""
        if stored.text:
            return stored.text
        if stored.image_url:
            return self._config.image_placeholder
        return self._config.audio_placeholder

    def get_stats(self) -> dict:
        return {"delivered": self._delivered, "failed": self._failed}

    async def _check_direct(self, sender_id: str, receiver_id: str) -> None:
        if sender_id == receiver_id:
            raise ValidationError(message="Cannot send a message to yourself", field="receiver_id")
        if await self._store.is_blocked(sender_id, receiver_id):
            self._failed += 1
            raise BlockedError(
                "Cannot send message to a blocked user",
                sender_id=sender_id,
                receiver_id=receiver_id,
            )
        if await self._store.is_blocked(receiver_id, sender_id):
            self._failed += 1
            raise BlockedError(
                "Cannot send message; you are blocked by the recipient",
                sender_id=sender_id,
                receiver_id=receiver_id,
            )

    async def _check_group(self, sender_id: str, chat_id: str) -> FrozenSet[str]:
        membership = await self._store.get_chat_members(chat_id)
        if sender_id not in membership.member_ids:
            self._failed += 1
            raise NotAMemberError(chat_id=chat_id)
        return membership.member_ids

    async def _persist(self, outgoing: OutgoingMessage) -> StoredMessage:
        try:
            return await self._store.persist_message(outgoing)
        except ChatServiceError:
            self._failed += 1
            raise
        except Exception as exc:
            self._failed += 1
            logger.exception("Persisting message from %s failed", outgoing.sender_id)
            raise PersistenceError(f"Failed to persist message: {type(exc).__name__}") from exc
