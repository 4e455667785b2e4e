"""Tests for the persist-then-notify message delivery pipeline."""

import pytest

from conftest import RecordingHandle
from src.errors.config import ErrorCode
from src.errors.exceptions import (
    BlockedError,
    ChatNotFoundError,
    NotAMemberError,
    PersistenceError,
    ValidationError,
)
from src.realtime.config import DeliveryMode, OutboundEventType, RealtimeConfig
from src.realtime.delivery import DirectTarget, GroupTarget, MessageDeliveryPipeline
from src.realtime.gateway import build_gateway
from src.realtime.store import InMemoryChatStore, OutgoingMessage


class SpyStore(InMemoryChatStore):
    """In-memory store that counts persistence calls and can fail them."""

    def __init__(self, fail_with=None):
        super().__init__()
        self.persist_calls = 0
        self.fail_with = fail_with

    async def persist_message(self, message):
        self.persist_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return await super().persist_message(message)


def _text(sender_id, text="hello"):
    return OutgoingMessage(sender_id=sender_id, text=text)


class TestDirectDelivery:
    """Tests for 1:1 messages (echo to both participants)."""

    def setup_method(self):
        self.store = SpyStore()
        self.gateway = build_gateway(self.store)
        self.alice = RecordingHandle("alice")
        self.bob = RecordingHandle("bob")
        self.gateway.on_connect("alice", self.alice)
        self.gateway.on_connect("bob", self.bob)
        self.alice.clear()
        self.bob.clear()

    @pytest.mark.asyncio
    async def test_echoes_to_both_and_notifies_receiver(self):
        report = await self.gateway.pipeline.deliver(
            _text("alice"), "alice", DirectTarget("bob")
        )
        assert report.mode == DeliveryMode.ECHO
        assert report.recipients == {"alice", "bob"}
        assert self.alice.types() == ["new_message"]
        assert self.bob.types() == ["new_message", "notification"]
        assert report.connections_reached == 3

        pushed = self.bob.events[0].payload["message"]
        assert pushed["message_id"] == report.message.message_id
        assert pushed["receiver_id"] == "bob"
        assert self.bob.events[1].payload["summary"] == "hello"

    @pytest.mark.asyncio
    async def test_blocked_by_sender_never_persists(self):
        self.store.block("alice", "bob")
        with pytest.raises(BlockedError) as exc_info:
            await self.gateway.pipeline.deliver(_text("alice"), "alice", DirectTarget("bob"))
        assert exc_info.value.message == "Cannot send message to a blocked user"
        assert self.store.persist_calls == 0
        assert self.bob.events == []

    @pytest.mark.asyncio
    async def test_blocked_by_receiver_never_persists(self):
        self.store.block("bob", "alice")
        with pytest.raises(BlockedError) as exc_info:
            await self.gateway.pipeline.deliver(_text("alice"), "alice", DirectTarget("bob"))
        assert "blocked by the recipient" in exc_info.value.message
        assert self.store.persist_calls == 0

    @pytest.mark.asyncio
    async def test_unblock_restores_delivery(self):
        self.store.block("bob", "alice")
        self.store.unblock("bob", "alice")
        await self.gateway.pipeline.deliver(_text("alice"), "alice", DirectTarget("bob"))
        assert self.store.persist_calls == 1

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            await self.gateway.pipeline.deliver(_text("alice", "  "), "alice", DirectTarget("bob"))
        assert exc_info.value.error_code == ErrorCode.EMPTY_MESSAGE
        assert self.store.persist_calls == 0

    @pytest.mark.asyncio
    async def test_message_to_self_rejected(self):
        with pytest.raises(ValidationError):
            await self.gateway.pipeline.deliver(_text("alice"), "alice", DirectTarget("alice"))

    @pytest.mark.asyncio
    async def test_offline_receiver_still_persisted(self):
        self.gateway.on_disconnect(self.bob)
        self.alice.clear()
        report = await self.gateway.pipeline.deliver(_text("alice"), "alice", DirectTarget("bob"))
        assert self.store.persist_calls == 1
        assert report.connections_reached == 1
        assert self.alice.types() == ["new_message"]

    @pytest.mark.asyncio
    async def test_attachment_summaries(self):
        await self.gateway.pipeline.deliver(
            OutgoingMessage(sender_id="alice", image_url="https://cdn/p.png"),
            "alice",
            DirectTarget("bob"),
        )
        await self.gateway.pipeline.deliver(
            OutgoingMessage(sender_id="alice", audio_url="https://cdn/v.ogg"),
            "alice",
            DirectTarget("bob"),
        )
        summaries = [e.payload["summary"] for e in self.bob.of_type(OutboundEventType.NOTIFICATION)]
        assert summaries == ["Image", "Audio"]

    @pytest.mark.asyncio
    async def test_configured_placeholders(self):
        gateway = build_gateway(SpyStore(), RealtimeConfig(image_placeholder="Photo"))
        bob = RecordingHandle("bob")
        gateway.on_connect("bob", bob)
        await gateway.pipeline.deliver(
            OutgoingMessage(sender_id="alice", image_url="https://cdn/p.png"),
            "alice",
            DirectTarget("bob"),
        )
        assert bob.of_type(OutboundEventType.NOTIFICATION)[0].payload["summary"] == "Photo"


class TestGroupDelivery:
    """Tests for group messages (notify everyone but the sender)."""

    def setup_method(self):
        self.store = SpyStore()
        self.store.add_chat("g1", ["alice", "bob", "dave"], creator_id="alice")
        self.gateway = build_gateway(self.store)
        self.handles = {}
        for user_id in ("alice", "bob", "carol", "dave"):
            handle = RecordingHandle(user_id)
            self.gateway.on_connect(user_id, handle)
            self.handles[user_id] = handle
        for handle in self.handles.values():
            handle.clear()

    @pytest.mark.asyncio
    async def test_members_except_sender_receive(self):
        report = await self.gateway.pipeline.deliver(_text("alice"), "alice", GroupTarget("g1"))
        assert report.mode == DeliveryMode.NOTIFY_OTHERS
        assert report.recipients == {"bob", "dave"}
        assert self.handles["alice"].events == []
        assert self.handles["carol"].events == []
        for user_id in ("bob", "dave"):
            assert self.handles[user_id].types() == ["new_message", "notification"]
            assert self.handles[user_id].events[1].payload["chat_id"] == "g1"

    @pytest.mark.asyncio
    async def test_sender_confirmation_over_socket(self):
        replies = await self.gateway.on_inbound_event(
            self.handles["alice"],
            {"action": "send_message", "chat_id": "g1", "text": "hi all"},
        )
        assert [r.event_type for r in replies] == [OutboundEventType.NEW_MESSAGE]
        assert replies[0].payload["message"]["text"] == "hi all"
        assert self.handles["alice"].types() == ["new_message"]
        assert self.handles["bob"].types() == ["new_message", "notification"]

    @pytest.mark.asyncio
    async def test_non_member_rejected(self):
        with pytest.raises(NotAMemberError):
            await self.gateway.pipeline.deliver(_text("carol"), "carol", GroupTarget("g1"))
        assert self.store.persist_calls == 0

    @pytest.mark.asyncio
    async def test_unknown_chat(self):
        with pytest.raises(ChatNotFoundError):
            await self.gateway.pipeline.deliver(_text("alice"), "alice", GroupTarget("nope"))

    @pytest.mark.asyncio
    async def test_removed_member_stops_receiving(self):
        self.store.remove_member("g1", "dave")
        await self.gateway.pipeline.deliver(_text("alice"), "alice", GroupTarget("g1"))
        assert self.handles["dave"].events == []
        assert self.handles["bob"].types() == ["new_message", "notification"]


class TestPersistenceFailure:
    """Tests that a failed write never reaches any connection."""

    @pytest.mark.asyncio
    async def test_store_failure_raises_persistence_error(self):
        store = SpyStore(fail_with=RuntimeError("disk full"))
        gateway = build_gateway(store)
        alice, bob = RecordingHandle("alice"), RecordingHandle("bob")
        gateway.on_connect("alice", alice)
        gateway.on_connect("bob", bob)
        alice.clear()
        bob.clear()

        with pytest.raises(PersistenceError):
            await gateway.pipeline.deliver(_text("alice"), "alice", DirectTarget("bob"))
        assert alice.events == []
        assert bob.events == []
        assert gateway.pipeline.get_stats() == {"delivered": 0, "failed": 1}

    @pytest.mark.asyncio
    async def test_store_failure_reported_as_error_event(self):
        store = SpyStore(fail_with=RuntimeError("disk full"))
        gateway = build_gateway(store)
        alice, bob = RecordingHandle("alice"), RecordingHandle("bob")
        gateway.on_connect("alice", alice)
        gateway.on_connect("bob", bob)
        bob.clear()

        replies = await gateway.on_inbound_event(
            alice, {"action": "send_message", "receiver_id": "bob", "text": "hi"}
        )
        assert replies[0].event_type == OutboundEventType.ERROR
        assert replies[0].payload["code"] == "PERSISTENCE_ERROR"
        assert bob.events == []

    @pytest.mark.asyncio
    async def test_blocked_reported_only_to_origin(self):
        store = SpyStore()
        store.block("bob", "alice")
        gateway = build_gateway(store)
        alice, bob = RecordingHandle("alice"), RecordingHandle("bob")
        gateway.on_connect("alice", alice)
        gateway.on_connect("bob", bob)
        bob.clear()

        replies = await gateway.on_inbound_event(
            alice, {"action": "send_message", "receiver_id": "bob", "text": "hi"}
        )
        assert replies[0].payload["code"] == "BLOCKED"
        assert bob.events == []


class TestPipelineDirect:
    """Tests for the pipeline with a plain dispatch function."""

    @pytest.mark.asyncio
    async def test_build_events_targets(self):
        sent = []
        pipeline = MessageDeliveryPipeline(InMemoryChatStore(), lambda e: sent.append(e) or 1)
        report = await pipeline.deliver(_text("alice"), "alice", DirectTarget("bob"))
        new_message, notification = sent
        assert new_message.target.resolve(()) == {"alice", "bob"}
        assert notification.target.resolve(()) == {"bob"}
        assert report.connections_reached == 2
