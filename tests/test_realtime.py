"""Tests for the realtime core: events, registry, presence, routing, calls."""

import json

import pytest

from conftest import FailingHandle, RecordingHandle
from src.errors.config import ErrorCode
from src.errors.exceptions import ValidationError
from src.realtime.calls import CallSignaling
from src.realtime.config import (
    CallState,
    ChangeKind,
    DeliveryMode,
    OutboundEventType,
    RealtimeConfig,
)
from src.realtime.events import (
    CallAccept,
    CallRequest,
    Heartbeat,
    OutboundEvent,
    SendMessage,
    Target,
    TargetKind,
    TypingIndicator,
    parse_inbound,
)
from src.realtime.presence import PresenceBroadcaster
from src.realtime.registry import ConnectionRegistry
from src.realtime.router import EventDispatcher
from src.settings import Settings


# ── Config Tests ─────────────────────────────────────────────────────


class TestRealtimeConfig:
    """Tests for enums and RealtimeConfig defaults."""

    def test_call_state_terminality(self):
        assert not CallState.RINGING.is_terminal
        assert not CallState.ACCEPTED.is_terminal
        assert CallState.REJECTED.is_terminal
        assert CallState.ENDED.is_terminal

    def test_delivery_modes(self):
        assert DeliveryMode.NOTIFY_OTHERS.value == "notify_others"
        assert DeliveryMode.ECHO.value == "echo"

    def test_default_config(self):
        cfg = RealtimeConfig()
        assert cfg.suppress_redundant_presence is True
        assert cfg.replaced_close_code == 4000
        assert cfg.image_placeholder == "Image"
        assert cfg.audio_placeholder == "Audio"
        assert cfg.offline_call_message == "User not found or offline"

    def test_from_settings(self):
        cfg = RealtimeConfig.from_settings(
            Settings(suppress_redundant_presence=False, image_placeholder="Photo")
        )
        assert cfg.suppress_redundant_presence is False
        assert cfg.image_placeholder == "Photo"


# ── Event Tests ──────────────────────────────────────────────────────


class TestTargets:
    """Tests for outbound event targets."""

    def test_group_notify_others_excludes_origin(self):
        target = Target.group(["a", "b", "d"], "a", DeliveryMode.NOTIFY_OTHERS)
        assert target.resolve(()) == {"b", "d"}

    def test_group_echo_includes_origin(self):
        target = Target.group(["b"], "a", DeliveryMode.ECHO)
        assert target.resolve(()) == {"a", "b"}

    def test_everyone_resolves_against_roster(self):
        target = Target.everyone(exclude=["a"])
        assert target.kind == TargetKind.ALL
        assert target.resolve({"a", "b", "c"}) == {"b", "c"}

    def test_outbound_wire_format(self):
        event = OutboundEvent(OutboundEventType.TYPING, {"user_id": "a", "typing": True})
        wire = json.loads(event.to_json())
        assert wire["event"] == "typing"
        assert wire["data"] == {"user_id": "a", "typing": True}
        assert wire["event_id"] == event.event_id


class TestParseInbound:
    """Tests for client frame parsing."""

    def test_call_frame(self):
        event = parse_inbound("alice", '{"action": "call", "to": "bob", "channel": "room-1"}')
        assert event == CallRequest(sender_id="alice", to="bob", channel="room-1")

    def test_sender_comes_from_connection_not_frame(self):
        event = parse_inbound("alice", {"action": "accept_call", "to": "bob", "from": "mallory"})
        assert event == CallAccept(sender_id="alice", to="bob")

    def test_typing_accepts_camel_case_receiver(self):
        event = parse_inbound("alice", {"action": "typing", "receiverId": "bob", "typing": False})
        assert event == TypingIndicator(sender_id="alice", receiver_id="bob", typing=False)

    def test_typing_requires_boolean(self):
        with pytest.raises(ValidationError):
            parse_inbound("alice", {"action": "typing", "receiver_id": "bob", "typing": "yes"})

    def test_send_message_to_group(self):
        event = parse_inbound("alice", {"action": "send_message", "chat_id": "g1", "text": "hi"})
        assert event == SendMessage(sender_id="alice", text="hi", chat_id="g1")

    def test_send_message_needs_exactly_one_target(self):
        with pytest.raises(ValidationError):
            parse_inbound("alice", {"action": "send_message", "text": "hi"})
        with pytest.raises(ValidationError):
            parse_inbound(
                "alice",
                {"action": "send_message", "receiver_id": "bob", "chat_id": "g1", "text": "hi"},
            )

    def test_heartbeat(self):
        assert parse_inbound("alice", b'{"action": "heartbeat"}') == Heartbeat(sender_id="alice")

    def test_invalid_json(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_inbound("alice", "{not json")
        assert exc_info.value.error_code == ErrorCode.INVALID_EVENT

    def test_unknown_action(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_inbound("alice", {"action": "teleport"})
        assert exc_info.value.error_code == ErrorCode.INVALID_EVENT

    def test_non_object_frame(self):
        with pytest.raises(ValidationError):
            parse_inbound("alice", "[1, 2]")

    def test_undefined_peer_rejected(self):
        with pytest.raises(ValidationError):
            parse_inbound("alice", {"action": "end_call", "to": "undefined"})


# ── ConnectionRegistry Tests ─────────────────────────────────────────


class TestConnectionRegistry:
    """Tests for the single-connection-per-user registry."""

    def setup_method(self):
        self.registry = ConnectionRegistry()
        self.changes = []
        self.registry.add_listener(self.changes.append)

    def test_register_lookup_unregister_round_trip(self):
        handle = RecordingHandle("u1")
        self.registry.register("u1", handle)
        assert self.registry.lookup("u1") is handle
        assert self.registry.unregister(handle) == "u1"
        assert self.registry.lookup("u1") is None

    def test_repeated_register_keeps_one_entry(self):
        handles = [RecordingHandle("u1") for _ in range(3)]
        for handle in handles:
            self.registry.register("u1", handle)
        assert self.registry.get_connection_count() == 1
        assert self.registry.lookup("u1") is handles[-1]
        assert all(h.closed for h in handles[:-1])
        assert not handles[-1].closed

    def test_replaced_handle_closed_with_code(self):
        old, new = RecordingHandle("u1"), RecordingHandle("u1")
        self.registry.register("u1", old)
        self.registry.register("u1", new)
        assert old.close_code == 4000
        assert old.close_reason == "replaced by a newer connection"

    def test_superseded_unregister_is_noop(self):
        old, new = RecordingHandle("u1"), RecordingHandle("u1")
        self.registry.register("u1", old)
        self.registry.register("u1", new)
        before = list(self.changes)
        assert self.registry.unregister(old) is None
        assert self.registry.lookup("u1") is new
        assert self.changes == before

    def test_unregister_unknown_handle(self):
        assert self.registry.unregister(RecordingHandle("ghost")) is None

    def test_register_same_handle_twice(self):
        handle = RecordingHandle("u1")
        self.registry.register("u1", handle)
        assert self.registry.register("u1", handle) is None
        assert not handle.closed
        assert len(self.changes) == 1

    def test_change_kinds(self):
        first, second = RecordingHandle("u1"), RecordingHandle("u1")
        self.registry.register("u1", first)
        self.registry.register("u1", second)
        self.registry.unregister(second)
        assert [c.kind for c in self.changes] == [
            ChangeKind.CONNECTED,
            ChangeKind.REPLACED,
            ChangeKind.DISCONNECTED,
        ]
        assert self.changes[1].replaced is first

    def test_failing_listener_does_not_break_register(self):
        def broken(change):
            raise RuntimeError("listener bug")

        self.registry.add_listener(broken)
        self.registry.register("u1", RecordingHandle("u1"))
        assert self.registry.is_online("u1")

    def test_all_online_user_ids(self):
        self.registry.register("u1", RecordingHandle("u1"))
        self.registry.register("u2", RecordingHandle("u2"))
        assert self.registry.all_online_user_ids() == {"u1", "u2"}

    def test_stats_and_reset(self):
        self.registry.register("u1", RecordingHandle("u1"))
        self.registry.register("u1", RecordingHandle("u1"))
        stats = self.registry.get_stats()
        assert stats["online_users"] == 1
        assert stats["replaced_total"] == 1
        self.registry.reset()
        assert self.registry.get_connection_count() == 0

    def test_closed_handle_refuses_sends(self):
        handle = RecordingHandle("u1")
        handle.close(1000, "bye")
        handle.close(4000, "again")
        assert handle.close_code == 1000
        assert handle.send(OutboundEvent(OutboundEventType.HEARTBEAT_ACK)) is False
        assert handle.events == []


# ── PresenceBroadcaster Tests ────────────────────────────────────────


class TestPresenceBroadcaster:
    """Tests for roster and point presence events."""

    def test_connect_broadcasts_roster_and_online(self, connect):
        alice = connect("alice")
        alice.clear()
        bob = connect("bob")
        assert alice.types() == ["presence_changed", "user_online"]
        assert alice.events[0].payload == {"online_user_ids": ["alice", "bob"]}
        assert alice.events[1].payload == {"user_id": "bob"}
        # the subject does not hear about itself
        assert bob.types() == ["presence_changed"]

    def test_reconnect_broadcasts_roster_exactly_once(self, gateway, connect):
        first = connect("u1")
        bob = connect("bob")
        bob.clear()
        second = RecordingHandle("u1")
        gateway.on_connect("u1", second)

        assert gateway.registry.get_connection_count() == 2
        assert first.closed and first.close_code == 4000
        assert bob.types() == ["presence_changed"]
        assert bob.events[0].payload == {"online_user_ids": ["bob", "u1"]}

    def test_reconnect_point_event_when_not_suppressed(self, store):
        from src.realtime.gateway import build_gateway

        gateway = build_gateway(store, RealtimeConfig(suppress_redundant_presence=False))
        bob = RecordingHandle("bob")
        gateway.on_connect("bob", bob)
        gateway.on_connect("u1", RecordingHandle("u1"))
        bob.clear()
        gateway.on_connect("u1", RecordingHandle("u1"))
        assert bob.types() == ["presence_changed", "user_online"]

    def test_disconnect_broadcasts_offline(self, gateway, connect):
        alice = connect("alice")
        bob = connect("bob")
        alice.clear()
        gateway.on_disconnect(bob)
        assert alice.types() == ["presence_changed", "user_offline"]
        assert alice.events[0].payload == {"online_user_ids": ["alice"]}

    def test_superseded_disconnect_is_silent(self, gateway, connect):
        first = connect("u1")
        bob = connect("bob")
        gateway.on_connect("u1", RecordingHandle("u1"))
        bob.clear()
        assert gateway.on_disconnect(first) is False
        assert bob.events == []
        assert gateway.registry.is_online("u1")

    def test_broadcaster_stats(self):
        registry = ConnectionRegistry()
        sent = []
        presence = PresenceBroadcaster(registry, lambda e: sent.append(e) or 0)
        registry.register("u1", RecordingHandle("u1"))
        registry.register("u1", RecordingHandle("u1"))
        assert [e.event_type for e in sent] == [
            OutboundEventType.PRESENCE_CHANGED,
            OutboundEventType.USER_ONLINE,
            OutboundEventType.PRESENCE_CHANGED,
        ]
        assert presence.get_stats() == {"roster_broadcasts": 2, "point_events": 1}


# ── EventDispatcher / EventRouter Tests ──────────────────────────────


class TestEventDispatcher:
    """Tests for best-effort fan-out."""

    def setup_method(self):
        self.registry = ConnectionRegistry()
        self.dispatcher = EventDispatcher(self.registry)

    def test_offline_targets_skipped(self):
        alice = RecordingHandle("alice")
        self.registry.register("alice", alice)
        event = OutboundEvent(OutboundEventType.TYPING, {}, Target.users(["alice", "bob"]))
        assert self.dispatcher.dispatch(event) == 1
        assert alice.types() == ["typing"]
        assert self.dispatcher.get_stats()["skipped_offline"] == 1

    def test_failing_connection_does_not_stop_fan_out(self):
        bad, good = FailingHandle("bad"), RecordingHandle("good")
        self.registry.register("bad", bad)
        self.registry.register("good", good)
        event = OutboundEvent(OutboundEventType.USER_DELETED, {"user_id": "x"}, Target.everyone())
        assert self.dispatcher.dispatch(event) == 1
        assert good.types() == ["user_deleted"]
        assert self.dispatcher.get_stats()["send_failures"] == 1


class TestEventRouter:
    """Tests for inbound routing and REST-originated notifications."""

    @pytest.mark.asyncio
    async def test_typing_forwarded_when_online(self, gateway, connect):
        alice, bob = connect("alice"), connect("bob")
        bob.clear()
        replies = await gateway.on_inbound_event(
            alice, {"action": "typing", "receiver_id": "bob", "typing": True}
        )
        assert replies == []
        assert bob.types() == ["typing"]
        assert bob.events[0].payload == {"user_id": "alice", "typing": True}

    @pytest.mark.asyncio
    async def test_typing_dropped_when_offline(self, gateway, connect):
        alice = connect("alice")
        alice.clear()
        replies = await gateway.on_inbound_event(
            alice, {"action": "typing", "receiver_id": "bob", "typing": True}
        )
        assert replies == []
        assert alice.events == []

    @pytest.mark.asyncio
    async def test_heartbeat_ack(self, gateway, connect):
        alice = connect("alice")
        alice.clear()
        replies = await gateway.on_inbound_event(alice, {"action": "heartbeat"})
        assert [r.event_type for r in replies] == [OutboundEventType.HEARTBEAT_ACK]
        assert alice.types() == ["heartbeat_ack"]

    def test_direct_chat_cleared(self, gateway, connect):
        alice, bob = connect("alice"), connect("bob")
        alice.clear()
        bob.clear()
        gateway.notify_chat_cleared(["bob"], "alice")
        assert alice.events[0].payload["user_id"] == "bob"
        assert bob.events[0].payload["user_id"] == "alice"
        assert alice.types() == bob.types() == ["chat_cleared"]

    @pytest.mark.asyncio
    async def test_group_chat_cleared_reaches_all_members(self, gateway, store, connect):
        store.add_chat("g1", ["alice", "bob", "carol"])
        alice, bob, dave = connect("alice"), connect("bob"), connect("dave")
        for h in (alice, bob, dave):
            h.clear()
        await gateway.notify_group_chat_cleared("g1", "alice")
        assert alice.types() == bob.types() == ["chat_cleared"]
        assert bob.events[0].payload == {"chat_id": "g1", "cleared_by": "alice"}
        assert dave.events == []

    def test_group_updated(self, gateway, store, connect):
        group = store.add_chat("g1", ["alice", "bob"], name="Team")
        alice, dave = connect("alice"), connect("dave")
        alice.clear()
        dave.clear()
        gateway.notify_group_updated(group)
        assert alice.types() == ["group_updated"]
        assert alice.events[0].payload["group"]["name"] == "Team"
        assert dave.events == []

    def test_group_deleted_goes_to_members(self, gateway, connect):
        alice, dave = connect("alice"), connect("dave")
        alice.clear()
        dave.clear()
        gateway.notify_group_deleted("g1", ["alice", "bob"])
        assert alice.types() == ["group_deleted"]
        assert dave.events == []

    def test_group_deleted_without_members_goes_to_everyone(self, gateway, connect):
        alice, dave = connect("alice"), connect("dave")
        alice.clear()
        dave.clear()
        assert gateway.notify_group_deleted("g1", []) == 2
        assert dave.types() == ["group_deleted"]

    def test_user_removed_skips_removed_user(self, gateway, connect):
        alice, bob = connect("alice"), connect("bob")
        alice.clear()
        bob.clear()
        gateway.notify_user_removed("g1", "bob", ["alice", "bob"])
        assert alice.types() == ["user_removed"]
        assert alice.events[0].payload == {"chat_id": "g1", "user_id": "bob"}
        assert bob.events == []

    def test_user_deleted_broadcast_and_closes_connection(self, gateway, connect):
        alice, bob = connect("alice"), connect("bob")
        alice.clear()
        gateway.notify_user_deleted("bob")
        assert alice.types() == ["user_deleted", "presence_changed", "user_offline"]
        assert bob.closed and bob.close_code == 4003
        assert not gateway.registry.is_online("bob")


# ── CallSignaling Tests ──────────────────────────────────────────────


class TestCallSignaling:
    """Tests for the call signalling state machine."""

    def setup_method(self):
        self.calls = CallSignaling()

    def test_start_call_events(self):
        events = self.calls.start_call("a", "b", "room")
        assert [e.event_type for e in events] == [
            OutboundEventType.INCOMING_CALL,
            OutboundEventType.CALL_INITIATED,
        ]
        assert events[0].target == Target.user("b")
        assert events[0].payload["from"] == "a"
        assert self.calls.get_session("b", "a").state == CallState.RINGING

    def test_duplicate_call_is_busy(self):
        self.calls.start_call("a", "b", "room")
        events = self.calls.start_call("a", "b", "room")
        assert [e.event_type for e in events] == [OutboundEventType.CALL_ERROR]
        assert events[0].payload["message"] == "already in a call"
        assert len(self.calls.list_sessions()) == 1

    def test_glare_from_callee_is_busy(self):
        self.calls.start_call("a", "b", "room")
        events = self.calls.start_call("b", "a", "room")
        assert events[0].event_type == OutboundEventType.CALL_ERROR

    def test_call_reject_call_succeeds(self):
        self.calls.start_call("a", "b", "room")
        rejected = self.calls.reject("b", "a")
        assert rejected[0].event_type == OutboundEventType.CALL_REJECTED
        assert rejected[0].target.resolve(()) == {"a", "b"}
        again = self.calls.start_call("a", "b", "room")
        assert again[0].event_type == OutboundEventType.INCOMING_CALL

    def test_accept_only_by_callee(self):
        self.calls.start_call("a", "b", "room")
        assert self.calls.accept("a", "b") == []
        events = self.calls.accept("b", "a")
        assert events[0].event_type == OutboundEventType.CALL_ACCEPTED
        assert events[0].target == Target.user("a")
        assert events[0].payload["channel"] == "room"
        assert self.calls.get_session("a", "b").state == CallState.ACCEPTED

    def test_accept_twice_ignored(self):
        self.calls.start_call("a", "b", "room")
        self.calls.accept("b", "a")
        assert self.calls.accept("b", "a") == []

    def test_end_notifies_both_and_forgets_session(self):
        self.calls.start_call("a", "b", "room")
        self.calls.accept("b", "a")
        events = self.calls.end("a", "b")
        assert events[0].payload["reason"] == "hangup"
        assert events[0].target.resolve(()) == {"a", "b"}
        assert self.calls.get_session("a", "b") is None

    def test_actions_without_session_are_noops(self):
        assert self.calls.accept("b", "a") == []
        assert self.calls.reject("b", "a") == []
        assert self.calls.end("b", "a") == []

    def test_drop_user_notifies_remaining_peer(self):
        self.calls.start_call("a", "b", "room")
        events = self.calls.drop_user("b")
        assert len(events) == 1
        assert events[0].target == Target.user("a")
        assert events[0].payload["reason"] == "disconnected"
        assert self.calls.list_sessions("a") == []

    def test_cannot_call_yourself(self):
        events = self.calls.start_call("a", "a", "room")
        assert events[0].event_type == OutboundEventType.CALL_ERROR

    def test_stats_and_reset(self):
        self.calls.start_call("a", "b", "room")
        self.calls.start_call("c", "d", "room")
        self.calls.end("c", "d")
        assert self.calls.get_stats() == {"active": 1, "ringing": 1, "accepted": 0, "completed": 1}
        self.calls.reset()
        assert self.calls.list_sessions() == []


class TestCallRouting:
    """Tests for call signalling through the gateway."""

    @pytest.mark.asyncio
    async def test_call_offline_callee(self, gateway, connect):
        alice = connect("alice")
        alice.clear()
        replies = await gateway.on_inbound_event(
            alice, {"action": "call", "to": "bob", "channel": "room"}
        )
        assert [r.event_type for r in replies] == [OutboundEventType.CALL_ERROR]
        assert replies[0].payload["message"] == "User not found or offline"
        assert gateway.calls.list_sessions() == []

    @pytest.mark.asyncio
    async def test_full_call_flow(self, gateway, connect):
        alice, bob = connect("alice"), connect("bob")
        alice.clear()
        bob.clear()

        replies = await gateway.on_inbound_event(
            alice, {"action": "call", "to": "bob", "channel": "room"}
        )
        assert [r.event_type for r in replies] == [OutboundEventType.CALL_INITIATED]
        assert bob.types() == ["incoming_call"]

        await gateway.on_inbound_event(bob, {"action": "accept_call", "to": "alice"})
        assert alice.types()[-1] == "call_accepted"

        await gateway.on_inbound_event(alice, {"action": "end_call", "to": "bob"})
        assert alice.types()[-1] == "call_ended"
        assert bob.types()[-1] == "call_ended"

    @pytest.mark.asyncio
    async def test_disconnect_ends_call(self, gateway, connect):
        alice, bob = connect("alice"), connect("bob")
        await gateway.on_inbound_event(alice, {"action": "call", "to": "bob", "channel": "room"})
        alice.clear()
        gateway.on_disconnect(bob)
        ended = alice.of_type(OutboundEventType.CALL_ENDED)
        assert len(ended) == 1
        assert ended[0].payload["reason"] == "disconnected"

    @pytest.mark.asyncio
    async def test_reconnect_ends_call(self, gateway, connect):
        alice, bob = connect("alice"), connect("bob")
        await gateway.on_inbound_event(alice, {"action": "call", "to": "bob", "channel": "room"})
        bob.clear()
        alice2 = RecordingHandle("alice")
        gateway.on_connect("alice", alice2)
        gateway.on_disconnect(alice)
        assert gateway.calls.get_session("alice", "bob") is None
        ended = bob.of_type(OutboundEventType.CALL_ENDED)
        assert len(ended) == 1
        assert ended[0].payload == {
            "from": "alice",
            "reason": "disconnected",
            "session_id": ended[0].payload["session_id"],
        }

    @pytest.mark.asyncio
    async def test_recall_after_reconnect(self, gateway, connect):
        alice, bob = connect("alice"), connect("bob")
        await gateway.on_inbound_event(alice, {"action": "call", "to": "bob", "channel": "room"})
        alice2 = RecordingHandle("alice")
        gateway.on_connect("alice", alice2)
        gateway.on_disconnect(alice)
        replies = await gateway.on_inbound_event(
            alice2, {"action": "call", "to": "bob", "channel": "room"}
        )
        assert [r.event_type for r in replies] == [OutboundEventType.CALL_INITIATED]
        assert bob.types()[-1] == "incoming_call"
