"""Call signalling state machine.

Tracks the signalling-only lifecycle of a call between two users
(ringing -> accepted -> ended, or ringing -> rejected/ended). Media
transport is handled elsewhere; this module only decides which
signalling events are delivered to whom.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional

from src.realtime.config import CallState, OutboundEventType, RealtimeConfig
from src.realtime.events import OutboundEvent, Target

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CallSession:
    """Signalling state for one call between a caller and a callee."""

    caller: str
    callee: str
    channel: str
    state: CallState = CallState.RINGING
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def pair(self) -> FrozenSet[str]:
        return frozenset((self.caller, self.callee))

    def involves(self, user_id: str) -> bool:
        return user_id == self.caller or user_id == self.callee

    def peer_of(self, user_id: str) -> str:
        return self.callee if user_id == self.caller else self.caller

    def transition(self, state: CallState) -> None:
        self.state = state
        self.updated_at = _utcnow()


class CallSignaling:
    """Thread-safe tracker of in-progress call sessions.

    At most one non-terminal session exists per unordered user pair.
    Actions that reference a missing or already-terminal session are
    silent no-ops: signalling is racy and must never fail the caller's
    connection handler.
    """

    def __init__(self, config: Optional[RealtimeConfig] = None):
        self._config = config or RealtimeConfig()
        self._sessions: Dict[FrozenSet[str], CallSession] = {}
        self._completed = 0
        self._lock = threading.Lock()

    def start_call(self, caller: str, callee: str, channel: str) -> List[OutboundEvent]:
        """Open a ringing session; the callee is assumed online.

        Returns ``incoming_call`` for the callee and ``call_initiated`` for
        the caller, or a single ``call_error`` if the pair already has a
        session in progress.
        """
        if caller == callee:
            return [self._call_error(caller, "Cannot call yourself")]

        pair = frozenset((caller, callee))
        with self._lock:
            existing = self._sessions.get(pair)
            if existing is not None and not existing.state.is_terminal:
                busy = True
            else:
                busy = False
                session = CallSession(caller=caller, callee=callee, channel=channel)
                self._sessions[pair] = session

        if busy:
            logger.info(
                "Rejected call %s -> %s: session %s is %s",
                caller,
                callee,
                existing.session_id,
                existing.state.value,
            )
            return [self._call_error(caller, self._config.busy_call_message)]

        logger.info("Call %s ringing %s -> %s on %s", session.session_id, caller, callee, channel)
        return [
            OutboundEvent(
                OutboundEventType.INCOMING_CALL,
                {"from": caller, "channel": channel, "session_id": session.session_id},
                Target.user(callee),
            ),
            OutboundEvent(
                OutboundEventType.CALL_INITIATED,
                {"to": callee, "channel": channel, "session_id": session.session_id},
                Target.user(caller),
            ),
        ]

    def accept(self, issuer: str, peer: str, channel: str = "") -> List[OutboundEvent]:
        """Ringing -> accepted, only when issued by the session's callee."""
        with self._lock:
            session = self._sessions.get(frozenset((issuer, peer)))
            if (
                session is None
                or session.state != CallState.RINGING
                or session.callee != issuer
            ):
                accepted = False
            else:
                session.transition(CallState.ACCEPTED)
                accepted = True

        if not accepted:
            logger.debug("Ignoring accept from %s for %s: no ringing session", issuer, peer)
            return []

        logger.info("Call %s accepted by %s", session.session_id, issuer)
        return [
            OutboundEvent(
                OutboundEventType.CALL_ACCEPTED,
                {
                    "from": issuer,
                    "channel": channel or session.channel,
                    "session_id": session.session_id,
                },
                Target.user(session.caller),
            )
        ]

    def reject(self, issuer: str, peer: str) -> List[OutboundEvent]:
        """Any non-terminal session -> rejected; both parties are told."""
        session = self._finish(frozenset((issuer, peer)), CallState.REJECTED)
        if session is None:
            logger.debug("Ignoring reject from %s for %s: no active session", issuer, peer)
            return []
        logger.info("Call %s rejected by %s", session.session_id, issuer)
        return [
            OutboundEvent(
                OutboundEventType.CALL_REJECTED,
                {"from": issuer, "session_id": session.session_id},
                Target.users(session.pair),
            )
        ]

    def end(self, issuer: str, peer: str, reason: str = "hangup") -> List[OutboundEvent]:
        """Any non-terminal session -> ended; both parties are told."""
        session = self._finish(frozenset((issuer, peer)), CallState.ENDED)
        if session is None:
            logger.debug("Ignoring end from %s for %s: no active session", issuer, peer)
            return []
        logger.info("Call %s ended by %s (%s)", session.session_id, issuer, reason)
        return [
            OutboundEvent(
                OutboundEventType.CALL_ENDED,
                {"from": issuer, "reason": reason, "session_id": session.session_id},
                Target.users(session.pair),
            )
        ]

    def drop_user(self, user_id: str) -> List[OutboundEvent]:
        """End every session involving a user whose connection went away.

        Only the remaining party is notified.
        """
        with self._lock:
            pairs = [pair for pair, s in self._sessions.items() if s.involves(user_id)]

        events: List[OutboundEvent] = []
        for pair in pairs:
            session = self._finish(pair, CallState.ENDED)
            if session is None:
                continue
            logger.info("Call %s ended: %s disconnected", session.session_id, user_id)
            events.append(
                OutboundEvent(
                    OutboundEventType.CALL_ENDED,
                    {"from": user_id, "reason": "disconnected", "session_id": session.session_id},
                    Target.user(session.peer_of(user_id)),
                )
            )
        return events

    def get_session(self, user_a: str, user_b: str) -> Optional[CallSession]:
        """Return the in-progress session between two users, if any."""
        return self._sessions.get(frozenset((user_a, user_b)))

    def list_sessions(self, user_id: Optional[str] = None) -> List[CallSession]:
        """List in-progress sessions, optionally for one user."""
        sessions = list(self._sessions.values())
        if user_id:
            sessions = [s for s in sessions if s.involves(user_id)]
        return sessions

    def get_stats(self) -> dict:
        sessions = list(self._sessions.values())
        return {
            "active": len(sessions),
            "ringing": sum(1 for s in sessions if s.state == CallState.RINGING),
            "accepted": sum(1 for s in sessions if s.state == CallState.ACCEPTED),
            "completed": self._completed,
        }

    def reset(self) -> None:
        """Clear all sessions."""
        with self._lock:
            self._sessions.clear()
            self._completed = 0

    def _finish(self, pair: FrozenSet[str], state: CallState) -> Optional[CallSession]:
        """Move the pair's session to a terminal *state* and forget it."""
        with self._lock:
            session = self._sessions.get(pair)
            if session is None or session.state.is_terminal:
                return None
            session.transition(state)
            del self._sessions[pair]
            self._completed += 1
            return session

    @staticmethod
    def _call_error(user_id: str, message: str) -> OutboundEvent:
        return OutboundEvent(OutboundEventType.CALL_ERROR, {"message": message}, Target.user(user_id))
