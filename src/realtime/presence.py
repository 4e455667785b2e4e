"""Presence broadcasting driven by connection registry changes."""

import logging
from typing import Callable, List, Optional

from src.realtime.config import ChangeKind, OutboundEventType, RealtimeConfig
from src.realtime.events import OutboundEvent, Target
from src.realtime.registry import ConnectionRegistry, RegistryChange

logger = logging.getLogger(__name__)

DispatchFn = Callable[[OutboundEvent], int]


class PresenceBroadcaster:
    """Announces online/offline changes to every live connection.

    Each registry change produces one ``presence_changed`` roster
    broadcast plus a ``user_online`` / ``user_offline`` point event for
    clients that track a single conversation. A reconnect that replaces a
    live connection keeps the user online, so its point event is
    suppressed unless configured otherwise.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        dispatch: DispatchFn,
        config: Optional[RealtimeConfig] = None,
    ):
        self._registry = registry
        self._dispatch = dispatch
        self._config = config or RealtimeConfig()
        self._roster_broadcasts = 0
        self._point_events = 0
        registry.add_listener(self.on_registry_change)

    def on_registry_change(self, change: RegistryChange) -> List[OutboundEvent]:
        """Build and dispatch the presence events for *change*."""
        events = [self.roster_event()]

        if change.kind == ChangeKind.CONNECTED:
            events.append(self._point_event(OutboundEventType.USER_ONLINE, change.user_id))
        elif change.kind == ChangeKind.DISCONNECTED:
            events.append(self._point_event(OutboundEventType.USER_OFFLINE, change.user_id))
        elif not self._config.suppress_redundant_presence:
            events.append(self._point_event(OutboundEventType.USER_ONLINE, change.user_id))

        for event in events:
            self._dispatch(event)

        self._roster_broadcasts += 1
        self._point_events += len(events) - 1
        logger.debug(
            "Presence %s for user=%s (%d online)",
            change.kind.value,
            change.user_id,
            len(events[0].payload["online_user_ids"]),
        )
        return events

    def roster_event(self) -> OutboundEvent:
        """A broadcast of the current online roster."""
        return OutboundEvent(
            OutboundEventType.PRESENCE_CHANGED,
            {"online_user_ids": sorted(self._registry.all_online_user_ids())},
            Target.everyone(),
        )

    def get_stats(self) -> dict:
        return {
            "roster_broadcasts": self._roster_broadcasts,
            "point_events": self._point_events,
        }

    @staticmethod
    def _point_event(event_type: OutboundEventType, user_id: str) -> OutboundEvent:
        return OutboundEvent(event_type, {"user_id": user_id}, Target.everyone(exclude=[user_id]))
