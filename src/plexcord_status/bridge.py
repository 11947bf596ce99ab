"""Wires tracker push handlers to the backend's event hub."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from plexcord_status.backend import EventHub, Subscription

if TYPE_CHECKING:
    from plexcord_status.tracker import ConnectionTracker

log = structlog.get_logger()


class EventBridge:
    """Owns the subscription handles of every attached tracker.

    Attaching an already attached tracker is a no-op, so listeners are
    never registered twice; detaching releases exactly the handles that
    attach created.
    """

    def __init__(self, hub: EventHub) -> None:
        self.hub = hub
        self._subscriptions: dict[int, list[Subscription]] = {}

    def is_attached(self, tracker: ConnectionTracker) -> bool:
        return id(tracker) in self._subscriptions

    def attach(self, tracker: ConnectionTracker) -> list[Subscription]:
        """Subscribe the tracker's handlers and return the handles."""
        key = id(tracker)
        if key in self._subscriptions:
            return list(self._subscriptions[key])

        subs = [self.hub.on(event, handler) for event, handler in tracker.event_handlers().items()]
        self._subscriptions[key] = subs
        log.debug(
            "listeners_attached",
            service=tracker.service.value,
            events=[s.event for s in subs],
        )
        return list(subs)

    def detach(self, tracker: ConnectionTracker) -> None:
        """Release the tracker's handles. No-op if not attached."""
        subs = self._subscriptions.pop(id(tracker), None)
        if subs is None:
            return
        for sub in subs:
            sub.release()
        log.debug("listeners_detached", service=tracker.service.value, count=len(subs))

    def detach_all(self) -> None:
        for subs in self._subscriptions.values():
            for sub in subs:
                sub.release()
        self._subscriptions.clear()
