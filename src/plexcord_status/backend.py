"""Backend boundary: query/command protocol, push-event hub, payload parsing.

The backend is whatever actually holds the Plex and Discord connections.
This module only describes how it is consumed: async queries returning the
backend's JSON-shaped dicts, async commands that may raise, and push events
delivered through an EventHub.
"""

from __future__ import annotations

import asyncio
import inspect
import re
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta
from typing import Any, Protocol

import structlog

from plexcord_status.models import ConnectionHistory, PlexStatus, RetryState, ServerIdentity

log = structlog.get_logger()

# Push event names
PLEX_CONNECTION_ERROR = "PlexConnectionError"
PLEX_CONNECTION_LOST = "PlexConnectionLost"
PLEX_CONNECTION_RESTORED = "PlexConnectionRestored"
PLEX_RETRY_STATE = "PlexRetryState"
DISCORD_CONNECTED = "DiscordConnected"
DISCORD_DISCONNECTED = "DiscordDisconnected"
DISCORD_RETRY_STATE = "DiscordRetryState"

_FRACTION = re.compile(r"\.(\d+)")

EventHandler = Callable[[Any], "Awaitable[None] | None"]


class Subscription:
    """Handle for one registered event handler.

    ``release()`` is idempotent; releasing twice is a no-op.
    """

    def __init__(self, hub: EventHub, event: str, handler: EventHandler) -> None:
        self.event = event
        self.handler = handler
        self._hub = hub
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        if not self._active:
            return
        self._active = False
        self._hub._remove(self)


class EventHub:
    """Dispatches backend push events to subscribed handlers.

    Handlers run on the event loop in registration order. A handler that
    returns an awaitable is scheduled as a task; pending tasks are tracked
    so callers can ``drain()`` them.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._pending: set[asyncio.Task] = set()

    def on(self, event: str, handler: EventHandler) -> Subscription:
        """Register a handler and return its subscription handle."""
        sub = Subscription(self, event, handler)
        self._subscriptions.setdefault(event, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.event, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.event, None)

    def listener_count(self, event: str | None = None) -> int:
        """Number of active handlers for one event, or for all events."""
        if event is not None:
            return len(self._subscriptions.get(event, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    def emit(self, event: str, payload: Any = None) -> None:
        """Deliver an event to every handler. Fire-and-forget."""
        for sub in list(self._subscriptions.get(event, [])):
            try:
                result = sub.handler(payload)
            except Exception:
                log.exception("event_handler_failed", event_name=event)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)

    def _schedule(self, event: str, awaitable: Awaitable[None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.error("event_handler_no_loop", event_name=event)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)
        task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("event_handler_failed", error=f"{type(exc).__name__}: {exc}")

    async def drain(self) -> None:
        """Wait until all scheduled async handlers have finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class Backend(Protocol):
    """Query/command surface the orchestrator consumes.

    Queries return the backend's JSON shapes as mappings. Commands may raise
    (preferably ``BackendError`` carrying an error code).
    """

    events: EventHub

    async def get_plex_connection_status(self) -> Mapping[str, Any]: ...

    async def is_discord_connected(self) -> bool: ...

    async def get_connection_history(self) -> Mapping[str, Any]: ...

    async def get_plex_retry_state(self) -> Mapping[str, Any] | None: ...

    async def get_discord_retry_state(self) -> Mapping[str, Any] | None: ...

    async def get_error_info(self, code: str) -> Mapping[str, Any]: ...

    async def retry_plex_connection(self) -> None: ...

    async def retry_discord_connection(self) -> None: ...

    async def connect_discord(self, client_id: str) -> None: ...


# ─────────────────────────────────────────────────────────────────────────────
# Payload parsing
# ─────────────────────────────────────────────────────────────────────────────


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp. Empty values and Go's zero time give None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).replace("Z", "+00:00")
        # Go emits nanoseconds; datetime stops at microseconds
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6], text)
        parsed = datetime.fromisoformat(text)
    if parsed.year <= 1:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def parse_duration(value: Any) -> timedelta:
    """Parse a Go duration (integer nanoseconds) into a timedelta."""
    if isinstance(value, timedelta):
        return value
    if not value:
        return timedelta(0)
    return timedelta(microseconds=int(value) / 1000)


def parse_retry_state(data: Mapping[str, Any] | None) -> RetryState | None:
    if data is None:
        return None
    if isinstance(data, RetryState):
        return data
    return RetryState(
        attempt_number=max(0, int(data.get("attemptNumber", 0))),
        is_retrying=bool(data.get("isRetrying", False)),
        next_retry_at=parse_timestamp(data.get("nextRetryAt")),
        next_retry_in=parse_duration(data.get("nextRetryIn")),
        last_error=data.get("lastError") or None,
        last_error_code=data.get("lastErrorCode") or None,
        max_interval_reached=bool(data.get("maxIntervalReached", False)),
    )


def parse_plex_status(data: Mapping[str, Any]) -> PlexStatus:
    return PlexStatus(
        connected=bool(data.get("connected", False)),
        polling=bool(data.get("polling", False)),
        in_error_state=bool(data.get("inErrorState", False)),
        server=ServerIdentity(
            url=data.get("serverUrl", "") or "",
            user_id=data.get("userId", "") or "",
            user_name=data.get("userName", "") or "",
        ),
    )


def parse_connection_history(data: Mapping[str, Any]) -> ConnectionHistory:
    return ConnectionHistory(
        plex_last_connected=parse_timestamp(data.get("plexLastConnected")),
        discord_last_connected=parse_timestamp(data.get("discordLastConnected")),
    )


def plex_error_code(payload: Any) -> str | None:
    """Error code from a PlexConnectionError/PlexConnectionLost payload."""
    if not isinstance(payload, Mapping):
        return None
    return payload.get("errorCode") or payload.get("code") or None


def discord_error_code(payload: Any) -> str | None:
    """Error code from a DiscordDisconnected payload.

    The code is either top-level or nested in ``error``.
    """
    if not isinstance(payload, Mapping):
        return None
    code = payload.get("code")
    if code:
        return code
    error = payload.get("error")
    if isinstance(error, Mapping):
        return error.get("code") or None
    return None
