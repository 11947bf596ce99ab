"""Per-service connection tracking.

One tracker owns one service's ConnectionState. State changes from two
directions: push events (applied through handlers the EventBridge attaches)
and pull operations (refresh, retry, connect). Both run on the same event
loop, so a handler runs to completion before the next one starts; the only
interleaving happens across awaits on the backend.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from plexcord_status import backend as events
from plexcord_status.backend import (
    Backend,
    discord_error_code,
    parse_connection_history,
    parse_plex_status,
    parse_retry_state,
    plex_error_code,
)
from plexcord_status.error_board import ErrorBoard
from plexcord_status.errors import (
    DEFAULT_DISCONNECT_CODES,
    DISCORD_CONN_FAILED,
    ErrorCatalogClient,
    error_code_of,
    fallback_error_info,
)
from plexcord_status.formatting import format_relative_time
from plexcord_status.models import (
    ConnectionState,
    ErrorInfo,
    PlexExtras,
    RetryState,
    Service,
    ServiceExtras,
)

if TYPE_CHECKING:
    from plexcord_status.bridge import EventBridge
    from plexcord_status.supervisor import AutoReconnectSupervisor

log = structlog.get_logger()


def _now() -> datetime:
    return datetime.now().astimezone()


@dataclass(frozen=True)
class _Snapshot:
    """Everything one refresh pulled, applied in a single step."""

    connected: bool
    last_connected_at: datetime | None
    retry_state: RetryState | None
    extras: ServiceExtras | None = None


class ConnectionTracker:
    """Tracks one service's connection state.

    Subclasses supply the service-specific backend calls, event wiring and
    extra fields; everything about ordering and invariants lives here.
    """

    service: Service

    def __init__(
        self,
        backend: Backend,
        catalog: ErrorCatalogClient,
        *,
        board: ErrorBoard | None = None,
        bridge: EventBridge | None = None,
        supervisor: AutoReconnectSupervisor | None = None,
        fence_stale_refresh: bool = True,
    ) -> None:
        self.backend = backend
        self.catalog = catalog
        self.board = board
        self.bridge = bridge
        self.supervisor = supervisor
        self.fence_stale_refresh = fence_stale_refresh
        self.state = ConnectionState(extras=self._initial_extras())
        self.initialized = False
        # Monotonic counters: latest refresh issued, latest connect/disconnect event
        self._refresh_seq = 0
        self._event_seq = 0

    # ─────────────────────────────────────────────────────────────────────
    # Service hooks
    # ─────────────────────────────────────────────────────────────────────

    def _initial_extras(self) -> ServiceExtras:
        return ServiceExtras()

    async def _fetch_snapshot(self) -> _Snapshot:
        raise NotImplementedError

    async def _send_retry(self) -> None:
        raise NotImplementedError

    def event_handlers(self) -> dict[str, Callable[[Any], Awaitable[None] | None]]:
        """Push event name -> handler taking the raw payload."""
        raise NotImplementedError

    def needs_reconnect(self) -> bool:
        """Whether the service looks down enough to warrant a reconnect nudge."""
        return not self.state.connected

    async def reconnect(self) -> bool:
        """Issue the service's reconnect command."""
        return await self.retry()

    def _on_link_change(self, connected: bool) -> None:
        """Update extras when a push event flips the connection."""

    def _is_fully_connected(self) -> bool:
        return self.state.connected

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Attach push listeners, pull once, then schedule auto-reconnect.

        No-op if already initialized. Never raises for refresh failures.
        """
        if self.initialized:
            return
        # Set before the first await so a concurrent call can't attach twice
        self.initialized = True

        if self.bridge is not None:
            self.bridge.attach(self)

        await self.refresh()

        # Torn down while refreshing
        if not self.initialized:
            return

        if self.supervisor is not None:
            self.supervisor.schedule(self)

        log.info(
            "tracker_initialized",
            service=self.service.value,
            connected=self.state.connected,
        )

    def teardown(self) -> None:
        """Detach listeners and cancel pending auto-reconnect. Idempotent."""
        if self.supervisor is not None:
            self.supervisor.cancel(self)
        if self.bridge is not None:
            self.bridge.detach(self)
        # Pending disconnect lookups must not land on a torn-down tracker
        self._event_seq += 1
        if self.initialized:
            log.info("tracker_torn_down", service=self.service.value)
        self.initialized = False

    # ─────────────────────────────────────────────────────────────────────
    # Pull operations
    # ─────────────────────────────────────────────────────────────────────

    async def refresh(self) -> bool:
        """Pull the authoritative snapshot and overwrite local state.

        All backend calls complete before anything is written, so a failure
        leaves state untouched. A reply from a refresh that a newer refresh
        has superseded is discarded.

        Returns:
            True if a snapshot was applied
        """
        self._refresh_seq += 1
        seq = self._refresh_seq

        try:
            snapshot = await self._fetch_snapshot()
        except Exception as e:
            log.warning(
                "refresh_failed",
                service=self.service.value,
                error=f"{type(e).__name__}: {e}",
            )
            return False

        if self.fence_stale_refresh and seq != self._refresh_seq:
            log.debug(
                "refresh_discarded_stale",
                service=self.service.value,
                seq=seq,
                latest=self._refresh_seq,
            )
            return False

        self._apply_snapshot(snapshot)
        return True

    def _apply_snapshot(self, snapshot: _Snapshot) -> None:
        state = self.state
        if snapshot.connected:
            # Pending error lookups must not land on a connected service
            self._event_seq += 1
            state.mark_connected(None)
            self._remove_board_error()
        else:
            state.connected = False
        state.last_connected_at = snapshot.last_connected_at
        state.retry_state = snapshot.retry_state
        if snapshot.extras is not None:
            state.extras = snapshot.extras
        log.debug("refresh_applied", service=self.service.value, connected=state.connected)

    async def retry(self) -> bool:
        """Ask the backend for one immediate reconnection attempt.

        Does not change ``connected``; that arrives via push or refresh.

        Returns:
            False if another command is already in flight, True otherwise

        Raises:
            Exception: Whatever the backend command raised
        """
        return await self._run_command("retry", self._send_retry)

    async def _run_command(self, name: str, command: Callable[[], Awaitable[None]]) -> bool:
        if self.state.busy:
            log.info("command_skipped_busy", service=self.service.value, command=name)
            return False

        self.state.busy = True
        try:
            await command()
        except Exception as e:
            log.warning(
                "command_failed",
                service=self.service.value,
                command=name,
                error=f"{type(e).__name__}: {e}",
            )
            raise
        finally:
            self.state.busy = False

        log.info("command_sent", service=self.service.value, command=name)
        return True

    # ─────────────────────────────────────────────────────────────────────
    # Push handlers
    # ─────────────────────────────────────────────────────────────────────

    def on_connected(self) -> None:
        """Connection established or restored. Idempotent."""
        self._event_seq += 1
        self.state.mark_connected(_now())
        self._on_link_change(True)
        self._remove_board_error()
        log.info("service_connected", service=self.service.value)

    async def on_disconnected(self, code: str | None = None) -> None:
        """Connection lost; resolve and record the error for ``code``."""
        await self._begin_disconnect(code)

    def _begin_disconnect(self, code: str | None) -> Awaitable[None]:
        """Apply the disconnect synchronously, return the pending error lookup.

        Event handlers return the lookup for the hub to schedule, so the
        ``connected`` flip happens in event order even though the catalog
        lookup suspends.
        """
        self._event_seq += 1
        seq = self._event_seq
        self.state.connected = False
        self._on_link_change(False)
        code = code or DEFAULT_DISCONNECT_CODES[self.service]
        log.info("service_disconnected", service=self.service.value, code=code)
        return self._resolve_disconnect_error(seq, code)

    async def _resolve_disconnect_error(self, seq: int, code: str) -> None:
        error_info = await self.catalog.resolve(self.service, code)
        if seq != self._event_seq or self.state.connected:
            log.debug("error_lookup_superseded", service=self.service.value, code=code)
            return
        self._set_error(error_info)

    def on_retry_state(self, retry_state: RetryState | None) -> None:
        """Replace the retry snapshot wholesale."""
        if retry_state is None:
            return
        self.state.retry_state = retry_state

    def _handle_retry_state(self, payload: Any) -> None:
        try:
            retry_state = parse_retry_state(payload)
        except (TypeError, ValueError) as e:
            log.warning("retry_state_invalid", service=self.service.value, error=str(e))
            return
        self.on_retry_state(retry_state)

    # ─────────────────────────────────────────────────────────────────────
    # Error state
    # ─────────────────────────────────────────────────────────────────────

    def _set_error(self, error_info: ErrorInfo) -> None:
        if self.state.connected:
            log.debug("error_dropped_connected", service=self.service.value, code=error_info.code)
            return
        self.state.active_error = error_info
        if self.board is not None:
            self.board.post(self.service, error_info)

    def clear_error(self) -> None:
        self.state.active_error = None
        self._remove_board_error()

    def _remove_board_error(self) -> None:
        if self.board is not None:
            self.board.remove_error(self.service)

    # ─────────────────────────────────────────────────────────────────────
    # Derived views
    # ─────────────────────────────────────────────────────────────────────

    @property
    def connected(self) -> bool:
        return self.state.connected

    @property
    def busy(self) -> bool:
        return self.state.busy

    @property
    def active_error(self) -> ErrorInfo | None:
        return self.state.active_error

    @property
    def is_retrying(self) -> bool:
        retry_state = self.state.retry_state
        return retry_state is not None and retry_state.is_retrying

    @property
    def has_error(self) -> bool:
        return self.state.active_error is not None

    @property
    def status_label(self) -> str:
        if self._is_fully_connected():
            return "Connected"
        if self.state.busy:
            return "Connecting..."
        if self.is_retrying:
            return "Retrying..."
        if self.has_error:
            return "Disconnected"
        return "Not Connected"

    def last_connected_relative(self, *, now: datetime | None = None) -> str:
        return format_relative_time(self.state.last_connected_at, now=now)


class PlexTracker(ConnectionTracker):
    """Plex media server connection, including session polling state."""

    service = Service.PLEX

    def _initial_extras(self) -> PlexExtras:
        return PlexExtras()

    @property
    def extras(self) -> PlexExtras:
        return self.state.extras  # type: ignore[return-value]

    @property
    def polling(self) -> bool:
        return self.extras.polling

    async def _fetch_snapshot(self) -> _Snapshot:
        status = parse_plex_status(await self.backend.get_plex_connection_status())
        history = parse_connection_history(await self.backend.get_connection_history())
        retry_state = parse_retry_state(await self.backend.get_plex_retry_state())
        return _Snapshot(
            connected=status.connected,
            last_connected_at=history.plex_last_connected,
            retry_state=retry_state,
            extras=PlexExtras(
                polling=status.polling,
                in_error_state=status.in_error_state,
                server=status.server,
            ),
        )

    async def _send_retry(self) -> None:
        await self.backend.retry_plex_connection()

    def event_handlers(self) -> dict[str, Callable[[Any], Awaitable[None] | None]]:
        return {
            events.PLEX_CONNECTION_ERROR: self._handle_connection_lost,
            events.PLEX_CONNECTION_LOST: self._handle_connection_lost,
            events.PLEX_CONNECTION_RESTORED: self._handle_connection_restored,
            events.PLEX_RETRY_STATE: self._handle_retry_state,
        }

    def _handle_connection_lost(self, payload: Any) -> Awaitable[None]:
        return self._begin_disconnect(plex_error_code(payload))

    def _handle_connection_restored(self, payload: Any) -> None:
        self.on_connected()

    def needs_reconnect(self) -> bool:
        return not self.state.connected or not self.extras.polling

    def _on_link_change(self, connected: bool) -> None:
        self.extras.in_error_state = not connected

    def _is_fully_connected(self) -> bool:
        return self.state.connected and self.extras.polling

    @property
    def has_error(self) -> bool:
        """Active error, or the backend reporting the Plex link in error."""
        return self.state.active_error is not None or self.extras.in_error_state


class DiscordTracker(ConnectionTracker):
    """Discord Rich Presence connection."""

    service = Service.DISCORD

    async def _fetch_snapshot(self) -> _Snapshot:
        connected = bool(await self.backend.is_discord_connected())
        history = parse_connection_history(await self.backend.get_connection_history())
        retry_state = parse_retry_state(await self.backend.get_discord_retry_state())
        return _Snapshot(
            connected=connected,
            last_connected_at=history.discord_last_connected,
            retry_state=retry_state,
        )

    async def _send_retry(self) -> None:
        await self.backend.retry_discord_connection()

    async def connect(self, client_id: str = "") -> bool:
        """Connect to Discord, using the backend's configured client ID if empty.

        On failure the error is recorded for display and re-raised.

        Returns:
            False if another command is already in flight, True otherwise
        """

        async def send() -> None:
            try:
                await self.backend.connect_discord(client_id)
            except Exception as e:
                code = error_code_of(e, DISCORD_CONN_FAILED)
                self._set_error(fallback_error_info(self.service, code))
                raise

        return await self._run_command("connect", send)

    async def reconnect(self) -> bool:
        return await self.connect("")

    def event_handlers(self) -> dict[str, Callable[[Any], Awaitable[None] | None]]:
        return {
            events.DISCORD_CONNECTED: self._handle_connected,
            events.DISCORD_DISCONNECTED: self._handle_disconnected,
            events.DISCORD_RETRY_STATE: self._handle_retry_state,
        }

    def _handle_connected(self, payload: Any) -> None:
        self.on_connected()

    def _handle_disconnected(self, payload: Any) -> Awaitable[None]:
        return self._begin_disconnect(discord_error_code(payload))
