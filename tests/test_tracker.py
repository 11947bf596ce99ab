"""Tests for per-service connection trackers."""

import asyncio
from datetime import datetime, timedelta

import pytest
from conftest import FakeBackend, make_retry_state

from plexcord_status import backend as events
from plexcord_status.backend import EventHub
from plexcord_status.bridge import EventBridge
from plexcord_status.error_board import ErrorBoard
from plexcord_status.errors import BackendError, ErrorCatalogClient
from plexcord_status.models import PlexExtras, RetryState, Service
from plexcord_status.tracker import DiscordTracker, PlexTracker


def make_plex(backend: FakeBackend, **kwargs) -> PlexTracker:
    catalog = ErrorCatalogClient(backend.get_error_info)
    return PlexTracker(
        backend,
        catalog,
        board=ErrorBoard(catalog),
        bridge=EventBridge(backend.events),
        **kwargs,
    )


def make_discord(backend: FakeBackend, **kwargs) -> DiscordTracker:
    catalog = ErrorCatalogClient(backend.get_error_info)
    return DiscordTracker(
        backend,
        catalog,
        board=ErrorBoard(catalog),
        bridge=EventBridge(backend.events),
        **kwargs,
    )


def assert_consistent(tracker) -> None:
    """Connected and an active error must never coexist."""
    assert not (tracker.state.connected and tracker.state.active_error is not None)


class TestPushEvents:
    """Push handlers applied through the event hub."""

    @pytest.mark.asyncio
    async def test_discord_disconnect_then_connect(self, backend):
        """DiscordDisconnected sets the error; DiscordConnected clears it."""
        tracker = make_discord(backend)
        await tracker.initialize()

        backend.events.emit(events.DISCORD_DISCONNECTED, {"code": "DISCORD_NOT_RUNNING"})
        await backend.events.drain()

        assert tracker.state.connected is False
        assert tracker.state.active_error.code == "DISCORD_NOT_RUNNING"
        assert tracker.state.active_error.title == "Discord Not Running"

        before = datetime.now().astimezone()
        backend.events.emit(events.DISCORD_CONNECTED, {"connected": True})
        after = datetime.now().astimezone()

        assert tracker.state.connected is True
        assert tracker.state.active_error is None
        assert before <= tracker.state.last_connected_at <= after

    @pytest.mark.asyncio
    async def test_discord_nested_error_code(self, backend):
        """The code may be nested in the payload's error object."""
        tracker = make_discord(backend)
        await tracker.initialize()

        backend.events.emit(
            events.DISCORD_DISCONNECTED,
            {"connected": False, "error": {"code": "DISCORD_CLIENT_ID_INVALID", "message": "x"}},
        )
        await backend.events.drain()

        assert tracker.state.active_error.code == "DISCORD_CLIENT_ID_INVALID"

    @pytest.mark.asyncio
    async def test_disconnect_without_code_uses_service_default(self, backend):
        plex = make_plex(backend)
        discord = make_discord(backend)
        await plex.initialize()
        await discord.initialize()

        backend.events.emit(events.PLEX_CONNECTION_LOST, None)
        backend.events.emit(events.DISCORD_DISCONNECTED, {})
        await backend.events.drain()

        assert plex.state.active_error.code == "PLEX_UNREACHABLE"
        assert discord.state.active_error.code == "DISCORD_NOT_RUNNING"

    @pytest.mark.asyncio
    async def test_plex_error_event_reads_error_code_field(self, backend):
        tracker = make_plex(backend)
        await tracker.initialize()

        backend.events.emit(
            events.PLEX_CONNECTION_ERROR,
            {"error": "401 Unauthorized", "errorCode": "PLEX_AUTH_FAILED"},
        )
        await backend.events.drain()

        assert tracker.state.active_error.code == "PLEX_AUTH_FAILED"
        assert tracker.state.active_error.retryable is False
        assert tracker.extras.in_error_state is True

    @pytest.mark.asyncio
    async def test_plex_restored_clears_error_state(self, backend):
        tracker = make_plex(backend)
        await tracker.initialize()

        backend.events.emit(events.PLEX_CONNECTION_LOST, {"code": "TIMEOUT"})
        await backend.events.drain()
        backend.events.emit(events.PLEX_CONNECTION_RESTORED)

        assert tracker.state.connected is True
        assert tracker.state.active_error is None
        assert tracker.extras.in_error_state is False
        assert tracker.board.errors == []

    @pytest.mark.asyncio
    async def test_on_connected_is_idempotent(self, backend):
        tracker = make_discord(backend)

        tracker.on_connected()
        first = tracker.state.last_connected_at
        tracker.on_connected()

        assert tracker.state.connected is True
        assert tracker.state.active_error is None
        assert tracker.state.last_connected_at >= first

    @pytest.mark.asyncio
    async def test_second_disconnect_replaces_error(self, backend):
        """A new error for the service discards the previous one."""
        tracker = make_plex(backend)

        await tracker.on_disconnected("PLEX_UNREACHABLE")
        await tracker.on_disconnected("TIMEOUT")

        assert tracker.state.active_error.code == "TIMEOUT"
        assert [e.error_info.code for e in tracker.board.errors] == ["TIMEOUT"]

    @pytest.mark.asyncio
    async def test_restored_during_error_lookup_wins(self, backend):
        """A connect event that lands while the catalog lookup is suspended
        must not be followed by the stale error."""
        tracker = make_discord(backend)
        await tracker.initialize()

        gate = backend.hold("get_error_info")
        backend.events.emit(events.DISCORD_DISCONNECTED, {"code": "DISCORD_CONN_FAILED"})
        await asyncio.sleep(0)
        assert tracker.state.connected is False

        backend.events.emit(events.DISCORD_CONNECTED)
        gate.set()
        await backend.events.drain()

        assert tracker.state.connected is True
        assert tracker.state.active_error is None
        assert tracker.board.errors == []

    @pytest.mark.asyncio
    async def test_event_order_preserved_across_lookup(self, backend):
        """Lost then restored, emitted back to back, ends connected."""
        tracker = make_plex(backend)
        await tracker.initialize()

        backend.events.emit(events.PLEX_CONNECTION_LOST, {"code": "PLEX_UNREACHABLE"})
        backend.events.emit(events.PLEX_CONNECTION_RESTORED)
        await backend.events.drain()

        assert tracker.state.connected is True
        assert_consistent(tracker)

    @pytest.mark.asyncio
    async def test_disconnect_applies_while_busy(self, backend):
        """Busy gates commands, never event application."""
        tracker = make_discord(backend)
        await tracker.initialize()
        tracker.on_connected()

        gate = backend.hold("retry_discord_connection")
        retry_task = asyncio.create_task(tracker.retry())
        await asyncio.sleep(0)
        assert tracker.state.busy is True

        backend.events.emit(events.DISCORD_DISCONNECTED, {"code": "DISCORD_CONN_FAILED"})
        await backend.events.drain()

        assert tracker.state.connected is False
        assert tracker.state.active_error.code == "DISCORD_CONN_FAILED"

        gate.set()
        assert await retry_task is True
        assert tracker.state.busy is False

    @pytest.mark.asyncio
    async def test_retry_state_event_replaces_snapshot(self, backend):
        tracker = make_plex(backend)
        await tracker.initialize()

        backend.events.emit(
            events.PLEX_RETRY_STATE,
            make_retry_state(attempt=2, is_retrying=True, next_retry_in_ns=30_000_000_000),
        )

        assert tracker.state.retry_state.attempt_number == 2
        assert tracker.state.retry_state.next_retry_in == timedelta(seconds=30)
        assert tracker.is_retrying is True

    @pytest.mark.asyncio
    async def test_retry_state_none_is_ignored(self, backend):
        tracker = make_plex(backend)
        tracker.on_retry_state(RetryState(attempt_number=1, is_retrying=True))

        tracker.on_retry_state(None)

        assert tracker.state.retry_state.attempt_number == 1

    @pytest.mark.asyncio
    async def test_invariant_over_mixed_sequence(self, backend):
        """No interleaving of push and pull leaves connected with an error."""
        tracker = make_discord(backend)
        await tracker.initialize()

        steps = [
            lambda: backend.events.emit(events.DISCORD_DISCONNECTED, {"code": "DISCORD_NOT_RUNNING"}),
            lambda: backend.events.emit(events.DISCORD_CONNECTED),
            lambda: backend.events.emit(events.DISCORD_DISCONNECTED, {}),
            lambda: backend.events.emit(events.DISCORD_DISCONNECTED, {"code": "TIMEOUT"}),
            lambda: backend.events.emit(events.DISCORD_CONNECTED),
        ]
        for step in steps:
            step()
            assert_consistent(tracker)
            backend.discord_connected = not backend.discord_connected
            await tracker.refresh()
            assert_consistent(tracker)
            await backend.events.drain()
            assert_consistent(tracker)


class TestRefresh:
    """Pull refresh from the backend."""

    @pytest.mark.asyncio
    async def test_refresh_overwrites_plex_fields(self, backend):
        backend.plex_status = {
            "connected": True,
            "polling": True,
            "inErrorState": False,
            "serverUrl": "http://192.168.1.10:32400",
            "userId": "42",
            "userName": "alice",
        }
        backend.history["plexLastConnected"] = "2026-10-18T09:30:00.123456789Z"
        backend.plex_retry = make_retry_state(attempt=0)
        tracker = make_plex(backend)

        assert await tracker.refresh() is True

        assert tracker.state.connected is True
        assert tracker.polling is True
        assert tracker.extras.server.url == "http://192.168.1.10:32400"
        assert tracker.extras.server.user_name == "alice"
        assert tracker.state.last_connected_at == datetime.fromisoformat(
            "2026-10-18T09:30:00.123456+00:00"
        )
        assert tracker.state.retry_state.is_retrying is False

    @pytest.mark.asyncio
    async def test_refresh_failure_leaves_state_unchanged(self, backend):
        """Nothing is written unless every backend call succeeds."""
        tracker = make_plex(backend)
        tracker.on_connected()
        tracker.extras.polling = True
        backend.plex_status["connected"] = False
        backend.failures["get_plex_retry_state"] = BackendError("TIMEOUT", "timed out")

        assert await tracker.refresh() is False

        assert tracker.state.connected is True
        assert tracker.polling is True

    @pytest.mark.asyncio
    async def test_connected_snapshot_clears_error(self, backend):
        tracker = make_discord(backend)
        await tracker.on_disconnected("DISCORD_NOT_RUNNING")
        backend.discord_connected = True

        await tracker.refresh()

        assert tracker.state.connected is True
        assert tracker.state.active_error is None
        assert tracker.board.errors == []

    @pytest.mark.asyncio
    async def test_disconnected_snapshot_keeps_error(self, backend):
        tracker = make_discord(backend)
        await tracker.on_disconnected("DISCORD_NOT_RUNNING")

        await tracker.refresh()

        assert tracker.state.active_error.code == "DISCORD_NOT_RUNNING"

    @pytest.mark.asyncio
    async def test_stale_refresh_reply_is_discarded(self, backend):
        tracker = make_discord(backend)
        gate = backend.hold("is_discord_connected")

        stale = asyncio.create_task(tracker.refresh())
        await asyncio.sleep(0)

        backend.discord_connected = True
        assert await tracker.refresh() is True
        assert tracker.state.connected is True

        gate.set()
        assert await stale is False
        assert tracker.state.connected is True

    @pytest.mark.asyncio
    async def test_stale_refresh_applies_when_fencing_disabled(self, backend):
        tracker = make_discord(backend, fence_stale_refresh=False)
        gate = backend.hold("is_discord_connected")

        stale = asyncio.create_task(tracker.refresh())
        await asyncio.sleep(0)

        backend.discord_connected = True
        await tracker.refresh()

        gate.set()
        assert await stale is True
        assert tracker.state.connected is False

    @pytest.mark.asyncio
    async def test_connected_refresh_supersedes_pending_lookup(self, backend):
        tracker = make_discord(backend)
        gate = backend.hold("get_error_info")

        lookup = asyncio.create_task(tracker.on_disconnected("DISCORD_NOT_RUNNING"))
        await asyncio.sleep(0)
        backend.discord_connected = True
        await tracker.refresh()
        gate.set()
        await lookup

        assert tracker.state.connected is True
        assert tracker.state.active_error is None


class TestCommands:
    """Retry and connect commands."""

    @pytest.mark.asyncio
    async def test_retry_calls_backend_and_clears_busy(self, backend):
        tracker = make_plex(backend)

        assert await tracker.retry() is True

        assert backend.count("retry_plex_connection") == 1
        assert tracker.state.busy is False
        assert tracker.state.connected is False

    @pytest.mark.asyncio
    async def test_retry_failure_clears_busy_and_raises(self, backend):
        tracker = make_plex(backend)
        backend.failures["retry_plex_connection"] = BackendError("PLEX_UNREACHABLE")

        with pytest.raises(BackendError):
            await tracker.retry()

        assert tracker.state.busy is False

    @pytest.mark.asyncio
    async def test_second_command_while_busy_is_skipped(self, backend):
        tracker = make_discord(backend)
        gate = backend.hold("retry_discord_connection")

        first = asyncio.create_task(tracker.retry())
        await asyncio.sleep(0)

        assert await tracker.connect("") is False
        assert backend.count("connect_discord") == 0

        gate.set()
        assert await first is True

    @pytest.mark.asyncio
    async def test_connect_failure_records_error_and_reraises(self, backend):
        tracker = make_discord(backend)
        backend.failures["connect_discord"] = BackendError(
            "DISCORD_NOT_RUNNING", "discord is not running"
        )

        with pytest.raises(BackendError):
            await tracker.connect("1234")

        assert backend.calls[-1] == ("connect_discord", "1234")
        assert tracker.state.busy is False
        assert tracker.state.active_error.code == "DISCORD_NOT_RUNNING"
        assert tracker.state.active_error.title == "Connection Error"
        assert tracker.state.active_error.description == "Failed to connect to Discord"

    @pytest.mark.asyncio
    async def test_connect_failure_without_code_uses_conn_failed(self, backend):
        tracker = make_discord(backend)
        backend.failures["connect_discord"] = OSError("pipe closed")

        with pytest.raises(OSError):
            await tracker.connect()

        assert tracker.state.active_error.code == "DISCORD_CONN_FAILED"


class TestLifecycle:
    """initialize / teardown."""

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, backend):
        tracker = make_plex(backend)

        await tracker.initialize()
        await tracker.initialize()

        assert backend.count("get_plex_connection_status") == 1
        assert backend.events.listener_count(events.PLEX_CONNECTION_RESTORED) == 1

    @pytest.mark.asyncio
    async def test_concurrent_initialize_attaches_once(self, backend):
        tracker = make_discord(backend)

        await asyncio.gather(tracker.initialize(), tracker.initialize())

        assert backend.events.listener_count() == 3

    @pytest.mark.asyncio
    async def test_initialize_survives_refresh_failure(self, backend):
        tracker = make_discord(backend)
        backend.failures["is_discord_connected"] = ConnectionError("backend gone")

        await tracker.initialize()

        assert tracker.initialized is True
        assert tracker.state.connected is False

    @pytest.mark.asyncio
    async def test_teardown_detaches_and_allows_reinit(self, backend):
        tracker = make_discord(backend)
        await tracker.initialize()

        tracker.teardown()
        tracker.teardown()

        assert tracker.initialized is False
        assert backend.events.listener_count() == 0

        backend.events.emit(events.DISCORD_CONNECTED)
        assert tracker.state.connected is False

        await tracker.initialize()
        assert backend.events.listener_count() == 3

    @pytest.mark.asyncio
    async def test_lookup_pending_at_teardown_is_dropped(self, backend):
        """A torn-down tracker never receives a late error."""
        tracker = make_plex(backend)
        await tracker.initialize()

        gate = backend.hold("get_error_info")
        backend.events.emit(events.PLEX_CONNECTION_LOST, {"code": "PLEX_AUTH_FAILED"})
        await asyncio.sleep(0)

        tracker.teardown()
        gate.set()
        await backend.events.drain()

        assert tracker.state.active_error is None
        assert tracker.board.errors == []


class TestDerivedViews:
    """Status labels and relative time."""

    def test_discord_status_labels(self):
        tracker = make_discord(FakeBackend())
        assert tracker.status_label == "Not Connected"

        tracker.state.retry_state = RetryState(is_retrying=True)
        assert tracker.status_label == "Retrying..."

        tracker.state.busy = True
        assert tracker.status_label == "Connecting..."

        tracker.state.busy = False
        tracker.state.retry_state = None
        tracker.on_connected()
        assert tracker.status_label == "Connected"

    @pytest.mark.asyncio
    async def test_plex_connected_requires_polling(self, backend):
        tracker = make_plex(backend)
        tracker.on_connected()
        assert tracker.status_label == "Not Connected"

        tracker.extras.polling = True
        assert tracker.status_label == "Connected"

    @pytest.mark.asyncio
    async def test_plex_disconnected_label_with_error(self, backend):
        tracker = make_plex(backend)
        await tracker.on_disconnected("PLEX_UNREACHABLE")
        assert tracker.status_label == "Disconnected"

    def test_last_connected_relative(self):
        tracker = make_discord(FakeBackend())
        assert tracker.last_connected_relative() == "Never"

        now = datetime.now().astimezone()
        tracker.state.last_connected_at = now - timedelta(minutes=5)
        assert tracker.last_connected_relative(now=now) == "5 minutes ago"

    def test_plex_starts_with_plex_extras(self):
        tracker = make_plex(FakeBackend())
        assert isinstance(tracker.state.extras, PlexExtras)
        assert tracker.service is Service.PLEX

    def test_plex_backend_error_state_is_an_error(self):
        tracker = make_plex(FakeBackend())
        assert tracker.has_error is False

        tracker.extras.in_error_state = True
        assert tracker.has_error is True
        assert tracker.status_label == "Disconnected"

        tracker.on_connected()
        assert tracker.has_error is False

    def test_plex_needs_reconnect_when_not_polling(self):
        tracker = make_plex(FakeBackend())
        tracker.on_connected()
        assert tracker.needs_reconnect() is True

        tracker.extras.polling = True
        assert tracker.needs_reconnect() is False


def test_bridge_hub_is_shared_with_backend():
    backend = FakeBackend()
    tracker = make_plex(backend)
    assert isinstance(tracker.bridge.hub, EventHub)
    assert tracker.bridge.hub is backend.events
