"""Shared test fixtures for plexcord-status."""

import asyncio
from typing import Any

import pytest

from plexcord_status.backend import EventHub
from plexcord_status.config import Config, ReconnectConfig
from plexcord_status.errors import ERROR_CATALOG


def make_retry_state(
    attempt: int = 0,
    is_retrying: bool = False,
    next_retry_in_ns: int = 0,
    next_retry_at: str = "0001-01-01T00:00:00Z",
    last_error_code: str = "",
    max_interval_reached: bool = False,
) -> dict[str, Any]:
    """Retry state in the backend's JSON shape."""
    return {
        "attemptNumber": attempt,
        "nextRetryIn": next_retry_in_ns,
        "nextRetryAt": next_retry_at,
        "lastErrorCode": last_error_code,
        "isRetrying": is_retrying,
        "maxIntervalReached": max_interval_reached,
    }


class FakeBackend:
    """In-memory backend with scriptable replies, failures and holds.

    Query replies are captured when the call is made, so a held call
    returns the state as it was at request time.
    """

    def __init__(self) -> None:
        self.events = EventHub()
        self.plex_status: dict[str, Any] = {
            "connected": False,
            "polling": False,
            "inErrorState": False,
            "serverUrl": "",
            "userId": "",
            "userName": "",
        }
        self.discord_connected = False
        self.history: dict[str, Any] = {"plexLastConnected": None, "discordLastConnected": None}
        self.plex_retry: dict[str, Any] | None = make_retry_state()
        self.discord_retry: dict[str, Any] | None = make_retry_state()
        self.catalog = {code: info.to_dict() for code, info in ERROR_CATALOG.items()}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[Any, ...]] = []
        self._holds: dict[str, list[asyncio.Event]] = {}

    def hold(self, name: str) -> asyncio.Event:
        """Block the next call to ``name`` until the returned event is set."""
        gate = asyncio.Event()
        self._holds.setdefault(name, []).append(gate)
        return gate

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        holds = self._holds.get(name)
        if holds:
            await holds.pop(0).wait()
        if name in self.failures:
            raise self.failures[name]

    async def get_plex_connection_status(self) -> dict[str, Any]:
        reply = dict(self.plex_status)
        await self._call("get_plex_connection_status")
        return reply

    async def is_discord_connected(self) -> bool:
        reply = self.discord_connected
        await self._call("is_discord_connected")
        return reply

    async def get_connection_history(self) -> dict[str, Any]:
        reply = dict(self.history)
        await self._call("get_connection_history")
        return reply

    async def get_plex_retry_state(self) -> dict[str, Any] | None:
        reply = self.plex_retry
        await self._call("get_plex_retry_state")
        return reply

    async def get_discord_retry_state(self) -> dict[str, Any] | None:
        reply = self.discord_retry
        await self._call("get_discord_retry_state")
        return reply

    async def get_error_info(self, code: str) -> dict[str, Any]:
        await self._call("get_error_info", code)
        return self.catalog.get(code, self.catalog["UNKNOWN_ERROR"])

    async def retry_plex_connection(self) -> None:
        await self._call("retry_plex_connection")

    async def retry_discord_connection(self) -> None:
        await self._call("retry_discord_connection")

    async def connect_discord(self, client_id: str) -> None:
        await self._call("connect_discord", client_id)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fast_config() -> Config:
    """Config with no settle delay so auto-reconnect runs on the next loop turn."""
    return Config(reconnect=ReconnectConfig(enabled=True, settle_delay=0.0))
