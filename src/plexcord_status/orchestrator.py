"""Composition root tying trackers, events, errors and reconnect together."""

from __future__ import annotations

import asyncio
from types import TracebackType

import structlog

from plexcord_status.aggregator import StatusAggregator
from plexcord_status.backend import Backend
from plexcord_status.bridge import EventBridge
from plexcord_status.config import Config
from plexcord_status.error_board import ErrorBoard
from plexcord_status.errors import ErrorCatalogClient
from plexcord_status.supervisor import AutoReconnectSupervisor
from plexcord_status.tracker import DiscordTracker, PlexTracker

log = structlog.get_logger()


class ConnectionOrchestrator:
    """Owns the connection status machinery for one host UI.

    Construct once at the host's composition root and drive
    ``initialize``/``teardown`` from its mount/unmount, or use it as an
    async context manager.
    """

    def __init__(self, backend: Backend, config: Config | None = None) -> None:
        self.config = config or Config()
        self.backend = backend

        self.catalog = ErrorCatalogClient(backend.get_error_info)
        self.board = ErrorBoard(self.catalog)
        self.bridge = EventBridge(backend.events)
        self.supervisor = AutoReconnectSupervisor(
            settle_delay=self.config.reconnect.settle_delay,
            enabled=self.config.reconnect.enabled,
        )

        fence = self.config.refresh.fence_stale_refresh
        self.plex = PlexTracker(
            backend,
            self.catalog,
            board=self.board,
            bridge=self.bridge,
            supervisor=self.supervisor,
            fence_stale_refresh=fence,
        )
        self.discord = DiscordTracker(
            backend,
            self.catalog,
            board=self.board,
            bridge=self.bridge,
            supervisor=self.supervisor,
            fence_stale_refresh=fence,
        )
        self.status = StatusAggregator(self.plex, self.discord)

    @property
    def initialized(self) -> bool:
        return self.plex.initialized and self.discord.initialized

    async def initialize(self) -> None:
        """Initialize both trackers concurrently. Safe to call repeatedly."""
        await asyncio.gather(self.plex.initialize(), self.discord.initialize())
        log.info("orchestrator_initialized", health=self.status.health.value)

    def teardown(self) -> None:
        """Detach all listeners and cancel pending reconnects. Idempotent."""
        self.plex.teardown()
        self.discord.teardown()
        self.supervisor.cancel_all()
        self.bridge.detach_all()

    async def refresh(self) -> None:
        await asyncio.gather(self.plex.refresh(), self.discord.refresh())

    async def retry_plex(self) -> bool:
        return await self.plex.retry()

    async def retry_discord(self) -> bool:
        return await self.discord.retry()

    async def connect_discord(self, client_id: str = "") -> bool:
        return await self.discord.connect(client_id)

    async def __aenter__(self) -> ConnectionOrchestrator:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.teardown()
