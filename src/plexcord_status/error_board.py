"""Source-tagged error banners with dismiss support."""

from __future__ import annotations

from datetime import datetime

import structlog

from plexcord_status.errors import ErrorCatalogClient
from plexcord_status.models import ErrorEntry, ErrorInfo, Service

log = structlog.get_logger()


class ErrorBoard:
    """Holds at most one error entry per service.

    Dismissed entries stay on the board (``errors``) but are hidden from
    ``active_errors`` until removed or cleared.
    """

    def __init__(self, catalog: ErrorCatalogClient) -> None:
        self._catalog = catalog
        self._entries: list[ErrorEntry] = []
        # Bumped on every post/remove for a source; a lookup that sees it move is stale
        self._generation: dict[Service, int] = {}

    @property
    def errors(self) -> list[ErrorEntry]:
        """All entries, dismissed included, in insertion order."""
        return list(self._entries)

    @property
    def active_errors(self) -> list[ErrorEntry]:
        return [e for e in self._entries if not e.dismissed]

    @property
    def has_active_errors(self) -> bool:
        return any(not e.dismissed for e in self._entries)

    def error_for(self, source: Service, *, include_dismissed: bool = False) -> ErrorEntry | None:
        for entry in self._entries:
            if entry.source is source and (include_dismissed or not entry.dismissed):
                return entry
        return None

    async def add_error(self, source: Service, code: str) -> ErrorEntry | None:
        """Resolve ``code`` through the catalog and post it for ``source``.

        Never raises: catalog failures fall back to a generic record.

        Returns:
            The posted entry, or None if the source was removed, cleared or
            posted again while the lookup was pending
        """
        self.remove_error(source)
        generation = self._generation.get(source, 0)
        error_info = await self._catalog.resolve(source, code)
        if self._generation.get(source, 0) != generation:
            log.debug("error_post_superseded", source=source.value, code=code)
            return None
        return self.post(source, error_info)

    def post(self, source: Service, error_info: ErrorInfo) -> ErrorEntry:
        """Replace any entry for ``source`` with a fresh, undismissed one."""
        self.remove_error(source)
        entry = ErrorEntry(
            source=source,
            error_info=error_info,
            dismissed=False,
            timestamp=datetime.now().astimezone(),
        )
        self._entries.append(entry)
        log.info("error_posted", source=source.value, code=error_info.code)
        return entry

    def _bump(self, source: Service) -> None:
        self._generation[source] = self._generation.get(source, 0) + 1

    def remove_error(self, source: Service) -> None:
        self._bump(source)
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.source is not source]
        if len(self._entries) != before:
            log.debug("error_removed", source=source.value)

    def dismiss_error(self, source: Service) -> None:
        """Hide the entry for ``source`` without removing it."""
        entry = self.error_for(source, include_dismissed=True)
        if entry is not None:
            entry.dismissed = True

    def clear_all(self) -> None:
        for source in Service:
            self._bump(source)
        self._entries = []
