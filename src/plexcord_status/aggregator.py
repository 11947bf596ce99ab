"""Derived views over the Plex and Discord trackers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from plexcord_status.formatting import format_retry_countdown
from plexcord_status.models import ErrorInfo, Health, Service
from plexcord_status.tracker import DiscordTracker, PlexTracker


@dataclass(frozen=True)
class TaggedError:
    """An active error together with the service that reported it."""

    source: Service
    error_info: ErrorInfo


def classify_health(
    plex_connected: bool,
    discord_connected: bool,
    plex_error: bool,
    discord_error: bool,
) -> Health:
    """Health classification as a pure function of connection and error flags."""
    if plex_connected and discord_connected:
        return Health.HEALTHY
    if plex_error or discord_error:
        return Health.ERROR
    if plex_connected != discord_connected:
        return Health.PARTIAL
    return Health.UNKNOWN


class StatusAggregator:
    """Read-only composition of both trackers.

    Nothing is cached; every property re-derives from current tracker state.
    """

    def __init__(self, plex: PlexTracker, discord: DiscordTracker) -> None:
        self.plex = plex
        self.discord = discord

    @property
    def all_connected(self) -> bool:
        return self.plex.connected and self.discord.connected

    @property
    def any_connected(self) -> bool:
        return self.plex.connected or self.discord.connected

    @property
    def has_errors(self) -> bool:
        return self.plex.has_error or self.discord.has_error

    @property
    def is_loading(self) -> bool:
        return self.plex.busy or self.discord.busy

    @property
    def is_retrying(self) -> bool:
        return self.plex.is_retrying or self.discord.is_retrying

    @property
    def health(self) -> Health:
        return classify_health(
            self.plex.connected,
            self.discord.connected,
            self.plex.has_error,
            self.discord.has_error,
        )

    @property
    def errors(self) -> list[TaggedError]:
        """Active errors tagged by source, Plex first then Discord."""
        tagged = []
        for tracker in (self.plex, self.discord):
            if tracker.active_error is not None:
                tagged.append(TaggedError(tracker.service, tracker.active_error))
        return tagged

    def snapshot(self) -> dict[str, Any]:
        """Serializable view of the combined status."""

        def service_view(tracker: PlexTracker | DiscordTracker) -> dict[str, Any]:
            error = tracker.active_error
            return {
                "connected": tracker.connected,
                "status": tracker.status_label,
                "loading": tracker.busy,
                "retrying": tracker.is_retrying,
                "retry": format_retry_countdown(tracker.state.retry_state),
                "last_connected": tracker.last_connected_relative(),
                "error": error.to_dict() if error is not None else None,
            }

        return {
            "health": self.health.value,
            "all_connected": self.all_connected,
            "any_connected": self.any_connected,
            "has_errors": self.has_errors,
            "is_loading": self.is_loading,
            "plex": service_view(self.plex),
            "discord": service_view(self.discord),
            "errors": [
                {"source": e.source.value, **e.error_info.to_dict()} for e in self.errors
            ],
        }
