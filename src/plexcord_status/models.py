"""Connection state data model shared by trackers, board and aggregator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum


class Service(str, Enum):
    """External services whose connection is tracked."""

    PLEX = "plex"
    DISCORD = "discord"

    @property
    def display_name(self) -> str:
        return "Plex" if self is Service.PLEX else "Discord"


class Health(str, Enum):
    """Aggregate health over all tracked services."""

    HEALTHY = "healthy"
    PARTIAL = "partial"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorInfo:
    """User-facing description of an error code."""

    code: str
    title: str
    description: str
    suggestion: str
    retryable: bool

    def to_dict(self) -> dict[str, str | bool]:
        return {
            "code": self.code,
            "title": self.title,
            "description": self.description,
            "suggestion": self.suggestion,
            "retryable": self.retryable,
        }


@dataclass
class ErrorEntry:
    """One error banner entry on the board."""

    source: Service
    error_info: ErrorInfo
    dismissed: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now().astimezone())


@dataclass(frozen=True)
class RetryState:
    """Backend retry bookkeeping snapshot (read-only here).

    The backend owns the backoff schedule; this is only the latest
    snapshot it pushed or that was pulled on refresh.
    """

    attempt_number: int = 0
    is_retrying: bool = False
    next_retry_at: datetime | None = None
    next_retry_in: timedelta = timedelta(0)
    last_error: str | None = None
    last_error_code: str | None = None
    max_interval_reached: bool = False


@dataclass(frozen=True)
class ServerIdentity:
    """Which Plex server and user the connection belongs to."""

    url: str = ""
    user_id: str = ""
    user_name: str = ""


@dataclass
class ServiceExtras:
    """Service-specific state fields. Empty for services without extras."""


@dataclass
class PlexExtras(ServiceExtras):
    """Plex-only fields: session polling and server identity."""

    polling: bool = False
    in_error_state: bool = False
    server: ServerIdentity | None = None


@dataclass
class ConnectionState:
    """Live connection state of one service.

    Invariant: ``connected`` implies ``active_error is None``.
    """

    connected: bool = False
    extras: ServiceExtras = field(default_factory=ServiceExtras)
    last_connected_at: datetime | None = None
    retry_state: RetryState | None = None
    active_error: ErrorInfo | None = None
    busy: bool = False

    def mark_connected(self, at: datetime | None) -> None:
        """Set connected and clear the error in one step."""
        self.connected = True
        self.active_error = None
        if at is not None:
            self.last_connected_at = at


@dataclass(frozen=True)
class PlexStatus:
    """Authoritative Plex status snapshot from the backend."""

    connected: bool
    polling: bool
    in_error_state: bool
    server: ServerIdentity


@dataclass(frozen=True)
class ConnectionHistory:
    """Last successful connection times as recorded by the backend."""

    plex_last_connected: datetime | None = None
    discord_last_connected: datetime | None = None
