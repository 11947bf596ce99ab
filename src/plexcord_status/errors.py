"""Error codes, the known error catalog and the catalog lookup client.

Error codes travel over the backend boundary as opaque strings. The backend
owns the authoritative catalog (``get_error_info``); the records here mirror
it so that codes can be described offline (CLI) and classified locally.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog

from plexcord_status.models import ErrorInfo, Service

log = structlog.get_logger()

# Plex
PLEX_UNREACHABLE = "PLEX_UNREACHABLE"
PLEX_AUTH_FAILED = "PLEX_AUTH_FAILED"
PLEX_CONN_FAILED = "PLEX_CONN_FAILED"
TIMEOUT = "TIMEOUT"

# Discord
DISCORD_NOT_RUNNING = "DISCORD_NOT_RUNNING"
DISCORD_CONN_FAILED = "DISCORD_CONN_FAILED"
DISCORD_CLIENT_ID_INVALID = "DISCORD_CLIENT_ID_INVALID"

# Configuration
CONFIG_READ_FAILED = "CONFIG_READ_FAILED"
CONFIG_WRITE_FAILED = "CONFIG_WRITE_FAILED"

# Keychain
KEYCHAIN_UNAVAILABLE = "KEYCHAIN_UNAVAILABLE"
KEYCHAIN_STORE_FAILED = "KEYCHAIN_STORE_FAILED"
KEYCHAIN_READ_FAILED = "KEYCHAIN_READ_FAILED"
ENCRYPTION_FAILED = "ENCRYPTION_FAILED"
DECRYPTION_FAILED = "DECRYPTION_FAILED"

UNKNOWN_ERROR = "UNKNOWN_ERROR"

# Code applied when a disconnect event carries no code
DEFAULT_DISCONNECT_CODES: dict[Service, str] = {
    Service.PLEX: PLEX_UNREACHABLE,
    Service.DISCORD: DISCORD_NOT_RUNNING,
}


def _info(code: str, title: str, description: str, suggestion: str, retryable: bool) -> ErrorInfo:
    return ErrorInfo(code, title, description, suggestion, retryable)


ERROR_CATALOG: dict[str, ErrorInfo] = {
    PLEX_UNREACHABLE: _info(
        PLEX_UNREACHABLE,
        "Plex Server Unreachable",
        "Cannot reach Plex server. The server may be offline or there may be a network issue.",
        "Check if your Plex server is running and verify your network connection.",
        True,
    ),
    PLEX_AUTH_FAILED: _info(
        PLEX_AUTH_FAILED,
        "Plex Authentication Failed",
        "Your Plex token is invalid or has expired.",
        "Please re-authenticate with Plex to get a new token.",
        False,
    ),
    PLEX_CONN_FAILED: _info(
        PLEX_CONN_FAILED,
        "Plex Connection Failed",
        "Failed to connect to Plex server.",
        "Check your server URL and network connection, then try again.",
        True,
    ),
    TIMEOUT: _info(
        TIMEOUT,
        "Connection Timeout",
        "The connection to the server timed out.",
        "The server may be slow or your network may be congested. Please try again.",
        True,
    ),
    DISCORD_NOT_RUNNING: _info(
        DISCORD_NOT_RUNNING,
        "Discord Not Running",
        "Discord is not running on your computer.",
        "Start Discord to enable Rich Presence.",
        True,
    ),
    DISCORD_CONN_FAILED: _info(
        DISCORD_CONN_FAILED,
        "Discord Connection Failed",
        "Cannot connect to Discord. The connection may have been interrupted.",
        "Try restarting Discord and PlexCord.",
        True,
    ),
    DISCORD_CLIENT_ID_INVALID: _info(
        DISCORD_CLIENT_ID_INVALID,
        "Invalid Discord Client ID",
        "The Discord Application Client ID is invalid.",
        "Check your Client ID in Discord settings or reset to default.",
        False,
    ),
    CONFIG_READ_FAILED: _info(
        CONFIG_READ_FAILED,
        "Configuration Error",
        "Failed to read application settings.",
        "The settings file may be corrupted. Try resetting the application.",
        False,
    ),
    CONFIG_WRITE_FAILED: _info(
        CONFIG_WRITE_FAILED,
        "Settings Save Failed",
        "Failed to save application settings.",
        "Check that you have write permissions to the settings folder.",
        True,
    ),
    KEYCHAIN_UNAVAILABLE: _info(
        KEYCHAIN_UNAVAILABLE,
        "Secure Storage Unavailable",
        "The system's secure storage is not available.",
        "PlexCord will use encrypted file storage instead.",
        False,
    ),
    KEYCHAIN_STORE_FAILED: _info(
        KEYCHAIN_STORE_FAILED,
        "Failed to Store Credentials",
        "Could not save your credentials securely.",
        "Check your system's keychain settings and permissions.",
        True,
    ),
    KEYCHAIN_READ_FAILED: _info(
        KEYCHAIN_READ_FAILED,
        "Failed to Read Credentials",
        "Could not retrieve your saved credentials.",
        "You may need to re-enter your Plex token.",
        False,
    ),
    ENCRYPTION_FAILED: _info(
        ENCRYPTION_FAILED,
        "Encryption Failed",
        "Failed to encrypt your credentials.",
        "Check available disk space and try again.",
        True,
    ),
    DECRYPTION_FAILED: _info(
        DECRYPTION_FAILED,
        "Decryption Failed",
        "Failed to decrypt your saved credentials.",
        "You'll need to re-enter your Plex token.",
        False,
    ),
    UNKNOWN_ERROR: _info(
        UNKNOWN_ERROR,
        "Unexpected Error",
        "An unexpected error occurred.",
        "Please try again. If the problem persists, restart PlexCord.",
        True,
    ),
}


class BackendError(Exception):
    """A backend query or command failed with an error code."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


def lookup_error_info(code: str) -> ErrorInfo:
    """Return the catalog record for a code, or UNKNOWN_ERROR's record."""
    return ERROR_CATALOG.get(code, ERROR_CATALOG[UNKNOWN_ERROR])


def is_retryable(code: str) -> bool:
    """Whether an error code can be retried. Unknown codes are retryable."""
    info = ERROR_CATALOG.get(code)
    return info.retryable if info is not None else True


def is_auth_error(code: str) -> bool:
    """Whether the code means the user has to re-authenticate."""
    return code in (PLEX_AUTH_FAILED, KEYCHAIN_READ_FAILED, DECRYPTION_FAILED)


def is_connection_error(code: str) -> bool:
    """Whether the code is a connection-related failure."""
    return code in (
        PLEX_UNREACHABLE,
        PLEX_CONN_FAILED,
        TIMEOUT,
        DISCORD_NOT_RUNNING,
        DISCORD_CONN_FAILED,
    )


def fallback_error_info(source: Service, code: str) -> ErrorInfo:
    """Generic record used when the catalog lookup itself fails."""
    return ErrorInfo(
        code=code,
        title="Connection Error",
        description=f"Failed to connect to {source.display_name}",
        suggestion="Please check your connection and try again.",
        retryable=True,
    )


def error_code_of(exc: BaseException, default: str) -> str:
    """Extract an error code from a raised backend error."""
    code = getattr(exc, "code", None)
    return code if isinstance(code, str) and code else default


def parse_error_info(data: Mapping[str, Any], code: str) -> ErrorInfo:
    """Build ErrorInfo from the backend's JSON shape.

    Raises:
        ValueError: If the payload has no usable title
    """
    title = data.get("title")
    if not title:
        raise ValueError(f"Error info for {code!r} has no title")
    return ErrorInfo(
        code=data.get("code") or code,
        title=title,
        description=data.get("description", ""),
        suggestion=data.get("suggestion", ""),
        retryable=bool(data.get("retryable", True)),
    )


class ErrorCatalogClient:
    """Resolves error codes to ErrorInfo through the backend.

    Never raises: any lookup failure degrades to ``fallback_error_info``.
    """

    def __init__(self, fetch: Callable[[str], Awaitable[Mapping[str, Any]]]) -> None:
        self._fetch = fetch

    async def resolve(self, source: Service, code: str) -> ErrorInfo:
        try:
            data = await self._fetch(code)
            return parse_error_info(data, code)
        except Exception as e:
            log.warning(
                "error_info_lookup_failed",
                source=source.value,
                code=code,
                error=f"{type(e).__name__}: {e}",
            )
            return fallback_error_info(source, code)
