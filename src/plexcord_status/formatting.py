"""Formatting utilities for connection status display."""

from __future__ import annotations

from datetime import datetime, timedelta

from plexcord_status.models import RetryState


def _as_aware(value: datetime | str) -> datetime:
    """Coerce a datetime or ISO 8601 string to an aware datetime.

    Naive values are taken to be local time.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.astimezone()
    return value


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'} ago"


def format_relative_time(
    timestamp: datetime | str | None,
    *,
    now: datetime | None = None,
) -> str:
    """Format a point in time relative to now.

    Args:
        timestamp: When something happened, or None if it never did
        now: Reference time (defaults to the current local time)

    Returns:
        - "Never" for None
        - "Just now" under a minute (including timestamps slightly in the future)
        - "N minutes ago" / "N hours ago" / "N days ago" under a week
        - Calendar date ("2026-10-11") for anything older
    """
    if not timestamp:
        return "Never"

    when = _as_aware(timestamp)
    current = _as_aware(now) if now is not None else datetime.now().astimezone()

    diff_sec = int((current - when).total_seconds())
    diff_min = diff_sec // 60
    diff_hour = diff_min // 60
    diff_day = diff_hour // 24

    if diff_sec < 60:
        return "Just now"
    if diff_min < 60:
        return _plural(diff_min, "minute")
    if diff_hour < 24:
        return _plural(diff_hour, "hour")
    if diff_day < 7:
        return _plural(diff_day, "day")

    return when.astimezone().strftime("%Y-%m-%d")


def format_duration(duration: timedelta | float | None) -> str:
    """Format a duration compactly: "45s", "2m 30s", "2h", "1h 5m".

    Accepts a timedelta or a number of seconds. Missing or negative
    durations format as "0s".
    """
    if duration is None:
        return "0s"
    seconds = duration.total_seconds() if isinstance(duration, timedelta) else duration
    if seconds <= 0:
        return "0s"

    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"
    if minutes > 0:
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    return f"{secs}s"


def format_retry_countdown(
    retry_state: RetryState | None,
    *,
    now: datetime | None = None,
) -> str | None:
    """Describe when the backend will retry next, or None if it isn't retrying."""
    if retry_state is None or not retry_state.is_retrying:
        return None

    if retry_state.next_retry_at is not None:
        current = _as_aware(now) if now is not None else datetime.now().astimezone()
        remaining = retry_state.next_retry_at - current
    else:
        remaining = retry_state.next_retry_in

    if remaining.total_seconds() < 1:
        return f"Retrying now (attempt {retry_state.attempt_number + 1})"
    return f"Retrying in {format_duration(remaining)} (attempt {retry_state.attempt_number + 1})"
