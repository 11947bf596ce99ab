"""Connection status orchestration for Plex and Discord Rich Presence."""

from plexcord_status.models import ErrorInfo, Health, RetryState, Service
from plexcord_status.orchestrator import ConnectionOrchestrator

__all__ = ["ConnectionOrchestrator", "ErrorInfo", "Health", "RetryState", "Service"]
