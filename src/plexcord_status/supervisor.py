"""One-shot auto-reconnect after a tracker's first refresh."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from plexcord_status.tracker import ConnectionTracker

log = structlog.get_logger()


class AutoReconnectSupervisor:
    """Nudges trackers that come up disconnected.

    After a settle delay (pushed state right after a reload may still be
    racing the first refresh), a tracker that needs a reconnect and is
    neither busy nor already being retried by the backend gets exactly one
    reconnect command. Failures are logged and swallowed.

    Each pending evaluation is a task keyed by tracker; ``cancel()`` drops
    it, so teardown during the settle window never touches the tracker.
    """

    def __init__(self, settle_delay: float = 0.5, enabled: bool = True) -> None:
        self.settle_delay = settle_delay
        self.enabled = enabled
        self._tasks: dict[int, asyncio.Task] = {}

    def is_pending(self, tracker: ConnectionTracker) -> bool:
        task = self._tasks.get(id(tracker))
        return task is not None and not task.done()

    def schedule(self, tracker: ConnectionTracker) -> asyncio.Task | None:
        """Schedule one evaluation for ``tracker``.

        Returns:
            The pending task, or None if disabled or already scheduled
        """
        if not self.enabled:
            return None
        if self.is_pending(tracker):
            return None

        task = asyncio.create_task(self._evaluate_after_delay(tracker))
        self._tasks[id(tracker)] = task
        task.add_done_callback(lambda t, key=id(tracker): self._forget(key, t))
        return task

    def _forget(self, key: int, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def cancel(self, tracker: ConnectionTracker) -> None:
        task = self._tasks.pop(id(tracker), None)
        if task is not None and not task.done():
            task.cancel()
            log.debug("auto_reconnect_cancelled", service=tracker.service.value)

    def cancel_all(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        self._tasks.clear()

    async def join(self) -> None:
        """Wait for every pending evaluation to finish."""
        await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    @staticmethod
    def should_reconnect(tracker: ConnectionTracker) -> bool:
        """Trigger condition, evaluated against the tracker's current state."""
        return tracker.needs_reconnect() and not tracker.busy and not tracker.is_retrying

    async def _evaluate_after_delay(self, tracker: ConnectionTracker) -> None:
        await asyncio.sleep(self.settle_delay)
        await self.evaluate(tracker)

    async def evaluate(self, tracker: ConnectionTracker) -> bool:
        """Issue the reconnect if the tracker still needs it.

        Returns:
            True if a reconnect command was issued
        """
        service = tracker.service.value
        if not tracker.initialized:
            return False
        if not self.should_reconnect(tracker):
            log.debug(
                "auto_reconnect_skipped",
                service=service,
                connected=tracker.connected,
                busy=tracker.busy,
                retrying=tracker.is_retrying,
            )
            return False

        log.info("auto_reconnect_triggered", service=service)
        try:
            return await tracker.reconnect()
        except Exception as e:
            log.warning("auto_reconnect_failed", service=service, error=f"{type(e).__name__}: {e}")
            return True
