"""Explicit, cancellable timer handle."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class PendingTimer:
    """
    Owns at most one scheduled coroutine.

    :meth:`start` always cancels the currently armed callback first, so two
    timers from the same handle can never coexist.
    """

    def __init__(self, name: str):
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        self.cancel()
        logger.info("[TIMER] Scheduled", action=self.name, delay_seconds=delay)

        async def _fire() -> None:
            try:
                await asyncio.sleep(delay)
                logger.info("[TIMER] Executed", action=self.name)
                await callback()
            except asyncio.CancelledError:
                logger.info("[TIMER] Cancelled", action=self.name)
                raise
            except Exception:
                logger.exception("[TIMER] Callback failed", action=self.name)

        self._task = asyncio.create_task(_fire())

    def cancel(self) -> bool:
        """Disarm the timer. Returns True if a pending callback was cancelled."""
        task, self._task = self._task, None
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def wait(self) -> None:
        """Wait for the armed callback to run (or be cancelled)."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
