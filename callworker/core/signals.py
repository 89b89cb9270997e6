"""Cross-task completion signal between the call lifecycle and the poll loop."""

from __future__ import annotations

import asyncio

import structlog

logger = structlog.get_logger(__name__)


class CompletionChannel:
    """
    Single-consumer channel of payload-less "work complete" events.

    Producers call :meth:`signal` from any task on the loop; the poll loop's
    completion consumer awaits :meth:`wait`. Events are queued, never
    coalesced, so every completed call releases the lease exactly once.
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[None]" = asyncio.Queue()
        self._sent = 0

    def signal(self) -> None:
        self._sent += 1
        self._queue.put_nowait(None)
        logger.debug("Completion signalled", sent_total=self._sent)

    async def wait(self) -> None:
        await self._queue.get()
        self._queue.task_done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def sent_total(self) -> int:
        return self._sent
