"""
WorkPoller - the worker's top-level loop.

Each cycle: reconcile the lease; when nothing is in flight ask the queue for
work, acquire the lease and hand the item to the dispatcher; then sleep for
an adaptive interval (short right after activity, long otherwise).

A second task consumes completion signals from the call lifecycle and
releases the lease, which is what lets the next cycle fetch again.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

import structlog
from prometheus_client import Counter

from .lease_store import LeaseStore
from .models import WorkItem
from .signals import CompletionChannel

logger = structlog.get_logger(__name__)

_POLL_CYCLES_TOTAL = Counter(
    "call_worker_poll_cycles_total",
    "Poll cycles by outcome",
    labelnames=("outcome",),
)


class WorkSource(Protocol):
    async def take_work(self, sim_cards: Sequence[str]) -> Optional[WorkItem]:
        ...


Dispatcher = Callable[[WorkItem], Awaitable[None]]
IdentityProvider = Callable[[], Awaitable[List[str]]]


@dataclass
class PollState:
    last_work_at: Optional[float] = None


class WorkPoller:
    """
    Adaptive poll loop with a cooperative stop.

    ``stop()`` interrupts the current sleep; an HTTP request already in flight
    is allowed to finish and the loop exits at the next iteration boundary.
    """

    def __init__(
        self,
        *,
        lease_store: LeaseStore,
        work_source: WorkSource,
        dispatcher: Dispatcher,
        completion: CompletionChannel,
        identities: IdentityProvider,
        fast_interval: float = 3.0,
        slow_interval: float = 30.0,
        fast_window: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self._lease = lease_store
        self._source = work_source
        self._dispatch = dispatcher
        self._completion = completion
        self._identities = identities
        self.fast_interval = fast_interval
        self.slow_interval = slow_interval
        self.fast_window = fast_window
        self._clock = clock
        self.state = PollState()
        self._stop = asyncio.Event()

    # ------------------------------------------------------------------
    # Interval selection
    # ------------------------------------------------------------------

    def next_interval(self) -> float:
        """Fast interval inside the window after the last accepted item, slow otherwise."""
        last = self.state.last_work_at
        if last is None:
            return self.slow_interval
        if self._clock() - last < self.fast_window:
            return self.fast_interval
        logger.debug("Fast poll window elapsed; reverting to default interval")
        self.state.last_work_at = None
        return self.slow_interval

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def poll_once(self) -> Optional[WorkItem]:
        """
        Run a single poll cycle. Returns the accepted work item, if any.

        Never raises for queue or dispatch failures; they are logged and the
        cycle ends with no work.
        """
        if await self._lease.is_held():
            logger.debug("Work is already in progress; skipping poll")
            _POLL_CYCLES_TOTAL.labels("lease_held").inc()
            return None

        try:
            sim_cards = await self._identities()
            item = await self._source.take_work(sim_cards)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Error fetching work", error=str(exc), error_type=type(exc).__name__)
            _POLL_CYCLES_TOTAL.labels("error").inc()
            return None

        if item is None:
            logger.debug("No work available")
            _POLL_CYCLES_TOTAL.labels("no_work").inc()
            return None

        if not await self._lease.try_acquire(item):
            _POLL_CYCLES_TOTAL.labels("lease_held").inc()
            return None

        self.state.last_work_at = self._clock()
        logger.info(
            "Received work; dispatching call",
            artifact_name=item.artifact_name,
            duration_seconds=item.duration_seconds,
        )
        try:
            await self._dispatch(item)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "Dispatch failed; releasing lease",
                artifact_name=item.artifact_name,
                error=str(exc),
            )
            await self._lease.release()
            _POLL_CYCLES_TOTAL.labels("dispatch_failed").inc()
            return None

        _POLL_CYCLES_TOTAL.labels("work").inc()
        return item

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _consume_completions(self) -> None:
        while True:
            await self._completion.wait()
            logger.info("Received work complete signal; resuming polling")
            try:
                await self._lease.release()
            except Exception:
                logger.exception("Failed to release lease on completion")

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        logger.info(
            "Work poller started",
            fast_interval=self.fast_interval,
            slow_interval=self.slow_interval,
        )
        consumer = asyncio.create_task(self._consume_completions())
        try:
            while not self._stop.is_set():
                await self.poll_once()
                if self._stop.is_set():
                    break
                delay = self.next_interval()
                logger.debug("Next poll scheduled", delay_seconds=delay)
                await self._sleep(delay)
        finally:
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
            logger.info("Work poller stopped")

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()
