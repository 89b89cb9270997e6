"""
LeaseStore - the persisted "one work item in flight" claim.

The lease lives in the flat key-value store under the keys the worker has
always used, so a lease written before a restart is honoured after it:

- ``isWorkInProgress`` (bool)
- ``workStartTime`` (epoch ms)
- ``lastFileName`` (artifact name of the current/last item)
- ``callDurationMs`` (end-call timer length)

Every operation is a single transaction against the store, so "poll observes
lease held" and "completion releases lease" can never interleave into a lost
update. A lease older than the staleness threshold is force-released by
whoever observes it first.
"""

from __future__ import annotations

import time
from typing import Callable

import structlog
from prometheus_client import Counter, Gauge

from .kv_store import KeyValueStore, KeyValueView
from .models import DEFAULT_DURATION_SECONDS, Lease, WorkItem

logger = structlog.get_logger(__name__)

KEY_IN_PROGRESS = "isWorkInProgress"
KEY_STARTED_AT = "workStartTime"
KEY_ARTIFACT_NAME = "lastFileName"
KEY_DURATION_MS = "callDurationMs"

DEFAULT_STALENESS_SECONDS = 180.0

_LEASE_HELD_GAUGE = Gauge(
    "call_worker_lease_held",
    "1 while a work item lease is in progress",
)
_LEASE_EVENTS_TOTAL = Counter(
    "call_worker_lease_events_total",
    "Lease transitions by kind",
    labelnames=("event",),
)


class LeaseStore:
    """Atomic lease operations over a :class:`KeyValueStore`."""

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        staleness_seconds: float = DEFAULT_STALENESS_SECONDS,
        default_duration_ms: int = DEFAULT_DURATION_SECONDS * 1000,
        clock: Callable[[], float] = time.time,
    ):
        self._kv = kv
        self._staleness_ms = int(staleness_seconds * 1000)
        self._default_duration_ms = int(default_duration_ms)
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _read(self, view: KeyValueView) -> Lease:
        started = view.get(KEY_STARTED_AT)
        duration = view.get(KEY_DURATION_MS)
        return Lease(
            in_progress=bool(view.get(KEY_IN_PROGRESS, False)),
            started_at_ms=int(started) if started is not None else None,
            artifact_name=view.get(KEY_ARTIFACT_NAME),
            duration_ms=int(duration) if duration is not None else self._default_duration_ms,
        )

    @staticmethod
    def _clear(view: KeyValueView) -> None:
        # lastFileName / callDurationMs stay: the post-call pipeline reads them.
        view.delete(KEY_IN_PROGRESS)
        view.delete(KEY_STARTED_AT)

    def _reconcile(self, view: KeyValueView, now_ms: int) -> bool:
        """Return whether the lease is held, force-releasing it when stale."""
        lease = self._read(view)
        if not lease.in_progress:
            return False
        age = lease.age_ms(now_ms)
        if age is None or age > self._staleness_ms:
            logger.warning(
                "Work in progress flag is stale; clearing it",
                age_ms=age,
                staleness_ms=self._staleness_ms,
                artifact_name=lease.artifact_name,
            )
            self._clear(view)
            _LEASE_EVENTS_TOTAL.labels("stale_release").inc()
            return False
        return True

    # ------------------------------------------------------------------
    # Synchronous operations (each one transaction)
    # ------------------------------------------------------------------

    def try_acquire_sync(self, item: WorkItem) -> bool:
        now_ms = self._now_ms()

        def _txn(view: KeyValueView) -> bool:
            if self._reconcile(view, now_ms):
                return False
            view.set(KEY_IN_PROGRESS, True)
            view.set(KEY_STARTED_AT, now_ms)
            view.set(KEY_ARTIFACT_NAME, item.artifact_name)
            view.set(KEY_DURATION_MS, item.duration_ms)
            return True

        acquired = self._kv.transaction_sync(_txn)
        if acquired:
            _LEASE_EVENTS_TOTAL.labels("acquire").inc()
            _LEASE_HELD_GAUGE.set(1)
            logger.info(
                "Lease acquired",
                artifact_name=item.artifact_name,
                duration_ms=item.duration_ms,
            )
        else:
            _LEASE_EVENTS_TOTAL.labels("acquire_rejected").inc()
            logger.info("Lease already held; work item not accepted", artifact_name=item.artifact_name)
        return acquired

    def release_sync(self) -> None:
        self._kv.transaction_sync(self._clear)
        _LEASE_EVENTS_TOTAL.labels("release").inc()
        _LEASE_HELD_GAUGE.set(0)
        logger.info("Lease released")

    def is_held_sync(self) -> bool:
        now_ms = self._now_ms()
        held = self._kv.transaction_sync(lambda view: self._reconcile(view, now_ms))
        _LEASE_HELD_GAUGE.set(1 if held else 0)
        return held

    def snapshot_sync(self) -> Lease:
        return self._kv.transaction_sync(self._read)

    # ------------------------------------------------------------------
    # Async facade
    # ------------------------------------------------------------------

    async def try_acquire(self, item: WorkItem) -> bool:
        return await self._kv.run_blocking(lambda: self.try_acquire_sync(item))

    async def release(self) -> None:
        await self._kv.run_blocking(self.release_sync)

    async def is_held(self) -> bool:
        return await self._kv.run_blocking(self.is_held_sync)

    async def snapshot(self) -> Lease:
        return await self._kv.run_blocking(self.snapshot_sync)
