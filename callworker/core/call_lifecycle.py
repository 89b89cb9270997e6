"""
CallLifecycleController - reacts to telephony state and drives the call.

Transitions (telephony signal -> action):

- idle -> ringing: phase update only
- idle/ringing -> connected: schedule mute after a short delay and (re)arm
  the end-call timer for the lease's duration
- connected -> idle: disarm timers, run the post-call pipeline, then signal
  completion exactly once so the poll loop releases the lease
- a call that connects while no lease is in progress (manual dialing, an
  answered incoming call) gets no timers, no upload and no completion
- anything else: phase update only (an incoming call that rings and stops
  never touches the lease)
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol, Sequence, Set

import structlog
from prometheus_client import Counter

from callworker.ui.agent import UITreeAgent

from .lease_store import LeaseStore
from .models import DEFAULT_DURATION_SECONDS, CallPhase
from .signals import CompletionChannel
from .timers import PendingTimer

logger = structlog.get_logger(__name__)

_CALL_TRANSITIONS_TOTAL = Counter(
    "call_worker_call_transitions_total",
    "Telephony phase transitions observed",
    labelnames=("from_phase", "to_phase"),
)

DEFAULT_MUTE_LABELS = ("Mute", "Unmute")
DEFAULT_END_CALL_LABELS = ("End call", "Hang up", "End")


class PostCallPipeline(Protocol):
    async def run(self, artifact_name: Optional[str]) -> Any:
        ...


class CallLifecycleController:
    def __init__(
        self,
        *,
        ui_agent: UITreeAgent,
        lease_store: LeaseStore,
        post_call: PostCallPipeline,
        completion: CompletionChannel,
        mute_labels: Sequence[str] = DEFAULT_MUTE_LABELS,
        end_call_labels: Sequence[str] = DEFAULT_END_CALL_LABELS,
        mute_delay: float = 3.0,
        default_duration_ms: int = DEFAULT_DURATION_SECONDS * 1000,
    ):
        self._ui = ui_agent
        self._lease = lease_store
        self._post_call = post_call
        self._completion = completion
        self.mute_labels = list(mute_labels)
        self.end_call_labels = list(end_call_labels)
        self.mute_delay = mute_delay
        self.default_duration_ms = default_duration_ms

        self.phase = CallPhase.IDLE
        self._was_connected = False
        self._owns_call = False
        self._mute_timer = PendingTimer("mute_call")
        self._end_call_timer = PendingTimer("end_call")
        self._post_call_tasks: Set[asyncio.Task] = set()

    @property
    def end_call_timer(self) -> PendingTimer:
        return self._end_call_timer

    @property
    def mute_timer(self) -> PendingTimer:
        return self._mute_timer

    async def on_state(self, signal: Any) -> None:
        """Feed one telephony state observation into the state machine."""
        try:
            new_phase = CallPhase.from_signal(signal)
        except ValueError:
            logger.warning("Ignoring unknown telephony state", state=signal)
            return

        previous = self.phase
        if new_phase is previous:
            return
        self.phase = new_phase
        _CALL_TRANSITIONS_TOTAL.labels(previous.value, new_phase.value).inc()
        logger.info("Phone state changed", from_phase=previous.value, to_phase=new_phase.value)

        if new_phase is CallPhase.CONNECTED:
            await self._on_connected()
        elif new_phase is CallPhase.IDLE:
            self._on_idle()

    async def _on_connected(self) -> None:
        self._was_connected = True
        lease = await self._lease.snapshot()
        self._owns_call = lease.in_progress
        if not self._owns_call:
            logger.info("Call connected with no work item in progress; leaving it alone")
            return
        duration_ms = lease.duration_ms or self.default_duration_ms

        async def _mute() -> None:
            await self._ui.activate(self.mute_labels, action="mute")

        async def _end_call() -> None:
            await self._ui.activate(self.end_call_labels, action="end_call")

        self._mute_timer.start(self.mute_delay, _mute)
        self._end_call_timer.start(duration_ms / 1000.0, _end_call)

    def _on_idle(self) -> None:
        if self._end_call_timer.cancel():
            logger.info("End call timer cancelled")
        self._mute_timer.cancel()

        if not self._was_connected:
            return
        self._was_connected = False
        if not self._owns_call:
            logger.info("Unleased call ended; skipping upload")
            return
        self._owns_call = False
        logger.info("Call ended; starting upload process")
        task = asyncio.create_task(self._finish_call())
        self._post_call_tasks.add(task)
        task.add_done_callback(self._post_call_tasks.discard)

    async def _finish_call(self) -> None:
        try:
            lease = await self._lease.snapshot()
            await self._post_call.run(lease.artifact_name)
        except Exception:
            logger.exception("Post-call pipeline failed")
        finally:
            self._completion.signal()
            logger.info("Work is complete; polling will resume")

    async def drain(self) -> None:
        """Wait for every running post-call pipeline to finish."""
        while True:
            pending = [task for task in self._post_call_tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        self._mute_timer.cancel()
        self._end_call_timer.cancel()
        await self.drain()
