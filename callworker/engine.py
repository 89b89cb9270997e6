"""
Worker engine - builds the components from configuration and runs them.

Tasks started by :meth:`CallWorker.run`:
- the poll loop (and its completion consumer)
- the telephony monitor feeding the call lifecycle controller
"""

from __future__ import annotations

import asyncio
import signal
from typing import List, Optional

import structlog
from prometheus_client import start_http_server

from callworker.artifacts import ArtifactHandoff, ArtifactLocator, Uploader
from callworker.config.settings import WorkerConfig, load_config
from callworker.core.call_lifecycle import CallLifecycleController
from callworker.core.identities import identity_slots, resolve_identities
from callworker.core.kv_store import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore
from callworker.core.lease_store import LeaseStore
from callworker.core.poller import WorkPoller
from callworker.core.signals import CompletionChannel
from callworker.host.adb import AdbCallDispatcher, AdbDevice, AdbTelephonyMonitor, AdbUITreeHost
from callworker.logging_config import configure_logging
from callworker.remote.queue_client import WorkQueueClient
from callworker.ui.agent import UITreeAgent

logger = structlog.get_logger(__name__)


class CallWorker:
    def __init__(
        self,
        config: WorkerConfig,
        *,
        kv: Optional[KeyValueStore] = None,
        device: Optional[AdbDevice] = None,
    ):
        self.config = config
        self.kv = kv or SQLiteKeyValueStore(config.lease.db_path)
        self.device = device or AdbDevice(
            config.device.serial,
            adb_path=config.device.adb_path,
            timeout=config.device.command_timeout_sec,
        )

        self.lease_store = LeaseStore(
            self.kv,
            staleness_seconds=config.lease.staleness_sec,
            default_duration_ms=config.call.default_duration_sec * 1000,
        )
        self.completion = CompletionChannel()

        self.queue_client = WorkQueueClient(
            config.queue.take_work_url,
            connect_timeout=config.queue.connect_timeout_sec,
            request_timeout=config.queue.request_timeout_sec,
        )
        uploader = Uploader(
            config.queue.upload_url,
            max_attempts=config.upload.max_attempts,
            retry_delay=config.upload.retry_delay_sec,
            content_type=config.upload.content_type,
            connect_timeout=config.queue.connect_timeout_sec,
            request_timeout=config.queue.request_timeout_sec,
        )
        self.handoff = ArtifactHandoff(
            ArtifactLocator(settle_delay=config.upload.settle_delay_sec),
            uploader,
            config.upload.candidate_dirs(),
        )

        self.controller = CallLifecycleController(
            ui_agent=UITreeAgent(AdbUITreeHost(self.device)),
            lease_store=self.lease_store,
            post_call=self.handoff,
            completion=self.completion,
            mute_labels=config.call.mute_labels,
            end_call_labels=config.call.end_call_labels,
            mute_delay=config.call.mute_delay_sec,
            default_duration_ms=config.call.default_duration_sec * 1000,
        )
        self.monitor = AdbTelephonyMonitor(self.device, interval=config.device.state_poll_interval_sec)

        self.poller = WorkPoller(
            lease_store=self.lease_store,
            work_source=self.queue_client,
            dispatcher=AdbCallDispatcher(self.device, self._identity_slots),
            completion=self.completion,
            identities=self._identities,
            fast_interval=config.polling.fast_interval_sec,
            slow_interval=config.polling.slow_interval_sec,
            fast_window=config.polling.fast_window_sec,
        )
        self._stop = asyncio.Event()

    async def _identities(self) -> List[str]:
        return await self.kv.run_blocking(lambda: resolve_identities(self.kv, self.config.identities))

    async def _identity_slots(self) -> List[str]:
        return await self.kv.run_blocking(lambda: identity_slots(self.kv, self.config.identities))

    def request_stop(self) -> None:
        logger.info("Stop requested")
        self._stop.set()
        self.poller.stop()

    async def run(self) -> None:
        if self.config.metrics.port:
            start_http_server(self.config.metrics.port)
            logger.info("Prometheus exporter listening", port=self.config.metrics.port)

        logger.info("Call worker starting", queue_url=self.config.queue.take_work_url)
        monitor_task = asyncio.create_task(self.monitor.watch(self.controller.on_state, self._stop))
        try:
            await self.poller.run()
        finally:
            self._stop.set()
            await monitor_task
            await self.controller.shutdown()
            await self.queue_client.close()
            logger.info("Call worker stopped")


async def main(config_path: Optional[str] = None, *, ephemeral: bool = False) -> None:
    config = load_config(config_path)
    configure_logging(config.logging.level, config.logging.format)

    # Ephemeral runs keep the lease in memory; nothing survives a restart.
    worker = CallWorker(config, kv=InMemoryKeyValueStore() if ephemeral else None)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.request_stop)
        except (NotImplementedError, RuntimeError):
            # Not available on every platform/event loop.
            pass
    await worker.run()
