"""
Work queue client - asks the remote queue for the next work item.

The queue is authoritative: the worker keeps nothing besides the lease. A
response without a dial sequence or artifact name simply means there is no
work right now.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

import aiohttp
import structlog

from callworker.core.models import WorkItem

logger = structlog.get_logger(__name__)

USER_AGENT = "call-worker/1.0"


class WorkQueueError(RuntimeError):
    """Raised when the queue answers with something other than a work item body."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body_preview: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body_preview = body_preview


class WorkQueueClient:
    """
    Thin aiohttp wrapper around ``POST /api/take-work``.

    Parameters:
        url: Full take-work endpoint URL.
        connect_timeout: Seconds allowed to establish the connection.
        request_timeout: Seconds allowed for the whole request.
        session: Optional shared ``aiohttp.ClientSession``; one is created
            lazily (and owned) otherwise.
    """

    def __init__(
        self,
        url: str,
        *,
        connect_timeout: float = 20.0,
        request_timeout: float = 20.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self._timeout = aiohttp.ClientTimeout(total=request_timeout, connect=connect_timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers={"User-Agent": USER_AGENT})
            self._owns_session = True
        return self._session

    async def take_work(self, sim_cards: Sequence[str]) -> Optional[WorkItem]:
        """
        Request the next work item for the given sending identities.

        Returns None when the queue has nothing to hand out.

        Raises:
            WorkQueueError: non-2xx status or a body that is not a JSON object
            aiohttp.ClientError / asyncio.TimeoutError: transport failures
        """
        payload = {"simCards": list(sim_cards)}
        logger.debug("Checking for work", url=self.url, sim_card_count=len(payload["simCards"]))

        session = self._get_session()
        async with session.post(self.url, json=payload, timeout=self._timeout) as resp:
            body_text = await resp.text()
            if not 200 <= resp.status < 300:
                raise WorkQueueError(
                    f"take-work returned HTTP {resp.status}",
                    status_code=resp.status,
                    body_preview=body_text[:200],
                )

        return self.parse_work_item(body_text)

    @staticmethod
    def parse_work_item(body_text: str) -> Optional[WorkItem]:
        if not body_text.strip():
            return None
        try:
            data: Any = json.loads(body_text)
        except ValueError as exc:
            raise WorkQueueError(f"take-work body is not JSON: {exc}", body_preview=body_text[:200])
        if data is None:
            return None
        if not isinstance(data, dict):
            raise WorkQueueError("take-work body is not a JSON object", body_preview=body_text[:200])
        return WorkItem.from_payload(data)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
