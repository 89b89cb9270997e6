"""
Uploader - hands a recording to the remote endpoint.

Multipart POST with ``fileName`` and ``file`` fields, bounded attempts with a
fixed pause between them. Only HTTP 200 counts as success. After a successful
upload the source directory is emptied of plain files; a file that cannot be
deleted is counted, not fatal.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Tuple

import aiohttp
import structlog
from prometheus_client import Counter

logger = structlog.get_logger(__name__)

_UPLOAD_ATTEMPTS_TOTAL = Counter(
    "call_worker_upload_attempts_total",
    "Upload attempts by outcome",
    labelnames=("outcome",),
)
_UPLOAD_RESULTS_TOTAL = Counter(
    "call_worker_upload_results_total",
    "Finished upload operations",
    labelnames=("result",),
)


@dataclass
class UploadResult:
    success: bool
    attempts: int = 0
    status: Optional[int] = None
    deleted_files: int = 0
    delete_failures: int = 0
    error: Optional[str] = None


class Uploader:
    def __init__(
        self,
        url: str,
        *,
        max_attempts: int = 3,
        retry_delay: float = 5.0,
        content_type: str = "audio/mpeg",
        connect_timeout: float = 20.0,
        request_timeout: float = 20.0,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay = retry_delay
        self.content_type = content_type
        self._timeout = aiohttp.ClientTimeout(total=request_timeout, connect=connect_timeout)
        self._session = session
        self._sleep = sleep

    async def upload(self, path: Path, artifact_name: str) -> UploadResult:
        path = Path(path)
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, path.read_bytes)
        except OSError as exc:
            logger.error("Cannot read recording", path=str(path), error=str(exc))
            _UPLOAD_RESULTS_TOTAL.labels("unreadable").inc()
            return UploadResult(success=False, error=f"unreadable: {exc}")

        last_status: Optional[int] = None
        last_error: Optional[str] = None
        for attempt in range(1, self.max_attempts + 1):
            logger.info(
                "Uploading recording",
                attempt=attempt,
                max_attempts=self.max_attempts,
                file=path.name,
                artifact_name=artifact_name,
            )
            try:
                last_status = await self._post(data, path.name, artifact_name)
                last_error = None
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_status = None
                last_error = f"{type(exc).__name__}: {exc}"
                logger.error("Upload attempt raised", attempt=attempt, error=last_error)
                _UPLOAD_ATTEMPTS_TOTAL.labels("error").inc()
            else:
                if last_status == 200:
                    _UPLOAD_ATTEMPTS_TOTAL.labels("success").inc()
                    logger.info(
                        "Uploaded recording",
                        file=path.name,
                        artifact_name=artifact_name,
                        attempt=attempt,
                    )
                    deleted, failed = await loop.run_in_executor(None, self.clear_directory, path.parent)
                    _UPLOAD_RESULTS_TOTAL.labels("success").inc()
                    return UploadResult(
                        success=True,
                        attempts=attempt,
                        status=last_status,
                        deleted_files=deleted,
                        delete_failures=failed,
                    )
                logger.error("Upload attempt failed", attempt=attempt, status=last_status)
                _UPLOAD_ATTEMPTS_TOTAL.labels("bad_status").inc()

            if attempt < self.max_attempts:
                logger.debug("Waiting before next upload attempt", delay_seconds=self.retry_delay)
                await self._sleep(self.retry_delay)

        logger.error(
            "Failed to upload recording after all attempts",
            file=path.name,
            artifact_name=artifact_name,
            attempts=self.max_attempts,
        )
        _UPLOAD_RESULTS_TOTAL.labels("exhausted").inc()
        return UploadResult(
            success=False,
            attempts=self.max_attempts,
            status=last_status,
            error=last_error or f"HTTP {last_status}",
        )

    async def _post(self, data: bytes, filename: str, artifact_name: str) -> int:
        # FormData is single-use; build a fresh one per attempt.
        form = aiohttp.FormData()
        form.add_field("fileName", artifact_name)
        form.add_field("file", data, filename=filename, content_type=self.content_type)

        if self._session is not None:
            async with self._session.post(self.url, data=form, timeout=self._timeout) as resp:
                await resp.read()
                return resp.status

        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.post(self.url, data=form) as resp:
                await resp.read()
                return resp.status

    @staticmethod
    def clear_directory(directory: Path) -> Tuple[int, int]:
        """Delete every plain file in ``directory``. Returns (deleted, failed)."""
        deleted = failed = 0
        try:
            entries = list(os.scandir(directory))
        except OSError as exc:
            logger.error("Cannot list directory for cleanup", directory=str(directory), error=str(exc))
            return 0, 0
        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                os.remove(entry.path)
                deleted += 1
            except OSError as exc:
                failed += 1
                logger.warning("Failed to delete local recording", path=entry.path, error=str(exc))
        logger.info("Cleared source directory", directory=str(directory), deleted=deleted, failed=failed)
        return deleted, failed
