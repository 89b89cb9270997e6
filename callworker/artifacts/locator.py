"""Locate the artifact the call recorder produced most recently."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


class ArtifactLocator:
    """
    Picks the newest plain file in the first existing candidate directory.

    The recorder finishes writing asynchronously after the call ends, so a
    settle delay is applied before the directory is listed.
    """

    def __init__(
        self,
        *,
        settle_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settle_delay = settle_delay
        self._sleep = sleep

    @staticmethod
    def find_source_dir(candidate_dirs: Iterable[PathLike]) -> Optional[Path]:
        for candidate in candidate_dirs:
            path = Path(candidate)
            if path.is_dir():
                return path
        return None

    @staticmethod
    def latest_file(directory: Path) -> Optional[Path]:
        newest: Optional[Path] = None
        newest_mtime = float("-inf")
        try:
            entries = list(os.scandir(directory))
        except OSError as exc:
            logger.error("Cannot list source directory", directory=str(directory), error=str(exc))
            return None
        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                mtime = entry.stat().st_mtime
            except OSError:
                continue
            if mtime > newest_mtime:
                newest, newest_mtime = Path(entry.path), mtime
        return newest

    async def locate_latest(self, candidate_dirs: Iterable[PathLike]) -> Optional[Path]:
        source_dir = self.find_source_dir(candidate_dirs)
        if source_dir is None:
            logger.error("Could not find a valid recording source directory")
            return None

        if self.settle_delay > 0:
            await self._sleep(self.settle_delay)

        latest = await asyncio.get_running_loop().run_in_executor(None, self.latest_file, source_dir)
        if latest is None:
            logger.error("No recordings found in the source directory", directory=str(source_dir))
            return None
        logger.info("Located latest recording", path=str(latest))
        return latest
