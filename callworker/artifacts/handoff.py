"""Post-call pipeline: storage check, locate the recording, upload it."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import structlog

from .locator import ArtifactLocator
from .uploader import UploadResult, Uploader

logger = structlog.get_logger(__name__)


def storage_accessible(directory: Path) -> bool:
    """Reading the recording and clearing the directory both need rwx on it."""
    return os.access(directory, os.R_OK | os.W_OK | os.X_OK)


class ArtifactHandoff:
    """
    Runs once per finished call. Every miss (no name, no directory, no
    access, no file) is logged and ends the pipeline early with ``None``;
    the caller still signals completion.
    """

    def __init__(
        self,
        locator: ArtifactLocator,
        uploader: Uploader,
        candidate_dirs: Sequence[str],
        *,
        access_check: Callable[[Path], bool] = storage_accessible,
    ):
        self._locator = locator
        self._uploader = uploader
        self._candidate_dirs: List[str] = list(candidate_dirs)
        self._access_check = access_check

    async def run(self, artifact_name: Optional[str]) -> Optional[UploadResult]:
        if not artifact_name:
            logger.error("Could not retrieve artifact name for upload")
            return None

        source_dir = self._locator.find_source_dir(self._candidate_dirs)
        if source_dir is None:
            logger.error("Could not find a valid recording source directory", candidates=self._candidate_dirs)
            return None

        if not self._access_check(source_dir):
            logger.error("Storage access is not available; skipping upload", directory=str(source_dir))
            return None

        latest = await self._locator.locate_latest([source_dir])
        if latest is None:
            return None

        result = await self._uploader.upload(latest, artifact_name)
        if not result.success:
            logger.error(
                "Recording upload permanently failed",
                artifact_name=artifact_name,
                attempts=result.attempts,
                error=result.error,
            )
        return result
