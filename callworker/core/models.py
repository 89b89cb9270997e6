"""
Data model shared by the poll loop, the lease store and the call lifecycle.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

DEFAULT_DURATION_SECONDS = 60


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class WorkItem:
    """A single unit of remote-assigned work. Immutable once received."""

    target_sequence: str
    artifact_name: str
    duration_seconds: int = DEFAULT_DURATION_SECONDS
    origin_identity: Optional[str] = None

    @property
    def duration_ms(self) -> int:
        return self.duration_seconds * 1000

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional["WorkItem"]:
        """
        Map a take-work response body onto a WorkItem.

        Returns None ("no work available") when either the dial sequence or
        the artifact name is missing or blank. The misspelled ``callSequance``
        key is what the queue actually sends.
        """
        target = _clean_str(payload.get("callSequance"))
        artifact = _clean_str(payload.get("fileName"))
        if not target or not artifact:
            return None

        duration = DEFAULT_DURATION_SECONDS
        raw_duration = payload.get("recordingDuration")
        if raw_duration is not None:
            try:
                duration = int(raw_duration)
            except (TypeError, ValueError):
                duration = DEFAULT_DURATION_SECONDS
            if duration <= 0:
                duration = DEFAULT_DURATION_SECONDS

        return cls(
            target_sequence=target,
            artifact_name=artifact,
            duration_seconds=duration,
            origin_identity=_clean_str(payload.get("simCardName")),
        )


@dataclass(frozen=True)
class Lease:
    """Persisted claim on "one work item in flight"."""

    in_progress: bool = False
    started_at_ms: Optional[int] = None
    artifact_name: Optional[str] = None
    duration_ms: int = DEFAULT_DURATION_SECONDS * 1000

    def age_ms(self, now_ms: int) -> Optional[int]:
        if self.started_at_ms is None:
            return None
        return now_ms - self.started_at_ms


class CallPhase(str, Enum):
    IDLE = "idle"
    RINGING = "ringing"
    CONNECTED = "connected"

    @classmethod
    def from_signal(cls, value: Any) -> "CallPhase":
        """
        Map a raw telephony state onto a phase.

        Accepts the names used by the platform broadcast (``IDLE``,
        ``RINGING``, ``OFFHOOK``), the numeric ``mCallState`` values reported
        by ``dumpsys telephony.registry`` (0/1/2) and CallPhase members.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        mapping = {
            "0": cls.IDLE,
            "idle": cls.IDLE,
            "1": cls.RINGING,
            "ringing": cls.RINGING,
            "2": cls.CONNECTED,
            "offhook": cls.CONNECTED,
            "off_hook": cls.CONNECTED,
            "connected": cls.CONNECTED,
        }
        try:
            return mapping[key]
        except KeyError:
            raise ValueError(f"Unknown telephony state: {value!r}")
