"""
Typed worker configuration.

The YAML document is loaded by :mod:`callworker.config.loaders` and mapped
onto the dataclasses below. Missing sections fall back to the defaults the
worker has always shipped with; malformed values raise :class:`ConfigError`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from callworker.config.loaders import ConfigError, load_document, project_path

DEFAULT_CONFIG_PATH = "config/call-worker.yaml"


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return value


def _as_float(section: str, key: str, value: Any, default: float, *, minimum: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    if result < minimum:
        raise ConfigError(f"{section}.{key} must be >= {minimum}, got {result}")
    return result


def _as_int(section: str, key: str, value: Any, default: int, *, minimum: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be an integer, got {value!r}")
    if result < minimum:
        raise ConfigError(f"{section}.{key} must be >= {minimum}, got {result}")
    return result


def _as_str_list(section: str, key: str, value: Any, default: List[str]) -> List[str]:
    if value is None:
        return list(default)
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{section}.{key} must be a list of strings")
    return ["" if v is None else str(v) for v in value]


@dataclass
class QueueConfig:
    base_url: str = "https://qintel-backend.onrender.com"
    take_work_path: str = "/api/take-work"
    upload_path: str = "/api/post-recording"
    connect_timeout_sec: float = 20.0
    request_timeout_sec: float = 20.0

    @property
    def take_work_url(self) -> str:
        return self.base_url.rstrip("/") + self.take_work_path

    @property
    def upload_url(self) -> str:
        return self.base_url.rstrip("/") + self.upload_path


@dataclass
class PollingConfig:
    fast_interval_sec: float = 3.0
    slow_interval_sec: float = 30.0
    fast_window_sec: float = 300.0


@dataclass
class LeaseConfig:
    db_path: str = "data/call_worker.db"
    staleness_sec: float = 180.0


@dataclass
class CallConfig:
    mute_delay_sec: float = 3.0
    default_duration_sec: int = 60
    mute_labels: List[str] = field(default_factory=lambda: ["Mute", "Unmute"])
    end_call_labels: List[str] = field(default_factory=lambda: ["End call", "Hang up", "End"])


@dataclass
class UploadConfig:
    max_attempts: int = 3
    retry_delay_sec: float = 5.0
    settle_delay_sec: float = 2.0
    content_type: str = "audio/mpeg"
    storage_root: str = "/sdcard"
    source_dirs: List[str] = field(default_factory=lambda: [
        "Recordings/sound_recorder/call_rec",
        "MIUI/sound_recorder/call_rec",
        "CallRecorder",
        "call_records",
    ])

    def candidate_dirs(self) -> List[str]:
        """Source directories resolved against ``storage_root``, in priority order."""
        return [d if os.path.isabs(d) else os.path.join(self.storage_root, d) for d in self.source_dirs]


@dataclass
class DeviceConfig:
    serial: Optional[str] = None
    adb_path: str = "adb"
    command_timeout_sec: float = 15.0
    state_poll_interval_sec: float = 1.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "console"


@dataclass
class MetricsConfig:
    port: int = 0


@dataclass
class WorkerConfig:
    queue: QueueConfig = field(default_factory=QueueConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    lease: LeaseConfig = field(default_factory=LeaseConfig)
    call: CallConfig = field(default_factory=CallConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    identities: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WorkerConfig":
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigError("Worker configuration must be a mapping")

        q = _section(data, "queue")
        queue = QueueConfig(
            base_url=str(q.get("base_url") or QueueConfig.base_url),
            take_work_path=str(q.get("take_work_path") or QueueConfig.take_work_path),
            upload_path=str(q.get("upload_path") or QueueConfig.upload_path),
            connect_timeout_sec=_as_float("queue", "connect_timeout_sec", q.get("connect_timeout_sec"), 20.0),
            request_timeout_sec=_as_float("queue", "request_timeout_sec", q.get("request_timeout_sec"), 20.0),
        )

        p = _section(data, "polling")
        polling = PollingConfig(
            fast_interval_sec=_as_float("polling", "fast_interval_sec", p.get("fast_interval_sec"), 3.0),
            slow_interval_sec=_as_float("polling", "slow_interval_sec", p.get("slow_interval_sec"), 30.0),
            fast_window_sec=_as_float("polling", "fast_window_sec", p.get("fast_window_sec"), 300.0),
        )

        l = _section(data, "lease")
        lease = LeaseConfig(
            db_path=str(l.get("db_path") or LeaseConfig.db_path),
            staleness_sec=_as_float("lease", "staleness_sec", l.get("staleness_sec"), 180.0),
        )

        c = _section(data, "call")
        defaults = CallConfig()
        call = CallConfig(
            mute_delay_sec=_as_float("call", "mute_delay_sec", c.get("mute_delay_sec"), 3.0),
            default_duration_sec=_as_int("call", "default_duration_sec", c.get("default_duration_sec"), 60, minimum=1),
            mute_labels=_as_str_list("call", "mute_labels", c.get("mute_labels"), defaults.mute_labels),
            end_call_labels=_as_str_list("call", "end_call_labels", c.get("end_call_labels"), defaults.end_call_labels),
        )

        u = _section(data, "upload")
        udefaults = UploadConfig()
        upload = UploadConfig(
            max_attempts=_as_int("upload", "max_attempts", u.get("max_attempts"), 3, minimum=1),
            retry_delay_sec=_as_float("upload", "retry_delay_sec", u.get("retry_delay_sec"), 5.0),
            settle_delay_sec=_as_float("upload", "settle_delay_sec", u.get("settle_delay_sec"), 2.0),
            content_type=str(u.get("content_type") or udefaults.content_type),
            storage_root=str(u.get("storage_root") or udefaults.storage_root),
            source_dirs=_as_str_list("upload", "source_dirs", u.get("source_dirs"), udefaults.source_dirs),
        )

        d = _section(data, "device")
        device = DeviceConfig(
            serial=(str(d.get("serial")).strip() or None) if d.get("serial") else None,
            adb_path=str(d.get("adb_path") or "adb"),
            command_timeout_sec=_as_float("device", "command_timeout_sec", d.get("command_timeout_sec"), 15.0),
            state_poll_interval_sec=_as_float(
                "device", "state_poll_interval_sec", d.get("state_poll_interval_sec"), 1.0
            ),
        )

        lg = _section(data, "logging")
        fmt = str(lg.get("format") or "console").lower()
        if fmt not in ("console", "json"):
            raise ConfigError(f"logging.format must be 'console' or 'json', got {fmt!r}")
        log_cfg = LoggingConfig(level=str(lg.get("level") or "INFO").upper(), format=fmt)

        m = _section(data, "metrics")
        metrics = MetricsConfig(port=_as_int("metrics", "port", m.get("port"), 0))

        identities = _as_str_list("root", "identities", data.get("identities"), [])

        return cls(
            queue=queue,
            polling=polling,
            lease=lease,
            call=call,
            upload=upload,
            device=device,
            logging=log_cfg,
            metrics=metrics,
            identities=identities,
        )


CONFIG_SECTIONS = tuple(f.name for f in fields(WorkerConfig))


def _resolve_paths(config: WorkerConfig) -> None:
    # The lease file belongs to the checkout; recordings live on device storage.
    config.lease.db_path = project_path(config.lease.db_path)
    config.upload.source_dirs = config.upload.candidate_dirs()


def load_config(path: Optional[str] = None) -> WorkerConfig:
    """Load, validate and path-resolve the worker configuration file."""
    config = WorkerConfig.from_dict(load_document(project_path(path or DEFAULT_CONFIG_PATH), CONFIG_SECTIONS))
    _resolve_paths(config)
    return config
