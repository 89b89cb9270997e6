"""Worker configuration loading."""

from .settings import ConfigError, WorkerConfig, load_config

__all__ = ["ConfigError", "WorkerConfig", "load_config"]
