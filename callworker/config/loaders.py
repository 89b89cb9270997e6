"""
Config document loading.

``config/call-worker.yaml`` ships the worker defaults. An optional sibling
``call-worker.local.yaml`` carries per-handset changes (base URL, SIM
numbers, adb serial) and is merged over it one section at a time.

Placeholders take two forms:
- ``${NAME:-fallback}`` - fallback when NAME is unset or empty
- ``${NAME}`` - NAME must be set
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

import structlog
import yaml

logger = structlog.get_logger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class ConfigError(ValueError):
    """Raised when the worker configuration cannot be used."""


def expand_placeholders(text: str, environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ

    def _substitute(match: "re.Match[str]") -> str:
        name, fallback = match.group(1), match.group(2)
        value = env.get(name)
        if fallback is not None:
            return value if value else fallback
        if value is None:
            raise ConfigError(f"Environment variable {name} is not set and has no fallback")
        return value

    return _PLACEHOLDER.sub(_substitute, text)


def project_path(path: str) -> str:
    """Absolute paths pass through; relative ones are taken from the project root."""
    if os.path.isabs(path):
        return path
    return str(PROJECT_ROOT / path)


def local_override_path(path: str) -> str:
    stem, ext = os.path.splitext(path)
    return f"{stem}.local{ext}"


def read_document(path: str) -> Dict[str, Any]:
    """Read one YAML file with placeholders expanded. Every failure is a ConfigError."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc.strerror or exc}") from exc

    try:
        data = yaml.safe_load(expand_placeholders(raw))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must hold a mapping of config sections")
    return data


def merge_sections(
    base: Dict[str, Any],
    override: Dict[str, Any],
    known_sections: Iterable[str],
) -> Dict[str, Any]:
    """
    Apply an override document section by section.

    Keys inside a mapping section replace the base keys; a list or scalar
    section (``identities``) replaces the base value; ``section: null``
    drops the section so its built-in defaults apply. Unknown section names
    are rejected so a typo cannot be silently ignored.
    """
    unknown = sorted(set(override) - set(known_sections))
    if unknown:
        raise ConfigError(f"Unknown config section(s) in override: {', '.join(unknown)}")

    merged = dict(base)
    for section, value in override.items():
        if value is None:
            merged.pop(section, None)
        elif isinstance(value, dict) and isinstance(merged.get(section), dict):
            merged[section] = {**merged[section], **value}
        else:
            merged[section] = value
    return merged


def load_document(path: str, known_sections: Iterable[str]) -> Dict[str, Any]:
    """Read ``path`` and merge its ``.local`` sibling over it when one exists."""
    data = read_document(path)
    local_path = local_override_path(path)
    if not os.path.isfile(local_path):
        return data

    logger.info("Applying local config override", path=local_path)
    return merge_sections(data, read_document(local_path), known_sections)
