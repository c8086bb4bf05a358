"""
Correlation Id and Logging State.

A batch tags its log lines with ``batch_<hex>``; a merge job tags its own
with the job's correlation id. The id lives in a ContextVar, so every task
created while it is set (per-item workers, fan-out writes) inherits it.

Environment Variables:
    NEWS_TTS_LOG_LEVEL            level (1-4 or name)
    NEWS_TTS_LOG_DIR              directory for the JSONL file (off when unset)
    NEWS_TTS_JSONL_FILE           JSONL filename
    NEWS_TTS_LOG_ROTATE_BYTES     rotate after this many bytes
    NEWS_TTS_LOG_ROTATE_BACKUP    rotated files kept
    NEWS_TTS_SETTINGS             settings file holding the ``logging`` section
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator

import yaml

from .levels import LogLevel

NO_CORRELATION = "-"

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default=NO_CORRELATION)


def get_correlation_id() -> str:
    return _correlation_id.get()


def set_correlation_id(cid: str) -> None:
    """Tag the current task (and tasks it creates from now on) with cid."""
    _correlation_id.set(cid)


@contextmanager
def correlation(cid: str) -> Iterator[str]:
    """Tag log lines with cid inside the block, then restore the previous id."""
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


@dataclass
class LogState:
    level: LogLevel = LogLevel.NORMAL
    configured: bool = False
    config: Dict[str, Any] = field(default_factory=dict)


STATE = LogState()

_ENV_KEYS = (
    ("NEWS_TTS_LOG_LEVEL", "level", str),
    ("NEWS_TTS_LOG_DIR", "log_dir", str),
    ("NEWS_TTS_JSONL_FILE", "jsonl_file", str),
    ("NEWS_TTS_LOG_ROTATE_BYTES", "rotate_max_bytes", int),
    ("NEWS_TTS_LOG_ROTATE_BACKUP", "rotate_backup_count", int),
)


def _settings_section() -> Dict[str, Any]:
    path = os.getenv("NEWS_TTS_SETTINGS", "config/settings.yaml")
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        # Config validation reports a broken file later; logging starts on defaults
        return {}
    section = raw.get("logging") if isinstance(raw, dict) else None
    return dict(section) if isinstance(section, dict) else {}


def read_logging_config() -> Dict[str, Any]:
    """
    Merge the ``logging`` settings section with NEWS_TTS_* overrides.

    Read straight from YAML so logging works before core.config validates
    anything. Malformed numeric env values are ignored.
    """
    cfg = _settings_section()
    for env, key, cast in _ENV_KEYS:
        value = os.getenv(env)
        if not value:
            continue
        try:
            cfg[key] = cast(value)
        except ValueError:
            continue
    return cfg
