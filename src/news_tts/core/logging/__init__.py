"""
news-tts Structured Logging.

Every log call names an event and attaches fields; the message itself
stays a stable snake_case event name so the JSONL file can be filtered on
it. The active correlation id (batch or merge job) is added to every
record.

    from news_tts.core.logging import get_logger, info, warn

    _LOG = get_logger("news-tts.worker")
    info(_LOG, "item_synthesized", item_id="42", bytes=18234, seconds=1.2)
    warn(_LOG, "optional_clip_missing", clip="intro", path="/data/clips/intro.mp3")

Levels (see levels.py): fail/error at 1, info/warn/success at 2, verbose
at 3, debug/trace at 4. Configure with NEWS_TTS_LOG_LEVEL or the
``logging.level`` setting.

Handlers:
    stdout      ConsoleFormatter, filtered by the active level
    log_dir     rotating JsonlFormatter file that records every event
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional, Union

from . import console
from .console import Colors, ConsoleFormatter, colorize, get_tag_color, supports_color
from .context import (
    STATE,
    correlation,
    get_correlation_id,
    read_logging_config,
    set_correlation_id,
)
from .jsonl import JsonlFormatter
from .levels import TAGS, TRACE, LogLevel, coerce_level

DEFAULT_ROTATE_BYTES = 10 * 1024 * 1024
DEFAULT_ROTATE_BACKUPS = 5

# Libraries that log every request at DEBUG/INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "redis", "asyncio")


def configure_logging(level: Optional[Union[int, str, LogLevel]] = None, force: bool = False) -> None:
    """
    Install the console handler and, if ``log_dir`` is set, the JSONL file.

    Args:
        level: Overrides settings and env when given.
        force: Reconfigure even if already configured (replaces root handlers).
    """
    if STATE.configured and not force:
        return

    console.USE_COLORS = supports_color()
    cfg = read_logging_config()
    STATE.config = cfg
    STATE.level = coerce_level(level if level is not None else cfg.get("level", LogLevel.NORMAL))

    root = logging.getLogger()
    root.setLevel(TRACE)
    root.handlers = []

    stream = logging.StreamHandler(sys.stdout)
    stream.setLevel(STATE.level.threshold)
    stream.setFormatter(ConsoleFormatter())
    root.addHandler(stream)

    log_dir = cfg.get("log_dir")
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        jsonl = RotatingFileHandler(
            Path(log_dir) / str(cfg.get("jsonl_file", "news-tts.jsonl")),
            maxBytes=int(cfg.get("rotate_max_bytes", DEFAULT_ROTATE_BYTES)),
            backupCount=int(cfg.get("rotate_backup_count", DEFAULT_ROTATE_BACKUPS)),
            encoding="utf-8",
            delay=True,
        )
        jsonl.setLevel(TRACE)
        jsonl.setFormatter(JsonlFormatter())
        root.addHandler(jsonl)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    STATE.configured = True


def get_logger(name: str = "news-tts") -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def get_level() -> LogLevel:
    return STATE.level


def get_level_name() -> str:
    return STATE.level.name


def _emitter(tag: str) -> Callable[..., None]:
    py_level, numeric = TAGS[tag]

    def emit(logger: logging.Logger, msg: str, exc_info: Any = None, **fields: Any) -> None:
        if numeric > STATE.level:
            return
        event = fields.pop("event", None)
        seconds = fields.pop("seconds", None)
        logger.log(
            py_level,
            msg,
            exc_info=exc_info,
            extra={
                "tag": tag,
                "correlation_id": get_correlation_id(),
                "event": event,
                "seconds": seconds,
                "extra_data": fields or None,
                "numeric_level": int(numeric),
            },
        )

    emit.__name__ = tag.lower()
    emit.__doc__ = f"Log a {tag} event (shown from level {int(numeric)} = {numeric.name})."
    return emit


fail = _emitter("FAIL")
error = _emitter("ERROR")
warn = _emitter("WARN")
info = _emitter("INFO")
success = _emitter("SUCCESS")
verbose = _emitter("VERBOSE")
debug = _emitter("DEBUG")
trace = _emitter("TRACE")


__all__ = [
    "LogLevel",
    "coerce_level",
    "Colors",
    "colorize",
    "get_tag_color",
    "supports_color",
    "ConsoleFormatter",
    "JsonlFormatter",
    "correlation",
    "get_correlation_id",
    "set_correlation_id",
    "configure_logging",
    "get_logger",
    "get_level",
    "get_level_name",
    "fail",
    "error",
    "warn",
    "info",
    "success",
    "verbose",
    "debug",
    "trace",
]
