"""
Colored Console Output.

One line per record:

    09:14:05 [ INFO  ] (batch_1f2e) batch_start items=3 needed=2 saved=1
    09:14:07 [ WARN  ] (batch_1f2e) retry call_class=synthesis attempt=1 2.013s
    09:14:09 [SUCCESS] (merge_9c01) merge_done output=/data/merged/merge_9c01.mp3 1.204s

Pipeline fields get their own colors: circuit ``state``, job ``outcome``,
retry ``attempt`` and ``error``. Durations are green under 100ms, yellow
under 1s and red beyond.

Colors are off when stdout is not a TTY, or NO_COLOR / NEWS_TTS_NO_COLOR=1
is set. ``USE_COLORS`` is re-evaluated by configure_logging().
"""
from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from typing import Any


class Colors:
    RESET = "\033[0m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    GRAY = "\033[90m"

    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


def supports_color() -> bool:
    if os.getenv("NEWS_TTS_NO_COLOR", "0") == "1" or os.getenv("NO_COLOR"):
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


USE_COLORS = supports_color()


def colorize(text: str, color: str) -> str:
    # Module flag is read per call so configure_logging() and tests can flip it
    if not USE_COLORS:
        return text
    return f"{color}{text}{Colors.RESET}"


_TAG_COLORS = {
    "SUCCESS": Colors.BRIGHT_GREEN,
    "FAIL": Colors.BRIGHT_RED,
    "ERROR": Colors.BRIGHT_RED,
    "WARN": Colors.BRIGHT_YELLOW,
    "INFO": Colors.BRIGHT_CYAN,
    "VERBOSE": Colors.CYAN,
    "DEBUG": Colors.GRAY,
    "TRACE": Colors.DIM,
}

_VALUE_COLORS = {
    # circuit breaker
    "closed": Colors.GREEN,
    "half_open": Colors.YELLOW,
    "open": Colors.RED,
    # merge jobs and items
    "succeeded": Colors.GREEN,
    "success": Colors.GREEN,
    "failed": Colors.RED,
    "error": Colors.RED,
    "cancelled": Colors.YELLOW,
}


def get_tag_color(tag: str) -> str:
    return _TAG_COLORS.get(tag.upper(), Colors.WHITE)


def _field_color(key: str, value: Any) -> str:
    if key in ("state", "outcome", "status") and isinstance(value, str):
        return _VALUE_COLORS.get(value, Colors.DIM)
    if key == "attempt":
        return Colors.YELLOW
    if key in ("error", "error_code"):
        return Colors.RED
    if key == "correlation_id":
        return Colors.BLUE
    return Colors.DIM


def _duration_color(seconds: float) -> str:
    if seconds < 0.1:
        return Colors.GREEN
    if seconds < 1.0:
        return Colors.YELLOW
    return Colors.RED


class ConsoleFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        tag = getattr(record, "tag", record.levelname)
        cid = getattr(record, "correlation_id", "-")

        parts = [
            colorize(datetime.fromtimestamp(record.created).strftime("%H:%M:%S"), Colors.DIM),
            colorize(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if cid != "-":
            parts.append(colorize(f"({cid})", Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(colorize(f"event={event}", Colors.BLUE))
        for key, value in (getattr(record, "extra_data", None) or {}).items():
            parts.append(colorize(f"{key}={value}", _field_color(key, value)))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            parts.append(colorize(f"{seconds:.3f}s", _duration_color(seconds)))

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
