"""
Numeric Log Levels.

    1 = MINIMAL  failures, startup and shutdown
    2 = NORMAL   batch lifecycle, merge outcome, degraded modes (default)
    3 = VERBOSE  per-item timing, retries, rate-limiter waits
    4 = DEBUG    circuit transitions, token counts, cache misses

Each numeric level enables one more Python logging level on the console
handler. DEBUG also lets TRACE (5) records through.
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any, Dict, Tuple

TRACE = logging.DEBUG - 5


class LogLevel(IntEnum):
    MINIMAL = 1
    NORMAL = 2
    VERBOSE = 3
    DEBUG = 4

    @property
    def threshold(self) -> int:
        """Lowest Python level shown on the console at this verbosity."""
        return _THRESHOLDS[self]


_THRESHOLDS = {
    LogLevel.MINIMAL: logging.WARNING,
    LogLevel.NORMAL: logging.INFO,
    LogLevel.VERBOSE: logging.DEBUG,
    LogLevel.DEBUG: TRACE,
}

# tag -> (python level, numeric level it first appears at)
TAGS: Dict[str, Tuple[int, LogLevel]] = {
    "FAIL": (logging.ERROR, LogLevel.MINIMAL),
    "ERROR": (logging.ERROR, LogLevel.MINIMAL),
    "WARN": (logging.WARNING, LogLevel.NORMAL),
    "INFO": (logging.INFO, LogLevel.NORMAL),
    "SUCCESS": (logging.INFO, LogLevel.NORMAL),
    "VERBOSE": (logging.DEBUG, LogLevel.VERBOSE),
    "DEBUG": (logging.DEBUG, LogLevel.DEBUG),
    "TRACE": (TRACE, LogLevel.DEBUG),
}

_ALIASES = {
    "TRACE": LogLevel.DEBUG,
    "CRITICAL": LogLevel.MINIMAL,
    "ERROR": LogLevel.MINIMAL,
    "WARNING": LogLevel.MINIMAL,
    "WARN": LogLevel.MINIMAL,
    "INFO": LogLevel.NORMAL,
}


def coerce_level(value: Any) -> LogLevel:
    """
    Read a level from settings, env or code.

    Accepts a LogLevel, 1-4, a Python logging level, a level name
    ("verbose", "INFO", ...) or a numeric string. Anything else is NORMAL.

        >>> coerce_level("3")
        <LogLevel.VERBOSE: 3>
        >>> coerce_level(logging.WARNING)
        <LogLevel.MINIMAL: 1>
    """
    if isinstance(value, LogLevel):
        return value
    if isinstance(value, str):
        name = value.strip().upper()
        if name.isdigit():
            return coerce_level(int(name))
        if name in LogLevel.__members__:
            return LogLevel[name]
        return _ALIASES.get(name, LogLevel.NORMAL)
    if isinstance(value, int) and not isinstance(value, bool):
        if value in LogLevel._value2member_map_:
            return LogLevel(value)
        # Python logging levels, most severe first
        for level in (LogLevel.MINIMAL, LogLevel.NORMAL, LogLevel.VERBOSE):
            if value >= level.threshold:
                return level
        return LogLevel.DEBUG
    return LogLevel.NORMAL
