"""
Wall-Clock Timing for log fields and histograms.

    with timeit("merge") as t:
        await engine.merge(...)
    info(_LOG, "merged", seconds=round(t.seconds, 3))

``t.seconds`` is live inside the block and frozen once it exits, whether
the block returned or raised. Works unchanged around ``await``.
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Timing:
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self.timing: Optional[Timing] = None
        self._started: Optional[float] = None

    @property
    def seconds(self) -> float:
        if self.timing is not None:
            return self.timing.seconds
        return 0.0 if self._started is None else perf_counter() - self._started

    def __enter__(self) -> "timeit":
        self._started = perf_counter()
        self.timing = None
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.timing = Timing(self.name, perf_counter() - self._started, self.meta)
