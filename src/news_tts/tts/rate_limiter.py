"""
Dual Rate Limiter for Outbound Provider Calls.

Protects the synthesis provider with two limits applied together:

    - Concurrency cap C: at most C provider calls in flight
    - Token bucket: tokens refill continuously at R per second, up to a
      burst of C; each admitted call consumes one token

A caller is admitted only when it holds both a concurrency slot and a
token. Acquisition is all-or-nothing: if the token cannot be obtained
(timeout or cancellation) after the slot was taken, the slot is released
before the error surfaces, so a failed acquire never leaks a slot.

Guarantees:
    - Admitted concurrent operations <= C, regardless of token supply
    - Admissions within any window of T seconds <= C + R * T

Usage:
    limiter = RateLimiter(max_concurrent=5, rate_per_second=10)

    async with limiter.lease():
        audio = await provider.synthesize(...)

    # Or explicitly
    lease = await limiter.acquire(timeout=30.0)
    try:
        ...
    finally:
        await limiter.release(lease)

Timeout:
    ``acquire_timeout_s`` bounds the wait independently of the caller's
    own cancellation; it raises RateLimiterExhausted (retryable).
"""
from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from news_tts.core.errors import RateLimiterExhausted
from news_tts.core.logging import debug, get_logger, warn
from news_tts.core.metrics import NewsTTSMetrics, metrics as global_metrics

_LOG = get_logger("news-tts.rate_limiter")


@dataclass
class RateLimiterStats:
    """Point-in-time limiter statistics."""
    max_concurrent: int
    rate_per_second: float
    active: int
    waiting: int
    tokens: float
    total_admitted: int
    total_timeouts: int


class RateLimitLease:
    """Handle for one admitted call. Releasing twice is a no-op."""

    __slots__ = ("slot", "token", "released", "acquired_at")

    def __init__(self) -> None:
        self.slot = False
        self.token = False
        self.released = False
        self.acquired_at = 0.0

    @property
    def admitted(self) -> bool:
        return self.slot and self.token


class RateLimiter:
    """
    Concurrency semaphore combined with a token bucket.

    All counters are mutated on the event loop thread only; the slot
    counter is guarded by an asyncio.Condition so waiters are woken on
    release.
    """

    def __init__(
        self,
        max_concurrent: int = 5,
        rate_per_second: float = 10.0,
        acquire_timeout_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[NewsTTSMetrics] = None,
    ):
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")

        self.max_concurrent = max_concurrent
        self.rate_per_second = float(rate_per_second)
        self.capacity = float(max_concurrent)
        self.acquire_timeout_s = acquire_timeout_s
        self._clock = clock
        self._metrics = metrics or global_metrics

        self._cond: Optional[asyncio.Condition] = None
        self._cond_loop: Optional[asyncio.AbstractEventLoop] = None

        self._active = 0
        self._waiting = 0
        self._tokens = self.capacity
        self._last_refill = clock()
        self._total_admitted = 0
        self._total_timeouts = 0

    # ─────────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────────

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def waiting_count(self) -> int:
        return self._waiting

    def stats(self) -> RateLimiterStats:
        self._refill()
        return RateLimiterStats(
            max_concurrent=self.max_concurrent,
            rate_per_second=self.rate_per_second,
            active=self._active,
            waiting=self._waiting,
            tokens=round(self._tokens, 3),
            total_admitted=self._total_admitted,
            total_timeouts=self._total_timeouts,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Acquire / release
    # ─────────────────────────────────────────────────────────────────────

    async def acquire(self, timeout: Optional[float] = None) -> RateLimitLease:
        """
        Wait for a concurrency slot and a token.

        Raises:
            RateLimiterExhausted: If both were not obtained within timeout.
            asyncio.CancelledError: If the caller is cancelled; nothing is held.
        """
        timeout = self.acquire_timeout_s if timeout is None else timeout
        lease = RateLimitLease()
        started = self._clock()
        self._waiting += 1
        try:
            await asyncio.wait_for(self._acquire_both(lease), timeout=timeout)
        except asyncio.TimeoutError:
            await self._rollback(lease)
            self._total_timeouts += 1
            self._metrics.record_rate_limit_timeout()
            warn(_LOG, "rate_limit_timeout", timeout_s=timeout, active=self._active,
                 had_slot=lease.slot)
            raise RateLimiterExhausted(
                f"no provider slot/token within {timeout}s",
                details={"timeout_s": timeout, "max_concurrent": self.max_concurrent},
            ) from None
        except BaseException:
            await self._rollback(lease)
            raise
        finally:
            self._waiting -= 1

        waited = self._clock() - started
        lease.acquired_at = self._clock()
        self._total_admitted += 1
        self._metrics.record_rate_limit_wait(waited)
        debug(_LOG, "rate_limit_admitted", active=self._active, tokens=round(self._tokens, 2),
              seconds=waited)
        return lease

    async def release(self, lease: RateLimitLease) -> None:
        """Return the lease's concurrency slot. Tokens are consumed, never returned."""
        if lease.released:
            return
        lease.released = True
        if lease.slot:
            lease.slot = False
            await self._release_slot()

    @asynccontextmanager
    async def lease(self, timeout: Optional[float] = None) -> AsyncIterator[RateLimitLease]:
        """Scoped acquisition; the slot is released even if the body raises."""
        lease = await self.acquire(timeout=timeout)
        try:
            yield lease
        finally:
            await self.release(lease)

    # ─────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────

    def _condition(self) -> asyncio.Condition:
        loop = asyncio.get_running_loop()
        if self._cond is None or self._cond_loop is not loop:
            self._cond = asyncio.Condition()
            self._cond_loop = loop
        return self._cond

    async def _acquire_both(self, lease: RateLimitLease) -> None:
        cond = self._condition()
        async with cond:
            try:
                await cond.wait_for(lambda: self._active < self.max_concurrent)
            except asyncio.CancelledError:
                # A wake-up taken by a cancelled waiter goes to the next one
                if self._active < self.max_concurrent:
                    cond.notify()
                raise
            self._active += 1
            lease.slot = True

        while True:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                lease.token = True
                return
            await asyncio.sleep((1.0 - self._tokens) / self.rate_per_second)

    async def _rollback(self, lease: RateLimitLease) -> None:
        if lease.slot:
            lease.slot = False
            lease.released = True
            # Shielded so a second cancellation cannot skip the slot return
            await asyncio.shield(self._release_slot())

    async def _release_slot(self) -> None:
        cond = self._condition()
        async with cond:
            self._active = max(0, self._active - 1)
            cond.notify()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_second)
            self._last_refill = now
