"""
Resilience Policies: Retry with Backoff and Circuit Breaker.

Every class of external call (synthesis, storage, merge) runs through a
ResiliencePipeline built by PolicyFactory from configuration.

RetryPolicy:
    Exponential backoff, delay = base * 2**attempt, with optional jitter
    drawn from an injected random.Random. Only transient errors are
    retried (see core.errors.is_transient). Each retry invokes the
    on_retry observer before sleeping.

CircuitBreaker:
    Tracks call outcomes over a rolling sampling window. When the window
    holds at least ``min_throughput`` calls and the failure ratio reaches
    ``failure_ratio``, the circuit opens and every call fails immediately
    with CircuitOpenError for ``break_s`` seconds. After that, exactly one
    trial call is admitted (HALF_OPEN): success closes the circuit,
    failure re-opens it. Concurrent callers during the trial are rejected.

Composition:
    The retry loop runs inside the breaker, so an operation whose retries
    are exhausted counts as a single failure.

    CircuitBreaker( RetryPolicy( operation ) )

Usage:
    factory = PolicyFactory(config.resilience, notifier=sink)
    audio = await factory.synthesis().execute(provider.synthesize, text, voice_id, settings, fmt)
"""
from __future__ import annotations

import asyncio
import inspect
import random
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, TypeVar

from news_tts.core.config import BreakerConfig, ResilienceConfig, RetryConfig
from news_tts.core.errors import CircuitOpenError, is_transient
from news_tts.core.logging import debug, get_logger, info, verbose, warn
from news_tts.core.metrics import NewsTTSMetrics, metrics as global_metrics
from news_tts.core.notifications import NotificationSink, Severity

_LOG = get_logger("news-tts.resilience")

T = TypeVar("T")

# Notification title prefix per call class
_CALL_CLASS_TITLES = {
    "synthesis": "TTS",
    "storage": "Storage",
    "merge": "Merge",
}


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    Args:
        name: Call class name used in logs and metrics.
        max_retries: Retries after the first attempt (0 disables retrying).
        base_delay_s: Delay before the first retry.
        jitter: Randomize each delay within [delay/2, delay].
        rng: Random source for jitter.
        is_retryable: Classifier; defaults to is_transient.
        on_retry: Observer called as on_retry(attempt, delay, exc); may be async.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        max_retries: int = 3,
        base_delay_s: float = 2.0,
        jitter: bool = False,
        rng: Optional[random.Random] = None,
        is_retryable: Callable[[BaseException], bool] = is_transient,
        on_retry: Optional[Callable[[int, float, BaseException], Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.max_retries = max_retries
        self.base_delay_s = base_delay_s
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._is_retryable = is_retryable
        self._on_retry = on_retry
        self._sleep = sleep

    def compute_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is 0-based)."""
        delay = self.base_delay_s * (2 ** attempt)
        if self.jitter and delay > 0:
            delay = delay / 2 + self._rng.uniform(0, delay / 2)
        return delay

    async def execute(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        attempt = 0
        while True:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if attempt >= self.max_retries or not self._is_retryable(exc):
                    raise
                delay = self.compute_delay(attempt)
                attempt += 1
                verbose(_LOG, "retry", call_class=self.name, attempt=attempt,
                        max_retries=self.max_retries, error=type(exc).__name__, seconds=delay)
                if self._on_retry is not None:
                    await _maybe_await(self._on_retry(attempt, delay, exc))
                await self._sleep(delay)


class CircuitBreaker:
    """
    Failure-ratio circuit breaker over a rolling time window.

    Only failures accepted by ``is_failure`` (transient errors by default)
    count toward the ratio; other exceptions propagate but are recorded as
    healthy outcomes.
    """

    def __init__(
        self,
        name: str,
        failure_ratio: float = 0.5,
        min_throughput: int = 10,
        sampling_s: float = 30.0,
        break_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        is_failure: Callable[[BaseException], bool] = is_transient,
        on_open: Optional[Callable[["CircuitBreaker", BaseException], Any]] = None,
        on_close: Optional[Callable[["CircuitBreaker"], Any]] = None,
        on_half_open: Optional[Callable[["CircuitBreaker"], Any]] = None,
    ):
        self.name = name
        self.failure_ratio = failure_ratio
        self.min_throughput = min_throughput
        self.sampling_s = sampling_s
        self.break_s = break_s
        self._clock = clock
        self._is_failure = is_failure
        self._on_open = on_open
        self._on_close = on_close
        self._on_half_open = on_half_open

        self._state = CircuitState.CLOSED
        self._outcomes: Deque[Tuple[float, bool]] = deque()
        self._opened_until = 0.0
        self._probe_in_flight = False
        self.total_short_circuited = 0

    @property
    def state(self) -> CircuitState:
        """Current state; an expired OPEN circuit reports HALF_OPEN."""
        if self._state is CircuitState.OPEN and self._clock() >= self._opened_until:
            return CircuitState.HALF_OPEN
        return self._state

    def window_counts(self) -> Tuple[int, int]:
        """(total, failures) in the current sampling window."""
        self._prune()
        failures = sum(1 for _, failed in self._outcomes if failed)
        return len(self._outcomes), failures

    async def execute(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        probe = await self._before_call()
        try:
            result = await fn(*args, **kwargs)
        except asyncio.CancelledError:
            if probe:
                self._probe_in_flight = False
            raise
        except Exception as exc:
            if self._is_failure(exc):
                await self._record_failure(probe, exc)
            else:
                await self._record_success(probe)
            raise
        await self._record_success(probe)
        return result

    async def _before_call(self) -> bool:
        if self._state is CircuitState.OPEN:
            now = self._clock()
            if now < self._opened_until:
                self.total_short_circuited += 1
                raise CircuitOpenError(
                    f"{self.name} circuit is open",
                    details={"retry_after_s": round(self._opened_until - now, 3)},
                )
            self._state = CircuitState.HALF_OPEN
            debug(_LOG, "circuit_half_open", call_class=self.name, state=self._state.value)
            if self._on_half_open is not None:
                await _maybe_await(self._on_half_open(self))

        if self._state is CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                self.total_short_circuited += 1
                raise CircuitOpenError(
                    f"{self.name} circuit is half-open, trial call in progress",
                    details={"state": self._state.value},
                )
            self._probe_in_flight = True
            return True

        return False

    async def _record_success(self, probe: bool) -> None:
        if probe:
            self._probe_in_flight = False
            self._state = CircuitState.CLOSED
            self._outcomes.clear()
            info(_LOG, "circuit_closed", call_class=self.name, state=self._state.value)
            if self._on_close is not None:
                await _maybe_await(self._on_close(self))
            return
        self._outcomes.append((self._clock(), False))
        self._prune()

    async def _record_failure(self, probe: bool, exc: BaseException) -> None:
        if probe:
            self._probe_in_flight = False
            await self._trip(exc)
            return
        if self._state is not CircuitState.CLOSED:
            return
        self._outcomes.append((self._clock(), True))
        total, failures = self.window_counts()
        if total >= self.min_throughput and failures / total >= self.failure_ratio:
            await self._trip(exc)

    async def _trip(self, exc: BaseException) -> None:
        self._state = CircuitState.OPEN
        self._opened_until = self._clock() + self.break_s
        self._outcomes.clear()
        warn(_LOG, "circuit_opened", call_class=self.name, state=self._state.value,
             break_s=self.break_s, error=type(exc).__name__)
        if self._on_open is not None:
            await _maybe_await(self._on_open(self, exc))

    def _prune(self) -> None:
        cutoff = self._clock() - self.sampling_s
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()


class ResiliencePipeline:
    """Retry nested inside an optional circuit breaker."""

    def __init__(self, name: str, retry: Optional[RetryPolicy] = None, breaker: Optional[CircuitBreaker] = None):
        self.name = name
        self.retry = retry
        self.breaker = breaker

    async def execute(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        if self.retry is not None:
            retry = self.retry

            async def call() -> T:
                return await retry.execute(fn, *args, **kwargs)
        else:
            async def call() -> T:
                return await fn(*args, **kwargs)

        if self.breaker is not None:
            return await self.breaker.execute(call)
        return await call()


class PolicyFactory:
    """
    Builds one ResiliencePipeline per call class and wires observers.

    Observers:
        retry  -> metrics.record_retry + "<TTS|Storage|Merge> Retry" warning
        open   -> metrics circuit gauge + "<..> Circuit Opened" error
        close  -> metrics circuit gauge + "<..> Circuit Closed" info
    """

    def __init__(
        self,
        config: Optional[ResilienceConfig] = None,
        notifier: Optional[NotificationSink] = None,
        metrics: Optional[NewsTTSMetrics] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or ResilienceConfig()
        self._notifier = notifier
        self._metrics = metrics or global_metrics
        self._rng = rng or random.Random()
        self._clock = clock
        self._sleep = sleep
        self._pipelines: Dict[str, ResiliencePipeline] = {}

    def synthesis(self) -> ResiliencePipeline:
        return self.get("synthesis")

    def storage(self) -> ResiliencePipeline:
        return self.get("storage")

    def merge(self) -> ResiliencePipeline:
        return self.get("merge")

    def get(self, call_class: str) -> ResiliencePipeline:
        pipeline = self._pipelines.get(call_class)
        if pipeline is None:
            retry_cfg: RetryConfig = getattr(self.config, call_class)
            pipeline = self.build(call_class, retry_cfg)
            self._pipelines[call_class] = pipeline
        return pipeline

    def build(self, call_class: str, retry_cfg: RetryConfig) -> ResiliencePipeline:
        title = _CALL_CLASS_TITLES.get(call_class, call_class.title())

        async def on_retry(attempt: int, delay: float, exc: BaseException) -> None:
            self._metrics.record_retry(call_class)
            await self._notify(
                f"{title} Retry",
                f"Retry {attempt}/{retry_cfg.max_retries} in {delay:.2f}s after {type(exc).__name__}: {exc}",
                Severity.WARNING,
            )

        retry = RetryPolicy(
            call_class,
            max_retries=retry_cfg.max_retries,
            base_delay_s=retry_cfg.base_delay_s,
            jitter=retry_cfg.jitter,
            rng=self._rng,
            on_retry=on_retry,
            sleep=self._sleep,
        )

        breaker = None
        bcfg: BreakerConfig = retry_cfg.breaker
        if bcfg.enabled:
            async def on_open(cb: CircuitBreaker, exc: BaseException) -> None:
                self._metrics.set_circuit_state(call_class, CircuitState.OPEN.value)
                await self._notify(
                    f"{title} Circuit Opened",
                    f"Circuit opened for {cb.break_s:.0f}s after {type(exc).__name__}: {exc}",
                    Severity.ERROR,
                )

            async def on_close(cb: CircuitBreaker) -> None:
                self._metrics.set_circuit_state(call_class, CircuitState.CLOSED.value)
                await self._notify(f"{title} Circuit Closed", "Circuit closed after a successful trial call",
                                   Severity.INFO)

            async def on_half_open(cb: CircuitBreaker) -> None:
                self._metrics.set_circuit_state(call_class, CircuitState.HALF_OPEN.value)

            breaker = CircuitBreaker(
                call_class,
                failure_ratio=bcfg.failure_ratio,
                min_throughput=bcfg.min_throughput,
                sampling_s=bcfg.sampling_s,
                break_s=bcfg.break_s,
                clock=self._clock,
                on_open=on_open,
                on_close=on_close,
                on_half_open=on_half_open,
            )

        return ResiliencePipeline(call_class, retry=retry, breaker=breaker)

    async def _notify(self, title: str, message: str, severity: Severity) -> None:
        if self._notifier is not None:
            await self._notifier.notify(title, message, severity)
