"""Tests for retry, circuit breaker and the per-call-class policy factory."""
from __future__ import annotations

import asyncio
import random

import pytest

from news_tts.core.config import BreakerConfig, ResilienceConfig, RetryConfig
from news_tts.core.errors import (
    CircuitOpenError,
    ProviderPermanent,
    ProviderTransient,
    StorageTransient,
)
from news_tts.core.metrics import NewsTTSMetrics
from news_tts.core.notifications import Severity
from news_tts.tts.resilience import (
    CircuitBreaker,
    CircuitState,
    PolicyFactory,
    ResiliencePipeline,
    RetryPolicy,
)

from conftest import RecordingSink


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Flaky:
    """Raises the queued errors, then returns "ok"."""

    def __init__(self, *errors: Exception):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


async def _no_sleep(delay: float) -> None:
    return None


class TestRetryPolicy:
    """Bounded exponential backoff over transient errors only."""

    def test_exponential_delays_without_jitter(self):
        policy = RetryPolicy("storage", max_retries=3, base_delay_s=5.0)
        assert [policy.compute_delay(a) for a in range(3)] == [5.0, 10.0, 20.0]

    def test_jitter_is_reproducible_with_seeded_rng(self):
        a = RetryPolicy("synthesis", base_delay_s=2.0, jitter=True, rng=random.Random(42))
        b = RetryPolicy("synthesis", base_delay_s=2.0, jitter=True, rng=random.Random(42))
        delays_a = [a.compute_delay(i) for i in range(3)]
        delays_b = [b.compute_delay(i) for i in range(3)]
        assert delays_a == delays_b
        for attempt, delay in enumerate(delays_a):
            full = 2.0 * 2 ** attempt
            assert full / 2 <= delay <= full

    def test_transient_errors_are_retried(self):
        sleeps = []

        async def sleep(delay):
            sleeps.append(delay)

        fn = Flaky(ProviderTransient("503"), ProviderTransient("503"))
        policy = RetryPolicy("synthesis", max_retries=3, base_delay_s=1.0, sleep=sleep)
        assert asyncio.run(policy.execute(fn)) == "ok"
        assert fn.calls == 3
        assert sleeps == [1.0, 2.0]

    def test_permanent_errors_are_not_retried(self):
        fn = Flaky(ProviderPermanent("401"))
        policy = RetryPolicy("synthesis", max_retries=3, sleep=_no_sleep)
        with pytest.raises(ProviderPermanent):
            asyncio.run(policy.execute(fn))
        assert fn.calls == 1

    def test_gives_up_after_max_retries(self):
        fn = Flaky(*(StorageTransient("disk busy") for _ in range(5)))
        policy = RetryPolicy("storage", max_retries=2, sleep=_no_sleep)
        with pytest.raises(StorageTransient):
            asyncio.run(policy.execute(fn))
        assert fn.calls == 3

    def test_on_retry_observer(self):
        seen = []
        fn = Flaky(ProviderTransient("timeout"))
        policy = RetryPolicy("synthesis", base_delay_s=0.5, sleep=_no_sleep,
                             on_retry=lambda attempt, delay, exc: seen.append((attempt, delay, type(exc))))
        asyncio.run(policy.execute(fn))
        assert seen == [(1, 0.5, ProviderTransient)]


class TestCircuitBreaker:
    """Failure-ratio breaker with a single half-open trial call."""

    def _tripped(self, clock):
        breaker = CircuitBreaker("synthesis", failure_ratio=0.5, min_throughput=4,
                                 sampling_s=30, break_s=30, clock=clock)

        async def trip():
            for _ in range(4):
                with pytest.raises(ProviderTransient):
                    await breaker.execute(Flaky(ProviderTransient("503")))

        asyncio.run(trip())
        return breaker

    def test_stays_closed_below_min_throughput(self):
        clock = FakeClock()
        breaker = CircuitBreaker("synthesis", min_throughput=10, clock=clock)

        async def run():
            for _ in range(5):
                with pytest.raises(ProviderTransient):
                    await breaker.execute(Flaky(ProviderTransient("503")))

        asyncio.run(run())
        assert breaker.state is CircuitState.CLOSED
        assert breaker.window_counts() == (5, 5)

    def test_opens_and_short_circuits(self):
        """Once open, calls fail immediately without reaching the operation."""
        clock = FakeClock()
        breaker = self._tripped(clock)
        assert breaker.state is CircuitState.OPEN

        fn = Flaky()
        with pytest.raises(CircuitOpenError):
            asyncio.run(breaker.execute(fn))
        assert fn.calls == 0
        assert breaker.total_short_circuited == 1

    def test_trial_call_success_closes(self):
        clock = FakeClock()
        breaker = self._tripped(clock)
        clock.advance(30)
        assert breaker.state is CircuitState.HALF_OPEN
        assert asyncio.run(breaker.execute(Flaky())) == "ok"
        assert breaker.state is CircuitState.CLOSED

    def test_trial_call_failure_reopens(self):
        clock = FakeClock()
        breaker = self._tripped(clock)
        clock.advance(31)
        with pytest.raises(ProviderTransient):
            asyncio.run(breaker.execute(Flaky(ProviderTransient("still down"))))
        assert breaker.state is CircuitState.OPEN

    def test_only_one_trial_call_in_flight(self):
        """Concurrent callers during the trial are rejected."""
        clock = FakeClock()
        breaker = self._tripped(clock)
        clock.advance(30)

        async def run():
            release = asyncio.Event()

            async def slow_trial():
                await release.wait()
                return "ok"

            trial = asyncio.ensure_future(breaker.execute(slow_trial))
            await asyncio.sleep(0)
            with pytest.raises(CircuitOpenError):
                await breaker.execute(Flaky())
            release.set()
            return await trial

        assert asyncio.run(run()) == "ok"
        assert breaker.state is CircuitState.CLOSED

    def test_permanent_errors_do_not_trip(self):
        clock = FakeClock()
        breaker = CircuitBreaker("synthesis", min_throughput=2, clock=clock)

        async def run():
            for _ in range(4):
                with pytest.raises(ProviderPermanent):
                    await breaker.execute(Flaky(ProviderPermanent("bad voice")))

        asyncio.run(run())
        assert breaker.state is CircuitState.CLOSED

    def test_old_outcomes_leave_the_window(self):
        clock = FakeClock()
        breaker = CircuitBreaker("synthesis", min_throughput=4, sampling_s=30, clock=clock)

        async def fail_once():
            with pytest.raises(ProviderTransient):
                await breaker.execute(Flaky(ProviderTransient("503")))

        for _ in range(3):
            asyncio.run(fail_once())
        clock.advance(31)
        asyncio.run(fail_once())
        assert breaker.state is CircuitState.CLOSED
        assert breaker.window_counts() == (1, 1)


class TestResiliencePipeline:
    """Retries run inside the breaker."""

    def test_exhausted_retries_count_once(self):
        clock = FakeClock()
        breaker = CircuitBreaker("synthesis", min_throughput=100, clock=clock)
        retry = RetryPolicy("synthesis", max_retries=2, sleep=_no_sleep)
        pipeline = ResiliencePipeline("synthesis", retry=retry, breaker=breaker)
        fn = Flaky(*(ProviderTransient("503") for _ in range(3)))

        with pytest.raises(ProviderTransient):
            asyncio.run(pipeline.execute(fn))
        assert fn.calls == 3
        assert breaker.window_counts() == (1, 1)

    def test_no_policies(self):
        assert asyncio.run(ResiliencePipeline("merge").execute(Flaky())) == "ok"


class TestPolicyFactory:
    """Pipelines per call class, wired to notifications and metrics."""

    def _factory(self, sink, metrics, clock=None, **synthesis):
        config = ResilienceConfig(
            synthesis=RetryConfig(max_retries=synthesis.get("max_retries", 1), base_delay_s=0,
                                  breaker=BreakerConfig(min_throughput=2, failure_ratio=0.5)),
            storage=RetryConfig(max_retries=1, base_delay_s=0),
            merge=RetryConfig(max_retries=2, base_delay_s=0),
        )
        return PolicyFactory(config, notifier=sink, metrics=metrics, rng=random.Random(1),
                             clock=clock or FakeClock(), sleep=_no_sleep)

    def test_pipelines_are_cached_per_class(self):
        factory = self._factory(RecordingSink(), NewsTTSMetrics())
        assert factory.synthesis() is factory.get("synthesis")
        assert factory.storage() is not factory.synthesis()
        assert factory.storage().breaker is None
        assert factory.synthesis().breaker is not None

    def test_retry_notifies_and_counts(self):
        sink, metrics = RecordingSink(), NewsTTSMetrics()
        factory = self._factory(sink, metrics)
        asyncio.run(factory.storage().execute(Flaky(StorageTransient("EIO"))))

        assert sink.titles() == ["Storage Retry"]
        assert sink.events[0][2] is Severity.WARNING
        assert metrics.sample("news_tts_retries_total", {"call_class": "storage"}) == 1.0

    def test_circuit_open_notifies(self):
        sink, metrics = RecordingSink(), NewsTTSMetrics()
        factory = self._factory(sink, metrics, max_retries=0)

        async def run():
            for _ in range(2):
                with pytest.raises(ProviderTransient):
                    await factory.synthesis().execute(Flaky(ProviderTransient("503")))

        asyncio.run(run())
        assert "TTS Circuit Opened" in sink.titles()
        assert metrics.sample("news_tts_circuit_state", {"call_class": "synthesis"}) == 2.0
