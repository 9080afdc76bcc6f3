"""Tests for station_v.limiter: concurrency cap and start spacing."""

import asyncio

import pytest

from station_v.limiter import ConcurrencyLimiter


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestConcurrency:
    async def test_never_more_than_max_in_flight(self) -> None:
        limiter = ConcurrencyLimiter(max_concurrent=2, min_interval=0, poll_interval=0.001)
        peak = 0

        async def task() -> str:
            nonlocal peak
            peak = max(peak, limiter.in_flight)
            await asyncio.sleep(0.01)
            return "ok"

        results = await asyncio.gather(*(limiter.run(task) for _ in range(6)))
        assert results == ["ok"] * 6
        assert peak == 2
        assert limiter.in_flight == 0

    async def test_result_is_returned(self) -> None:
        limiter = ConcurrencyLimiter(min_interval=0)

        async def task() -> int:
            return 42

        assert await limiter.run(task, label="answer") == 42

    async def test_failure_propagates_and_frees_slot(self) -> None:
        limiter = ConcurrencyLimiter(min_interval=0)

        async def boom() -> None:
            raise ValueError("backend down")

        with pytest.raises(ValueError, match="backend down"):
            await limiter.run(boom)
        assert limiter.in_flight == 0

    async def test_failure_is_not_retried(self) -> None:
        limiter = ConcurrencyLimiter(min_interval=0)
        calls = 0

        async def boom() -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            await limiter.run(boom)
        assert calls == 1


class TestSpacing:
    async def test_first_call_starts_immediately(self) -> None:
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        limiter = ConcurrencyLimiter(min_interval=1.5, clock=FakeClock(), sleep=fake_sleep)

        async def task() -> None:
            return None

        await limiter.run(task)
        assert sleeps == []

    async def test_back_to_back_starts_are_spaced(self) -> None:
        clock = FakeClock(100.0)
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        limiter = ConcurrencyLimiter(min_interval=1.5, clock=clock, sleep=fake_sleep)

        async def task() -> None:
            return None

        await limiter.run(task)            # starts at 100.0
        await limiter.run(task)            # reserved start 101.5
        clock.now = 102.0
        await limiter.run(task)            # reserved start 103.0
        assert sleeps == [1.5, 1.0]

    async def test_no_wait_once_interval_has_passed(self) -> None:
        clock = FakeClock(100.0)
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        limiter = ConcurrencyLimiter(min_interval=1.5, clock=clock, sleep=fake_sleep)

        async def task() -> None:
            return None

        await limiter.run(task)
        clock.now = 110.0
        await limiter.run(task)
        assert sleeps == []

    async def test_simultaneous_callers_reserve_distinct_starts(self) -> None:
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            await asyncio.sleep(0)

        limiter = ConcurrencyLimiter(
            max_concurrent=3, min_interval=1.5, clock=FakeClock(), sleep=fake_sleep
        )

        async def task() -> None:
            await asyncio.sleep(0)

        await asyncio.gather(limiter.run(task), limiter.run(task), limiter.run(task))
        assert sorted(sleeps) == [1.5, 3.0]
