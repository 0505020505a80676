import asyncio

import pytest

from iptvresolver.core.singleflight import SingleFlight


def test_concurrent_callers_share_one_call():
    """Callers arriving while the work runs must join it instead of starting their own."""

    async def runner():
        flight = SingleFlight("test")
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "payload"

        results = await asyncio.gather(*(flight.do("key", work) for _ in range(5)))
        return calls, results, len(flight)

    calls, results, remaining = asyncio.run(runner())

    assert calls == 1
    assert results == ["payload"] * 5
    assert remaining == 0


def test_distinct_keys_run_separately():
    async def runner():
        flight = SingleFlight("test")
        seen = []

        async def work(key):
            seen.append(key)
            await asyncio.sleep(0)
            return key

        results = await asyncio.gather(flight.do("a", lambda: work("a")), flight.do("b", lambda: work("b")))
        return sorted(seen), results

    seen, results = asyncio.run(runner())

    assert seen == ["a", "b"]
    assert results == ["a", "b"]


def test_cancelled_caller_leaves_shared_work_running():
    async def runner():
        flight = SingleFlight("test")
        release = asyncio.Event()

        async def work():
            await release.wait()
            return 42

        first = asyncio.create_task(flight.do("key", work))
        second = asyncio.create_task(flight.do("key", work))
        await asyncio.sleep(0)
        assert flight.in_flight("key")

        first.cancel()
        await asyncio.sleep(0)
        release.set()

        with pytest.raises(asyncio.CancelledError):
            await first
        return await second

    assert asyncio.run(runner()) == 42


def test_failure_reaches_every_caller_and_key_is_forgotten():
    async def runner():
        flight = SingleFlight("test")
        attempts = 0

        async def failing():
            nonlocal attempts
            attempts += 1
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            flight.do("key", failing), flight.do("key", failing), return_exceptions=True
        )

        async def succeeding():
            return "ok"

        retried = await flight.do("key", succeeding)
        return attempts, results, retried

    attempts, results, retried = asyncio.run(runner())

    assert attempts == 1
    assert all(isinstance(result, RuntimeError) for result in results)
    assert retried == "ok"
