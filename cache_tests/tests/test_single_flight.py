import asyncio
import gc

import pytest

from flightcache.core.cache import TTLCache
from flightcache.core.errors import ValidationError
from flightcache.core.single_flight import SingleFlight


class GatedProducer:
    """Async producer that counts calls and blocks until released."""

    def __init__(self, value=None, error=None) -> None:
        self.calls = 0
        self.value = value if value is not None else {"payload": 42}
        self.error = error
        self.gate = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.value


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_producer_call(clock):
    cache = TTLCache(clock=clock)
    producer = GatedProducer()

    tasks = [asyncio.create_task(cache.get_or_compute("k", producer)) for _ in range(10)]
    await asyncio.sleep(0)

    assert cache.pending_keys() == ["k"]

    producer.gate.set()
    results = await asyncio.gather(*tasks)

    assert producer.calls == 1
    assert all(r is producer.value for r in results)
    assert cache.get("k") is producer.value
    assert cache.pending_keys() == []


@pytest.mark.asyncio
async def test_sync_producer_is_also_deduplicated(clock):
    cache = TTLCache(clock=clock)
    calls = 0

    def producer():
        nonlocal calls
        calls += 1
        return "value"

    results = await asyncio.gather(*(cache.get_or_compute("k", producer) for _ in range(5)))

    assert calls == 1
    assert results == ["value"] * 5
    assert cache.get("k") == "value"


@pytest.mark.asyncio
async def test_hit_skips_producer(clock):
    cache = TTLCache(clock=clock)
    cache.set("k", "cached")
    producer = GatedProducer()

    assert await cache.get_or_compute("k", producer) == "cached"
    assert producer.calls == 0


@pytest.mark.asyncio
async def test_hit_counts_as_use_for_lru(clock):
    cache = TTLCache(max_size=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)

    await cache.get_or_compute("a", lambda: 0)
    cache.set("c", 3)

    assert sorted(cache.keys()) == ["a", "c"]


@pytest.mark.asyncio
async def test_failure_propagates_to_all_waiters_and_is_not_cached(clock):
    cache = TTLCache(clock=clock)
    boom = RuntimeError("producer failed")
    producer = GatedProducer(error=boom)

    tasks = [asyncio.create_task(cache.get_or_compute("k", producer)) for _ in range(4)]
    await asyncio.sleep(0)
    producer.gate.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert producer.calls == 1
    assert all(r is boom for r in results)
    assert cache.has("k") is False
    assert cache.size() == 0
    assert cache.pending_keys() == []


@pytest.mark.asyncio
async def test_after_failure_next_call_runs_producer_again(clock):
    cache = TTLCache(clock=clock)
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise ValueError("first call fails")
        return "ok"

    with pytest.raises(ValueError, match="first call fails"):
        await cache.get_or_compute("k", flaky)

    assert await cache.get_or_compute("k", flaky) == "ok"
    assert calls == 2


@pytest.mark.asyncio
async def test_sync_producer_exception_propagates_unwrapped(clock):
    cache = TTLCache(clock=clock)

    def producer():
        raise KeyError("nope")

    with pytest.raises(KeyError):
        await cache.get_or_compute("k", producer)
    assert cache.pending_keys() == []


@pytest.mark.asyncio
async def test_computed_value_uses_given_ttl(clock):
    cache = TTLCache(ttl_seconds=100.0, clock=clock)

    await cache.get_or_compute("short", lambda: 1, ttl_seconds=5.0)
    await cache.get_or_compute("default", lambda: 2)

    assert cache.ttl_remaining("short") == pytest.approx(5.0)
    assert cache.ttl_remaining("default") == pytest.approx(100.0)

    clock.advance(5.0)
    assert cache.get("short") is None
    assert cache.get("default") == 2


@pytest.mark.asyncio
async def test_expired_value_is_recomputed(clock):
    cache = TTLCache(ttl_seconds=1.0, clock=clock)
    calls = 0

    def producer():
        nonlocal calls
        calls += 1
        return calls

    assert await cache.get_or_compute("k", producer) == 1
    assert await cache.get_or_compute("k", producer) == 1

    clock.advance(1.0)
    assert await cache.get_or_compute("k", producer) == 2


@pytest.mark.asyncio
async def test_different_keys_do_not_block_each_other(clock):
    cache = TTLCache(clock=clock)
    slow = GatedProducer(value="slow")

    slow_task = asyncio.create_task(cache.get_or_compute("a", slow))
    await asyncio.sleep(0)

    assert await cache.get_or_compute("b", lambda: "fast") == "fast"
    assert not slow_task.done()

    slow.gate.set()
    assert await slow_task == "slow"


@pytest.mark.asyncio
async def test_cancelling_one_waiter_keeps_shared_computation(clock):
    cache = TTLCache(clock=clock)
    producer = GatedProducer(value="v")

    first = asyncio.create_task(cache.get_or_compute("k", producer))
    second = asyncio.create_task(cache.get_or_compute("k", producer))
    await asyncio.sleep(0)

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    producer.gate.set()
    assert await second == "v"
    assert producer.calls == 1
    assert cache.get("k") == "v"


@pytest.mark.asyncio
async def test_cancelled_producer_rejects_waiters_and_clears_pending(clock):
    cache = TTLCache(clock=clock)
    blocker = asyncio.get_running_loop().create_future()

    async def producer():
        return await blocker

    task = asyncio.create_task(cache.get_or_compute("k", producer))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    blocker.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert cache.pending_keys() == []
    assert cache.has("k") is False
    assert await cache.get_or_compute("k", lambda: "fresh") == "fresh"


@pytest.mark.asyncio
async def test_get_or_compute_rejects_non_callable_producer(clock):
    cache = TTLCache(clock=clock)
    with pytest.raises(ValidationError):
        await cache.get_or_compute("k", "not callable")


@pytest.mark.asyncio
async def test_get_or_compute_rejects_non_positive_ttl(clock):
    cache = TTLCache(clock=clock)
    with pytest.raises(ValidationError):
        await cache.get_or_compute("k", lambda: 1, ttl_seconds=0)
    assert cache.pending_keys() == []


@pytest.mark.asyncio
async def test_single_flight_stores_before_waiters_resume():
    flights = SingleFlight()
    stored = {}

    def on_success(key, value):
        stored[key] = value

    async def producer():
        await asyncio.sleep(0)
        return "v"

    first = asyncio.create_task(flights.do("k", producer, on_success))
    await asyncio.sleep(0)
    assert "k" in flights
    assert len(flights) == 1

    assert await flights.do("k", producer, on_success) == "v"
    assert await first == "v"
    assert stored == {"k": "v"}
    assert "k" not in flights


@pytest.mark.asyncio
async def test_failure_after_all_waiters_cancelled_is_not_reported_unretrieved(clock):
    cache = TTLCache(clock=clock)
    loop = asyncio.get_running_loop()
    reported = []
    loop.set_exception_handler(lambda _loop, context: reported.append(context.get("message")))
    try:
        producer = GatedProducer(error=RuntimeError("nobody is listening"))

        waiter = asyncio.create_task(cache.get_or_compute("k", producer))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        producer.gate.set()
        for _ in range(3):
            await asyncio.sleep(0)

        del waiter, producer
        gc.collect()
        await asyncio.sleep(0)
    finally:
        loop.set_exception_handler(None)

    assert "Task exception was never retrieved" not in reported
    assert cache.pending_keys() == []
    assert cache.has("k") is False


@pytest.mark.asyncio
async def test_joining_caller_gets_launcher_ttl(clock):
    cache = TTLCache(ttl_seconds=100.0, clock=clock)
    producer = GatedProducer(value="v")

    launcher = asyncio.create_task(cache.get_or_compute("k", producer, ttl_seconds=5.0))
    joiner = asyncio.create_task(cache.get_or_compute("k", producer, ttl_seconds=50.0))
    await asyncio.sleep(0)
    producer.gate.set()

    assert await asyncio.gather(launcher, joiner) == ["v", "v"]
    assert producer.calls == 1
    assert cache.ttl_remaining("k") == pytest.approx(5.0)
