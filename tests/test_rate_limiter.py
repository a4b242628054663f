import asyncio

import pytest

from emergent_world.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_permits_up_to_capacity_without_waiting(clock):
    limiter = RateLimiter(3, clock=clock, sleeper=clock.sleep)
    for _ in range(3):
        await limiter.acquire()
    assert clock.sleeps == []
    assert limiter.available == 0


@pytest.mark.asyncio
async def test_exhausted_pool_waits_for_next_refill(clock):
    limiter = RateLimiter(2, clock=clock, sleeper=clock.sleep)
    await limiter.acquire()
    clock.now = 0.25
    await limiter.acquire()
    await limiter.acquire()
    assert clock.sleeps == [pytest.approx(0.75)]
    assert limiter.available == 1


@pytest.mark.asyncio
async def test_refill_never_exceeds_capacity(clock):
    limiter = RateLimiter(2, clock=clock, sleeper=clock.sleep)
    clock.now = 10.0
    assert limiter.available == 2


@pytest.mark.asyncio
async def test_concurrent_waiters_are_throttled_in_arrival_order(clock):
    limiter = RateLimiter(1, clock=clock, sleeper=clock.sleep)
    order: list[int] = []

    async def worker(i: int) -> None:
        await limiter.acquire()
        order.append(i)

    await asyncio.gather(*(worker(i) for i in range(3)))
    assert order == [0, 1, 2]
    assert clock.now >= 2.0


@pytest.mark.asyncio
async def test_set_capacity_grows_pool_without_revoking_permits(clock):
    limiter = RateLimiter(2, clock=clock, sleeper=clock.sleep)
    await limiter.acquire()
    await limiter.acquire()
    limiter.set_capacity(5)
    assert limiter.capacity == 5
    assert limiter.available == 3


@pytest.mark.asyncio
async def test_set_capacity_shrink_caps_available(clock):
    limiter = RateLimiter(4, clock=clock, sleeper=clock.sleep)
    await limiter.acquire()
    limiter.set_capacity(2)
    assert limiter.available == 2
    limiter.set_capacity(0)
    assert limiter.capacity == 2


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        RateLimiter(0)
