from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable

DEFAULT_CAPACITY = 8


class RateLimiter:
    """
    Token bucket bounding outbound requests per client.

    The pool holds at most ``capacity`` permits and is topped back up to
    capacity once per ``interval_seconds``. Waiters are served in arrival
    order: the head waiter holds the lock while it sleeps until the next
    refill.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        interval_seconds: float = 1.0,
        clock: Callable[[], float] | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._capacity = int(capacity)
        self._interval = float(interval_seconds)
        self._clock: Callable[[], float] = clock or time.monotonic
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._permits = self._capacity
        self._next_refill = self._clock() + self._interval
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        self._refill()
        return self._permits

    def _refill(self) -> None:
        now = self._clock()
        if now < self._next_refill:
            return
        self._permits = self._capacity
        elapsed_intervals = math.floor((now - self._next_refill) / self._interval) + 1
        self._next_refill += elapsed_intervals * self._interval

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                self._refill()
                if self._permits > 0:
                    self._permits -= 1
                    return
                await self._sleep(max(0.0, self._next_refill - self._clock()))

    def set_capacity(self, capacity: int) -> None:
        """Resize the pool; permits already handed out stay valid."""
        if capacity <= 0:
            return
        grown = max(0, capacity - self._capacity)
        self._capacity = int(capacity)
        self._permits = min(self._capacity, self._permits + grown)
