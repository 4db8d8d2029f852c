"""Deduplicating work queue with delayed adds and per-key backoff.

A key is never handed to two workers at once. Adding a key that is being
processed marks it dirty; it goes back on the queue when ``done`` is called,
so the latest change is always seen by exactly one more reconcile.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Hashable

from capc.core.exceptions import InvariantError


class QueueShutDown(Exception):
    """Raised by ``WorkQueue.get`` once the queue is shut down."""


class WorkQueue[K: Hashable]:
    def __init__(self) -> None:
        self._queue: deque[K] = deque()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._delayed: dict[K, asyncio.TimerHandle] = {}
        self._getters: deque[asyncio.Future[None]] = deque()
        self._shutdown = False

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, key: object) -> bool:
        return key in self._dirty

    @property
    def processing(self) -> frozenset[K]:
        return frozenset(self._processing)

    @property
    def delayed(self) -> frozenset[K]:
        return frozenset(self._delayed)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def add(self, key: K) -> None:
        """Queue ``key`` now, cancelling any delayed add for it."""
        if self._shutdown:
            return
        self.forget(key)
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._wake()

    def add_after(self, key: K, delay: float) -> None:
        """Queue ``key`` after ``delay`` seconds, replacing an earlier delayed add."""
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        self.forget(key)
        loop = asyncio.get_running_loop()
        self._delayed[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: K) -> None:
        self._delayed.pop(key, None)
        self.add(key)

    def forget(self, key: K) -> None:
        """Drop a pending delayed add for ``key``."""
        if (handle := self._delayed.pop(key, None)) is not None:
            handle.cancel()

    async def get(self) -> K:
        while not self._queue:
            if self._shutdown:
                raise QueueShutDown
            waiter = asyncio.get_running_loop().create_future()
            self._getters.append(waiter)
            try:
                await waiter
            except asyncio.CancelledError:
                if waiter in self._getters:
                    self._getters.remove(waiter)
                raise
        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: K) -> None:
        if key not in self._processing:
            raise InvariantError(f"done() for {key!r}, which is not being processed")
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.append(key)
            self._wake()

    def shutdown(self) -> None:
        self._shutdown = True
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        while self._getters:
            waiter = self._getters.popleft()
            if not waiter.done():
                waiter.set_result(None)

    def _wake(self) -> None:
        while self._getters:
            waiter = self._getters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return


class BackoffRateLimiter[K: Hashable]:
    """Per-key exponential backoff: ``min(base * 2**failures, max)``."""

    def __init__(self, base: float = 1.0, max: float = 300.0) -> None:
        self._base = base
        self._max = max
        self._failures: dict[K, int] = {}

    def when(self, key: K) -> float:
        """Record a failure for ``key`` and return how long to wait."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self._base * 2 ** failures, self._max)

    def forget(self, key: K) -> None:
        self._failures.pop(key, None)

    def failures(self, key: K) -> int:
        return self._failures.get(key, 0)
