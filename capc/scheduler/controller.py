"""Worker pool that drains a work queue into a reconcile function."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable

from capc.config import ControllerConfig
from capc.controllers.base import Result
from capc.core.exceptions import ConflictError, ProviderError
from capc.observability.logger import logger

from .queue import BackoffRateLimiter, QueueShutDown, WorkQueue

type ReconcileFn[K] = Callable[[K], Awaitable[Result]]


class Controller[K: Hashable]:
    """Runs ``config.workers`` tasks, each reconciling one key at a time.

    After a reconcile the key is scheduled again according to its outcome:

    - exception or deadline exceeded: per-key exponential backoff,
    - ``Result(requeue_after=...)``: that delay,
    - ``Result(requeue=True)``: immediately,
    - ``Result(forget=True)``: not at all, the object is gone,
    - anything else: the resync period.
    """

    def __init__(self, name: str, reconcile: ReconcileFn[K], config: ControllerConfig) -> None:
        self.name = name
        self.queue: WorkQueue[K] = WorkQueue()
        self._reconcile = reconcile
        self._config = config
        self._backoff: BackoffRateLimiter[K] = BackoffRateLimiter(config.backoff_base, config.backoff_max)
        self._workers: list[asyncio.Task[None]] = []
        self._log = logger.bind(controller=name)

    @property
    def running(self) -> bool:
        return any(not w.done() for w in self._workers)

    def enqueue(self, key: K) -> None:
        self.queue.add(key)

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(), name=f"{self.name}-worker-{i}")
            for i in range(self._config.workers)
        ]
        self._log.info("Started {n} workers", n=self._config.workers)

    async def stop(self) -> None:
        self.queue.shutdown()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._log.info("Stopped")

    async def _worker(self) -> None:
        while True:
            try:
                key = await self.queue.get()
            except QueueShutDown:
                return
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def process(self, key: K) -> None:
        log = self._log.bind(key=str(key))
        try:
            async with asyncio.timeout(self._config.reconcile_timeout):
                result = await self._reconcile(key)
        except ConflictError:
            delay = self._retry(key)
            log.debug("Object changed during reconcile, retrying in {delay:.1f}s", delay=delay)
            return
        except TimeoutError:
            delay = self._retry(key)
            log.warning(
                "Reconcile exceeded {timeout}s, retrying in {delay:.1f}s",
                timeout=self._config.reconcile_timeout, delay=delay,
            )
            return
        except ProviderError as e:
            delay = self._retry(key)
            log.warning("Provider error: {error}, retrying in {delay:.1f}s", error=str(e), delay=delay)
            return
        except Exception:
            delay = self._retry(key)
            log.exception("Reconcile crashed, retrying in {delay:.1f}s", delay=delay)
            return

        self._backoff.forget(key)
        if result.forget:
            log.trace("Object is gone, dropping key")
            self.queue.forget(key)
        elif result.requeue_after:
            log.trace("Requeue in {delay:.1f}s", delay=result.requeue_after)
            self.queue.add_after(key, result.requeue_after)
        elif result.requeue:
            self.queue.add(key)
        else:
            self.queue.add_after(key, self._config.resync_period)

    def _retry(self, key: K) -> float:
        delay = self._backoff.when(key)
        self.queue.add_after(key, delay)
        return delay
