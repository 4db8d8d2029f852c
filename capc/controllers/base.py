"""Shared reconciler plumbing: results and optimistic persistence."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from capc.api.conditions import Clock, utcnow
from capc.api.types import ClusterResource, MachineResource
from capc.config import ControllerConfig
from capc.providers.base import ComputeProvider
from capc.store.base import ObjectStore

type Owned = ClusterResource | MachineResource


@dataclass(frozen=True, slots=True)
class Result:
    """Outcome of a reconcile that did not raise.

    ``requeue_after`` asks for another pass after a fixed delay; ``requeue``
    asks for one as soon as possible. Neither means "done until something
    changes" (the controller still schedules its periodic resync).
    ``forget`` means the object no longer exists and the key should be
    dropped without a resync.
    """

    requeue: bool = False
    requeue_after: float | None = None
    forget: bool = False


DONE = Result()
GONE = Result(forget=True)


class Reconciler:
    """Base for the cluster and machine reconcilers.

    Holds the store, provider and clock, and knows how to write an owned
    object back: metadata/spec through ``update``, status through
    ``update_status``. Status is only written when it changed since the
    object was read, so a pass over an unchanged world performs no writes.
    """

    def __init__(
        self,
        store: ObjectStore,
        provider: ComputeProvider,
        config: ControllerConfig,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._provider = provider
        self._config = config
        self._clock = clock

    def _wait(self) -> Result:
        return Result(requeue_after=self._config.requeue_interval)

    def _snapshot(self, obj: Owned) -> dict[str, Any]:
        obj.status.conditions.clock = self._clock
        return obj.status.to_dict()

    async def _persist_meta(self, obj: Owned) -> None:
        stored = await self._store.update(obj)
        obj.metadata.resource_version = stored.metadata.resource_version
        obj.metadata.generation = stored.metadata.generation

    async def _persist_status(self, obj: Owned, before: dict[str, Any]) -> bool:
        if obj.status.to_dict() == before:
            return False
        stored = await self._store.update_status(obj)
        obj.metadata.resource_version = stored.metadata.resource_version
        return True

    async def _checkpoint(self, obj: Owned) -> None:
        """Write status now instead of at the end of the pass.

        Called right after a provider resource is created (or named), so
        the record that identifies it survives a failure later in the pass.
        """
        stored = await self._store.update_status(obj)
        obj.metadata.resource_version = stored.metadata.resource_version
