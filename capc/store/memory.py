"""In-memory object store.

Behaves like the API server for the parts the reconcilers rely on:
resource versions and conflicts, finalizer-gated deletion, a status
sub-resource that ``update`` does not touch, generation bumps on spec
changes, and watch events. Used by ``--store memory`` and the tests.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Any

from capc.api.conditions import utcnow
from capc.api.types import KubeObject, ObjectKey, Secret
from capc.core.exceptions import ConflictError, ObjectNotFoundError
from capc.observability.logger import logger
from capc.store.base import EventType, WatchEvent, matches_labels


def _spec_of(obj: KubeObject) -> Any:
    return obj.to_dict().get("spec")


class MemoryStore:
    def __init__(self) -> None:
        self._objects: dict[tuple[str, ObjectKey], Any] = {}
        self._secrets: dict[ObjectKey, Secret] = {}
        self._watchers: dict[str, list[asyncio.Queue[WatchEvent[Any]]]] = defaultdict(list)
        self._version = 0
        self._log = logger.bind(component="store", backend="memory")

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _emit(self, type: EventType, obj: KubeObject) -> None:
        for queue in self._watchers[obj.KIND]:
            queue.put_nowait(WatchEvent(type, copy.deepcopy(obj)))

    def _require[T: KubeObject](self, obj: T) -> T:
        stored = self._objects.get((obj.KIND, obj.metadata.key))
        if stored is None:
            raise ObjectNotFoundError(obj.KIND, obj.metadata.key)
        if obj.metadata.resource_version != stored.metadata.resource_version:
            raise ConflictError(obj.KIND, obj.metadata.key)
        return stored

    # ─── Objects ─────────────────────────────────────────────────────

    async def create[T: KubeObject](self, obj: T) -> T:
        slot = (obj.KIND, obj.metadata.key)
        if slot in self._objects:
            raise ConflictError(obj.KIND, obj.metadata.key)
        new = copy.deepcopy(obj)
        new.metadata.uid = new.metadata.uid or str(uuid.uuid4())
        new.metadata.generation = 1
        new.metadata.resource_version = self._next_version()
        self._objects[slot] = new
        self._emit(EventType.ADDED, new)
        return copy.deepcopy(new)

    async def get[T: KubeObject](self, kind: type[T], key: ObjectKey) -> T | None:
        stored = self._objects.get((kind.KIND, key))
        return copy.deepcopy(stored) if stored is not None else None

    async def list[T: KubeObject](
        self,
        kind: type[T],
        *,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[T]:
        return [
            copy.deepcopy(obj)
            for (k, key), obj in sorted(self._objects.items(), key=lambda item: item[0][1])
            if k == kind.KIND
            and (namespace is None or key.namespace == namespace)
            and matches_labels(obj, labels)
        ]

    async def update[T: KubeObject](self, obj: T) -> T:
        stored = self._require(obj)
        new = copy.deepcopy(obj)
        if hasattr(stored, "status"):
            new.status = copy.deepcopy(stored.status)
        if _spec_of(new) != _spec_of(stored):
            new.metadata.generation = stored.metadata.generation + 1
        else:
            new.metadata.generation = stored.metadata.generation
        # deletionTimestamp can only be set through delete()
        new.metadata.deletion_timestamp = stored.metadata.deletion_timestamp
        new.metadata.resource_version = self._next_version()
        return self._store(new)

    async def update_status[T: KubeObject](self, obj: T) -> T:
        stored = self._require(obj)
        new = copy.deepcopy(stored)
        new.status = copy.deepcopy(obj.status)  # type: ignore[attr-defined]
        new.metadata.resource_version = self._next_version()
        return self._store(new)

    async def delete[T: KubeObject](self, kind: type[T], key: ObjectKey) -> bool:
        """Request deletion; the object stays until its finalizers are gone."""
        stored = self._objects.get((kind.KIND, key))
        if stored is None:
            return False
        new = copy.deepcopy(stored)
        if new.metadata.deletion_timestamp is None:
            new.metadata.deletion_timestamp = utcnow()
        new.metadata.resource_version = self._next_version()
        self._store(new)
        return True

    def _store[T: KubeObject](self, obj: T) -> T:
        slot = (obj.KIND, obj.metadata.key)
        if obj.metadata.deleting and not obj.metadata.finalizers:
            del self._objects[slot]
            self._log.debug("Removed {kind} {key}", kind=obj.KIND, key=str(obj.metadata.key))
            self._emit(EventType.DELETED, obj)
        else:
            self._objects[slot] = obj
            self._emit(EventType.MODIFIED, obj)
        return copy.deepcopy(obj)

    async def watch[T: KubeObject](self, kind: type[T]) -> AsyncIterator[WatchEvent[T]]:
        queue: asyncio.Queue[WatchEvent[Any]] = asyncio.Queue()
        self._watchers[kind.KIND].append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._watchers[kind.KIND].remove(queue)

    # ─── Secrets ─────────────────────────────────────────────────────

    async def get_secret(self, key: ObjectKey) -> Secret | None:
        secret = self._secrets.get(key)
        return copy.deepcopy(secret) if secret is not None else None

    async def create_secret(self, secret: Secret) -> Secret:
        key = secret.metadata.key
        if key in self._secrets:
            raise ConflictError(secret.KIND, key)
        new = copy.deepcopy(secret)
        new.metadata.uid = new.metadata.uid or str(uuid.uuid4())
        new.metadata.resource_version = self._next_version()
        self._secrets[key] = new
        return copy.deepcopy(new)

    async def delete_secret(self, key: ObjectKey) -> bool:
        return self._secrets.pop(key, None) is not None
