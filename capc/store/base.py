"""Object store contract.

The reconcilers read and write Kubernetes objects only through an
``ObjectStore``. Writes are optimistic: the object's
``metadata.resource_version`` must match the stored one, otherwise
``ConflictError`` is raised and the reconcile is retried.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, runtime_checkable

from capc.api.types import KubeObject, ObjectKey, Secret


class EventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True, slots=True)
class WatchEvent[T]:
    type: EventType
    object: T


@runtime_checkable
class ObjectStore(Protocol):
    async def get[T: KubeObject](self, kind: type[T], key: ObjectKey) -> T | None: ...

    async def list[T: KubeObject](
        self,
        kind: type[T],
        *,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[T]: ...

    async def update[T: KubeObject](self, obj: T) -> T:
        """Write metadata and spec. Returns the stored object."""
        ...

    async def update_status[T: KubeObject](self, obj: T) -> T:
        """Write the status sub-resource only. Returns the stored object."""
        ...

    def watch[T: KubeObject](self, kind: type[T]) -> AsyncIterator[WatchEvent[T]]: ...

    async def get_secret(self, key: ObjectKey) -> Secret | None: ...

    async def create_secret(self, secret: Secret) -> Secret: ...

    async def delete_secret(self, key: ObjectKey) -> bool:
        """Delete a secret. Returns False when it did not exist."""
        ...


def matches_labels(obj: KubeObject, labels: dict[str, str] | None) -> bool:
    if not labels:
        return True
    return all(obj.metadata.labels.get(k) == v for k, v in labels.items())
