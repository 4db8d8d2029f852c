"""Explicit registry of the resource kinds the manager works with.

There is no process-wide scheme: the manager and the Kubernetes store are
handed a Registry, and ``default_registry()`` builds the one used in
production.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from capc.api.types import (
    CapiCluster,
    CapiMachine,
    ClusterResource,
    KubeObject,
    MachineResource,
)
from capc.constants import CAPI_GROUP, CAPI_VERSION, INFRA_GROUP, INFRA_VERSION


@dataclass(frozen=True, slots=True)
class ResourceKind:
    kind: str
    group: str
    version: str
    plural: str
    type: type[KubeObject]
    has_status: bool = True

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


class Registry:
    def __init__(self) -> None:
        self._by_kind: dict[str, ResourceKind] = {}
        self._by_type: dict[type, ResourceKind] = {}

    def register(self, rk: ResourceKind) -> None:
        if rk.kind in self._by_kind:
            raise ValueError(f"Kind '{rk.kind}' is already registered")
        self._by_kind[rk.kind] = rk
        self._by_type[rk.type] = rk

    def for_kind(self, kind: str) -> ResourceKind:
        try:
            return self._by_kind[kind]
        except KeyError:
            raise KeyError(
                f"Kind '{kind}' is not registered. Known: {', '.join(self._by_kind) or 'none'}"
            ) from None

    def for_type(self, cls: type) -> ResourceKind:
        try:
            return self._by_type[cls]
        except KeyError:
            raise KeyError(f"Type {cls.__name__} is not registered") from None

    def __contains__(self, item: object) -> bool:
        return item in self._by_kind or item in self._by_type

    def __iter__(self) -> Iterator[ResourceKind]:
        return iter(self._by_kind.values())

    def __len__(self) -> int:
        return len(self._by_kind)


def default_registry() -> Registry:
    registry = Registry()
    registry.register(ResourceKind(
        "ContaboCluster", INFRA_GROUP, INFRA_VERSION, "contaboclusters", ClusterResource,
    ))
    registry.register(ResourceKind(
        "ContaboMachine", INFRA_GROUP, INFRA_VERSION, "contabomachines", MachineResource,
    ))
    registry.register(ResourceKind(
        "Cluster", CAPI_GROUP, CAPI_VERSION, "clusters", CapiCluster, has_status=False,
    ))
    registry.register(ResourceKind(
        "Machine", CAPI_GROUP, CAPI_VERSION, "machines", CapiMachine, has_status=False,
    ))
    return registry
