"""Resource model, condition ledger and kind registry."""

from capc.api.conditions import Condition, ConditionSet, ConditionStatus
from capc.api.registry import Registry, ResourceKind, default_registry
from capc.api.types import (
    CapiCluster,
    CapiMachine,
    ClusterResource,
    InstanceStatus,
    MachineResource,
    ObjectKey,
    ObjectMeta,
    PrivateNetwork,
    ProviderInstance,
    ProviderSecret,
    Secret,
)

__all__ = [
    "CapiCluster",
    "CapiMachine",
    "ClusterResource",
    "Condition",
    "ConditionSet",
    "ConditionStatus",
    "InstanceStatus",
    "MachineResource",
    "ObjectKey",
    "ObjectMeta",
    "PrivateNetwork",
    "ProviderInstance",
    "ProviderSecret",
    "Registry",
    "ResourceKind",
    "Secret",
    "default_registry",
]
