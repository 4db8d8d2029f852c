"""Deterministic names for provider-side and Kubernetes-side resources.

Names are derived from the cluster UUID and the machine name so a crashed
reconcile can find what it already created instead of creating it again.
"""

from __future__ import annotations

from capc.api.types import ClusterResource, MachineResource
from capc.constants import (
    MAX_PROVIDER_NAME_LENGTH,
    MAX_SECRET_NAME_LENGTH,
    SSH_SECRET_SUFFIX,
)


def _provider_name(cluster: ClusterResource, *parts: str) -> str:
    head = f"[{cluster.spec.display_name_prefix}]"
    return " ".join((head, cluster.status.cluster_uuid, *parts))[:MAX_PROVIDER_NAME_LENGTH]


def private_network_name(cluster: ClusterResource) -> str:
    if cluster.spec.private_network is not None and cluster.spec.private_network.name:
        return cluster.spec.private_network.name[:MAX_PROVIDER_NAME_LENGTH]
    return _provider_name(cluster)


def ssh_key_name(cluster: ClusterResource) -> str:
    return _provider_name(cluster)


def ssh_secret_name(cluster: ClusterResource) -> str:
    return f"{cluster.metadata.name}{SSH_SECRET_SUFFIX}"[:MAX_SECRET_NAME_LENGTH]


def instance_display_name(cluster: ClusterResource, machine: MachineResource) -> str:
    return _provider_name(cluster, machine.metadata.name)
