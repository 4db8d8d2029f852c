"""Resource model for the infrastructure provider.

Two owned kinds (``ContaboCluster``, ``ContaboMachine``), the read-only
Cluster API kinds they hang off (``Cluster``, ``Machine``), core ``Secret``,
and the provider-side models the reconcilers mirror into status.

Every kind converts to and from the Kubernetes JSON shape with
``to_dict`` / ``from_dict``; everything else in the code base works with
these dataclasses.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, ClassVar, Protocol, Self

from capc.api.conditions import ConditionSet, format_time, parse_time
from capc.constants import (
    CAPI_GROUP,
    CAPI_VERSION,
    CONTROL_PLANE_LABEL,
    DEFAULT_IMAGE_ID,
    DEFAULT_PRODUCT_ID,
    DEFAULT_REGION,
    DEFAULT_USER,
    INFRA_GROUP,
    INFRA_VERSION,
    PAUSED_ANNOTATION,
)

# =============================================================================
# Metadata
# =============================================================================


@dataclass(frozen=True, slots=True, order=True)
class ObjectKey:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True, slots=True)
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> OwnerReference:
        return cls(
            api_version=raw.get("apiVersion", ""),
            kind=raw["kind"],
            name=raw["name"],
            uid=raw.get("uid", ""),
            controller=bool(raw.get("controller", False)),
        )


@dataclass(frozen=True, slots=True)
class ObjectReference:
    kind: str
    name: str
    namespace: str = ""
    api_version: str = ""

    def to_dict(self) -> dict[str, Any]:
        out = {"kind": self.kind, "name": self.name}
        if self.namespace:
            out["namespace"] = self.namespace
        if self.api_version:
            out["apiVersion"] = self.api_version
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> ObjectReference | None:
        if not raw:
            return None
        return cls(
            kind=raw.get("kind", ""),
            name=raw.get("name", ""),
            namespace=raw.get("namespace", ""),
            api_version=raw.get("apiVersion", ""),
        )


@dataclass(slots=True)
class ObjectMeta:
    name: str
    namespace: str = "default"
    uid: str = ""
    generation: int = 1
    resource_version: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[OwnerReference] = field(default_factory=list)
    deletion_timestamp: datetime | None = None

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def add_finalizer(self, finalizer: str) -> bool:
        if finalizer in self.finalizers:
            return False
        self.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        if finalizer not in self.finalizers:
            return False
        self.finalizers.remove(finalizer)
        return True

    def owner(self, kind: str) -> OwnerReference | None:
        return next((o for o in self.owner_references if o.kind == kind), None)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "generation": self.generation,
        }
        if self.uid:
            out["uid"] = self.uid
        if self.resource_version:
            out["resourceVersion"] = self.resource_version
        if self.labels:
            out["labels"] = dict(self.labels)
        if self.annotations:
            out["annotations"] = dict(self.annotations)
        if self.finalizers:
            out["finalizers"] = list(self.finalizers)
        if self.owner_references:
            out["ownerReferences"] = [o.to_dict() for o in self.owner_references]
        if self.deletion_timestamp is not None:
            out["deletionTimestamp"] = format_time(self.deletion_timestamp)
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ObjectMeta:
        deletion = raw.get("deletionTimestamp")
        return cls(
            name=raw["name"],
            namespace=raw.get("namespace") or "default",
            uid=raw.get("uid") or "",
            generation=int(raw.get("generation") or 1),
            resource_version=raw.get("resourceVersion") or "",
            labels=dict(raw.get("labels") or {}),
            annotations=dict(raw.get("annotations") or {}),
            finalizers=list(raw.get("finalizers") or []),
            owner_references=[OwnerReference.from_dict(o) for o in raw.get("ownerReferences") or []],
            deletion_timestamp=_parse_timestamp(deletion) if deletion else None,
        )


def _parse_timestamp(raw: str | datetime) -> datetime:
    if isinstance(raw, datetime):
        return raw
    return parse_time(raw)


class KubeObject(Protocol):
    KIND: ClassVar[str]
    metadata: ObjectMeta

    def to_dict(self) -> dict[str, Any]: ...

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Self: ...


# =============================================================================
# Provider-side models
# =============================================================================


class InstanceStatus(StrEnum):
    """Lifecycle states a compute instance can report."""

    CREATING = "creating"
    PROVISIONING = "provisioning"
    MANUAL_PROVISIONING = "manual_provisioning"
    INSTALLING = "installing"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
    FAILED = "failed"
    UNINSTALLED = "uninstalled"
    PRODUCT_NOT_AVAILABLE = "product_not_available"
    VERIFICATION_REQUIRED = "verification_required"
    PENDING_PAYMENT = "pending_payment"
    RESCUE = "rescue"
    RESET_PASSWORD = "reset_password"
    UNKNOWN = "unknown"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: str | None) -> InstanceStatus:
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(raw.strip().lower().replace("-", "_"))
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True, slots=True)
class ProviderInstance:
    instance_id: int
    display_name: str
    status: InstanceStatus
    product_id: str = ""
    region: str = ""
    image_id: str = ""
    default_user: str = ""
    ipv4: str = ""
    ipv6: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "instanceId": self.instance_id,
            "displayName": self.display_name,
            "status": self.status.value,
            "productId": self.product_id,
            "region": self.region,
            "imageId": self.image_id,
            "defaultUser": self.default_user,
            "ipv4": self.ipv4,
            "ipv6": self.ipv6,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> ProviderInstance | None:
        if not raw:
            return None
        return cls(
            instance_id=int(raw["instanceId"]),
            display_name=raw.get("displayName", ""),
            status=InstanceStatus.parse(raw.get("status")),
            product_id=raw.get("productId", ""),
            region=raw.get("region", ""),
            image_id=raw.get("imageId", ""),
            default_user=raw.get("defaultUser", ""),
            ipv4=raw.get("ipv4", ""),
            ipv6=raw.get("ipv6", ""),
        )


@dataclass(frozen=True, slots=True)
class PrivateNetwork:
    network_id: int
    name: str
    region: str = ""
    data_center: str = ""
    cidr: str = ""
    instances: dict[int, str] = field(default_factory=dict)
    """Attached instance id -> private IPv4 (empty when not yet assigned)."""


@dataclass(frozen=True, slots=True)
class ProviderSecret:
    secret_id: int
    name: str
    type: str = "ssh"


# =============================================================================
# ContaboCluster
# =============================================================================


@dataclass(frozen=True, slots=True)
class APIEndpoint:
    host: str = ""
    port: int = 0

    @property
    def is_set(self) -> bool:
        return bool(self.host) and self.port > 0


@dataclass(frozen=True, slots=True)
class PrivateNetworkSpec:
    name: str = ""
    region: str = ""


@dataclass(slots=True)
class ClusterSpec:
    region: str = DEFAULT_REGION
    control_plane_endpoint: APIEndpoint = field(default_factory=APIEndpoint)
    private_network: PrivateNetworkSpec | None = field(default_factory=PrivateNetworkSpec)
    display_name_prefix: str = "capc"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "region": self.region,
            "controlPlaneEndpoint": {
                "host": self.control_plane_endpoint.host,
                "port": self.control_plane_endpoint.port,
            },
            "tagging": {"displayNamePrefix": self.display_name_prefix},
        }
        if self.private_network is not None:
            out["privateNetwork"] = {
                "name": self.private_network.name,
                "region": self.private_network.region,
            }
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ClusterSpec:
        endpoint = raw.get("controlPlaneEndpoint") or {}
        network = raw.get("privateNetwork")
        return cls(
            region=raw.get("region") or DEFAULT_REGION,
            control_plane_endpoint=APIEndpoint(
                host=endpoint.get("host") or "",
                port=int(endpoint.get("port") or 0),
            ),
            private_network=(
                PrivateNetworkSpec(name=network.get("name") or "", region=network.get("region") or "")
                if network is not None else None
            ),
            display_name_prefix=(raw.get("tagging") or {}).get("displayNamePrefix") or "capc",
        )


@dataclass(frozen=True, slots=True)
class PrivateNetworkStatus:
    network_id: int
    name: str
    region: str = ""
    data_center: str = ""
    cidr: str = ""

    @classmethod
    def of(cls, network: PrivateNetwork) -> PrivateNetworkStatus:
        return cls(
            network_id=network.network_id,
            name=network.name,
            region=network.region,
            data_center=network.data_center,
            cidr=network.cidr,
        )


@dataclass(frozen=True, slots=True)
class SshKeyStatus:
    name: str
    secret_name: str
    secret_id: int | None = None


@dataclass(slots=True)
class ClusterStatus:
    ready: bool = False
    cluster_uuid: str = ""
    private_network: PrivateNetworkStatus | None = None
    ssh_key: SshKeyStatus | None = None
    provisioned: bool = False
    failure_domains: list[str] = field(default_factory=list)
    conditions: ConditionSet = field(default_factory=ConditionSet)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ready": self.ready,
            "initialization": {"provisioned": self.provisioned},
            "conditions": self.conditions.to_list(),
        }
        if self.cluster_uuid:
            out["clusterUUID"] = self.cluster_uuid
        if self.private_network is not None:
            pn = self.private_network
            out["privateNetwork"] = {
                "privateNetworkId": pn.network_id,
                "name": pn.name,
                "region": pn.region,
                "dataCenter": pn.data_center,
                "cidr": pn.cidr,
            }
        if self.ssh_key is not None:
            out["sshKey"] = {
                "name": self.ssh_key.name,
                "secretName": self.ssh_key.secret_name,
                "secretId": self.ssh_key.secret_id,
            }
        if self.failure_domains:
            out["failureDomains"] = {fd: {"controlPlane": True} for fd in self.failure_domains}
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> ClusterStatus:
        raw = raw or {}
        pn = raw.get("privateNetwork")
        ssh = raw.get("sshKey")
        return cls(
            ready=bool(raw.get("ready", False)),
            cluster_uuid=raw.get("clusterUUID") or "",
            private_network=PrivateNetworkStatus(
                network_id=int(pn["privateNetworkId"]),
                name=pn.get("name", ""),
                region=pn.get("region", ""),
                data_center=pn.get("dataCenter", ""),
                cidr=pn.get("cidr", ""),
            ) if pn else None,
            ssh_key=SshKeyStatus(
                name=ssh.get("name", ""),
                secret_name=ssh.get("secretName", ""),
                secret_id=ssh.get("secretId"),
            ) if ssh else None,
            provisioned=bool((raw.get("initialization") or {}).get("provisioned", False)),
            failure_domains=list(raw.get("failureDomains") or {}),
            conditions=ConditionSet.from_list(raw.get("conditions")),
        )


@dataclass(slots=True)
class ClusterResource:
    KIND: ClassVar[str] = "ContaboCluster"

    metadata: ObjectMeta
    spec: ClusterSpec = field(default_factory=ClusterSpec)
    status: ClusterStatus = field(default_factory=ClusterStatus)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": f"{INFRA_GROUP}/{INFRA_VERSION}",
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ClusterResource:
        return cls(
            metadata=ObjectMeta.from_dict(raw["metadata"]),
            spec=ClusterSpec.from_dict(raw.get("spec") or {}),
            status=ClusterStatus.from_dict(raw.get("status")),
        )


# =============================================================================
# ContaboMachine
# =============================================================================


@dataclass(frozen=True, slots=True)
class InstanceSpec:
    product_id: str = DEFAULT_PRODUCT_ID
    image_id: str = DEFAULT_IMAGE_ID
    region: str = ""
    default_user: str = DEFAULT_USER


@dataclass(slots=True)
class MachineSpec:
    provider_id: str = ""
    instance: InstanceSpec = field(default_factory=InstanceSpec)
    attach_private_network: bool = True

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "instance": {
                "productId": self.instance.product_id,
                "imageId": self.instance.image_id,
                "region": self.instance.region,
                "defaultUser": self.instance.default_user,
            },
            "attachPrivateNetwork": self.attach_private_network,
        }
        if self.provider_id:
            out["providerID"] = self.provider_id
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MachineSpec:
        inst = raw.get("instance") or {}
        return cls(
            provider_id=raw.get("providerID") or "",
            instance=InstanceSpec(
                product_id=inst.get("productId") or DEFAULT_PRODUCT_ID,
                image_id=inst.get("imageId") or DEFAULT_IMAGE_ID,
                region=inst.get("region") or "",
                default_user=inst.get("defaultUser") or DEFAULT_USER,
            ),
            attach_private_network=bool(raw.get("attachPrivateNetwork", True)),
        )


@dataclass(frozen=True, slots=True)
class MachineAddress:
    type: str
    address: str


@dataclass(slots=True)
class MachineStatus:
    ready: bool = False
    instance: ProviderInstance | None = None
    addresses: list[MachineAddress] = field(default_factory=list)
    provisioned: bool = False
    error_message: str = ""
    failure_reason: str = ""
    failure_message: str = ""
    failure_generation: int | None = None
    private_network_id: int | None = None
    handled_actions: dict[str, str] = field(default_factory=dict)
    conditions: ConditionSet = field(default_factory=ConditionSet)

    @property
    def failed(self) -> bool:
        return bool(self.failure_reason)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ready": self.ready,
            "addresses": [{"type": a.type, "address": a.address} for a in self.addresses],
            "initialization": {"provisioned": self.provisioned},
            "conditions": self.conditions.to_list(),
        }
        if self.error_message:
            out["initialization"]["errorMessage"] = self.error_message
        if self.instance is not None:
            out["instance"] = self.instance.to_dict()
        if self.failure_reason:
            out["failureReason"] = self.failure_reason
            out["failureMessage"] = self.failure_message
            out["failureGeneration"] = self.failure_generation
        if self.private_network_id is not None:
            out["privateNetworkId"] = self.private_network_id
        if self.handled_actions:
            out["handledActions"] = dict(self.handled_actions)
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> MachineStatus:
        raw = raw or {}
        init = raw.get("initialization") or {}
        return cls(
            ready=bool(raw.get("ready", False)),
            instance=ProviderInstance.from_dict(raw.get("instance")),
            addresses=[MachineAddress(a["type"], a["address"]) for a in raw.get("addresses") or []],
            provisioned=bool(init.get("provisioned", False)),
            error_message=init.get("errorMessage") or "",
            failure_reason=raw.get("failureReason") or "",
            failure_message=raw.get("failureMessage") or "",
            failure_generation=raw.get("failureGeneration"),
            private_network_id=raw.get("privateNetworkId"),
            handled_actions=dict(raw.get("handledActions") or {}),
            conditions=ConditionSet.from_list(raw.get("conditions")),
        )


@dataclass(slots=True)
class MachineResource:
    KIND: ClassVar[str] = "ContaboMachine"

    metadata: ObjectMeta
    spec: MachineSpec = field(default_factory=MachineSpec)
    status: MachineStatus = field(default_factory=MachineStatus)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": f"{INFRA_GROUP}/{INFRA_VERSION}",
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MachineResource:
        return cls(
            metadata=ObjectMeta.from_dict(raw["metadata"]),
            spec=MachineSpec.from_dict(raw.get("spec") or {}),
            status=MachineStatus.from_dict(raw.get("status")),
        )


# =============================================================================
# Cluster API objects (read-only)
# =============================================================================


@dataclass(slots=True)
class CapiCluster:
    KIND: ClassVar[str] = "Cluster"

    metadata: ObjectMeta
    infrastructure_ref: ObjectReference | None = None
    paused: bool = False

    @property
    def is_paused(self) -> bool:
        return self.paused or PAUSED_ANNOTATION in self.metadata.annotations

    def to_dict(self) -> dict[str, Any]:
        spec: dict[str, Any] = {"paused": self.paused}
        if self.infrastructure_ref is not None:
            spec["infrastructureRef"] = self.infrastructure_ref.to_dict()
        return {
            "apiVersion": f"{CAPI_GROUP}/{CAPI_VERSION}",
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "spec": spec,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CapiCluster:
        spec = raw.get("spec") or {}
        return cls(
            metadata=ObjectMeta.from_dict(raw["metadata"]),
            infrastructure_ref=ObjectReference.from_dict(spec.get("infrastructureRef")),
            paused=bool(spec.get("paused", False)),
        )


@dataclass(slots=True)
class CapiMachine:
    KIND: ClassVar[str] = "Machine"

    metadata: ObjectMeta
    cluster_name: str = ""
    data_secret_name: str | None = None
    infrastructure_ref: ObjectReference | None = None
    node_ref: str | None = None

    @property
    def is_control_plane(self) -> bool:
        return CONTROL_PLANE_LABEL in self.metadata.labels

    def to_dict(self) -> dict[str, Any]:
        spec: dict[str, Any] = {
            "clusterName": self.cluster_name,
            "bootstrap": {"dataSecretName": self.data_secret_name} if self.data_secret_name else {},
        }
        if self.infrastructure_ref is not None:
            spec["infrastructureRef"] = self.infrastructure_ref.to_dict()
        status: dict[str, Any] = {}
        if self.node_ref:
            status["nodeRef"] = {"kind": "Node", "name": self.node_ref}
        return {
            "apiVersion": f"{CAPI_GROUP}/{CAPI_VERSION}",
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "spec": spec,
            "status": status,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CapiMachine:
        spec = raw.get("spec") or {}
        node_ref = (raw.get("status") or {}).get("nodeRef") or {}
        return cls(
            metadata=ObjectMeta.from_dict(raw["metadata"]),
            cluster_name=spec.get("clusterName") or "",
            data_secret_name=(spec.get("bootstrap") or {}).get("dataSecretName"),
            infrastructure_ref=ObjectReference.from_dict(spec.get("infrastructureRef")),
            node_ref=node_ref.get("name"),
        )


@dataclass(slots=True)
class Secret:
    """Core Secret; ``data`` holds decoded text, base64 lives only on the wire."""

    KIND: ClassVar[str] = "Secret"

    metadata: ObjectMeta
    data: dict[str, str] = field(default_factory=dict)
    type: str = "Opaque"

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "type": self.type,
            "data": {k: base64.b64encode(v.encode()).decode() for k, v in self.data.items()},
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Secret:
        return cls(
            metadata=ObjectMeta.from_dict(raw["metadata"]),
            data={k: base64.b64decode(v).decode() for k, v in (raw.get("data") or {}).items()},
            type=raw.get("type") or "Opaque",
        )
