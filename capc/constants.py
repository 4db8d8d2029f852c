"""Centralized constants and enums for capc.

Condition types, reasons, finalizers, labels and requeue intervals are
defined here so reconcilers, tests and serialized status agree on spelling.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# API groups
# =============================================================================

INFRA_GROUP: Final = "infrastructure.cluster.x-k8s.io"
INFRA_VERSION: Final = "v1beta2"
CAPI_GROUP: Final = "cluster.x-k8s.io"
CAPI_VERSION: Final = "v1beta1"

# =============================================================================
# Finalizers, labels, annotations
# =============================================================================

CLUSTER_FINALIZER: Final = "contabocluster.infrastructure.cluster.x-k8s.io"
MACHINE_FINALIZER: Final = "contabomachine.infrastructure.cluster.x-k8s.io"

CLUSTER_NAME_LABEL: Final = "cluster.x-k8s.io/cluster-name"
CONTROL_PLANE_LABEL: Final = "cluster.x-k8s.io/control-plane"
PAUSED_ANNOTATION: Final = "cluster.x-k8s.io/paused"


class MachineAction(StrEnum):
    """Side actions requested through ``capc.contabo.com/<action>`` annotations.

    The annotation value is an opaque token; a new token triggers the action once.
    """

    REINSTALL = "reinstall"
    RESCUE = "rescue"
    RESET_PASSWORD = "reset-password"

    @property
    def annotation(self) -> str:
        return f"capc.contabo.com/{self.value}"


# =============================================================================
# Provider naming
# =============================================================================

PROVIDER_ID_PREFIX: Final = "contabo://"
MAX_PROVIDER_NAME_LENGTH: Final = 255
MAX_SECRET_NAME_LENGTH: Final = 253
SSH_SECRET_SUFFIX: Final = "-cntb-sshkey"
SSH_PRIVATE_KEY: Final = "id_rsa"
SSH_PUBLIC_KEY: Final = "id_rsa.pub"
BOOTSTRAP_DATA_KEY: Final = "value"

DEFAULT_IMAGE_ID: Final = "d64d5c6c-9dda-4e38-8174-0ee282474d8a"
DEFAULT_PRODUCT_ID: Final = "V76"
DEFAULT_REGION: Final = "EU"
DEFAULT_USER: Final = "admin"

# =============================================================================
# Requeue intervals (seconds) for provider states that need polling
# =============================================================================

PROVISIONING_POLL: Final = 10.0
INSTALLING_POLL: Final = 30.0
BLOCKED_POLL: Final = 60.0

# =============================================================================
# Conditions
# =============================================================================


class ConditionType(StrEnum):
    READY = "Ready"

    # ContaboCluster
    CONTROL_PLANE_ENDPOINT_READY = "ControlPlaneEndpointReady"
    CLUSTER_PRIVATE_NETWORK_READY = "ClusterPrivateNetworkReady"
    CLUSTER_SSH_KEY_READY = "ClusterSshKeyReady"

    # ContaboMachine
    CLUSTER_INFRASTRUCTURE_READY = "ClusterInfrastructureReady"
    BOOTSTRAP_DATA_AVAILABLE = "BootstrapDataAvailable"
    INSTANCE_READY = "InstanceReady"
    INSTANCE_CREATING = "InstanceCreating"
    INSTANCE_PROVISIONING = "InstanceProvisioning"
    INSTANCE_INSTALLING = "InstanceInstalling"
    INSTANCE_BOOTSTRAP = "InstanceBootstrap"
    MACHINE_PRIVATE_NETWORKS_READY = "MachinePrivateNetworksReady"


class Reason(StrEnum):
    AVAILABLE = "Available"
    DELETING = "Deleting"

    CONTROL_PLANE_ENDPOINT_READY = "ControlPlaneEndpointReady"
    WAITING_FOR_CONTROL_PLANE_ENDPOINT = "WaitingForControlPlaneEndpoint"

    CLUSTER_PRIVATE_NETWORK_CREATING = "ClusterPrivateNetworkCreating"
    CLUSTER_PRIVATE_NETWORK_READY = "ClusterPrivateNetworkReady"
    CLUSTER_PRIVATE_NETWORK_FAILED = "ClusterPrivateNetworkFailed"
    CLUSTER_PRIVATE_NETWORK_DELETING = "ClusterPrivateNetworkDeleting"
    CLUSTER_PRIVATE_NETWORK_SKIPPED = "ClusterPrivateNetworkSkipped"

    CLUSTER_SSH_KEY_CREATING = "ClusterSshKeyCreating"
    CLUSTER_SSH_KEY_READY = "ClusterSshKeyReady"
    CLUSTER_SSH_KEY_FAILED = "ClusterSshKeyFailed"
    CLUSTER_SSH_KEY_DELETING = "ClusterSshKeyDeleting"

    CLUSTER_INFRASTRUCTURE_READY = "ClusterInfrastructureReady"
    BOOTSTRAP_DATA_AVAILABLE = "BootstrapDataAvailable"
    WAITING_FOR_CLUSTER_INFRASTRUCTURE = "WaitingForClusterInfrastructure"
    WAITING_FOR_BOOTSTRAP_DATA = "WaitingForBootstrapData"
    WAITING_FOR_SSH_KEY = "WaitingForSshKey"
    WAITING_FOR_PRIVATE_NETWORKS = "WaitingForPrivateNetworks"

    INSTANCE_CREATING = "InstanceCreating"
    INSTANCE_PROVISIONING = "InstanceProvisioning"
    INSTANCE_INSTALLING = "InstanceInstalling"
    INSTANCE_READY = "InstanceReady"
    INSTANCE_FAILED = "InstanceFailed"
    INSTANCE_PROVISIONING_FAILED = "InstanceProvisioningFailed"
    INSTANCE_STOPPED = "InstanceStopped"
    INSTANCE_RESCUING = "InstanceRescuing"
    INSTANCE_RESETTING_PASSWORD = "InstanceResettingPassword"
    INSTANCE_STATUS_UNKNOWN = "InstanceStatusUnknown"
    INSTANCE_DELETING = "InstanceDeleting"
    INSTANCE_NOT_FOUND = "InstanceNotFound"
    INSTANCE_REINSTALLING = "InstanceReinstalling"
    INSTANCE_REINSTALLING_FAILED = "InstanceReinstallingFailed"
    INSTANCE_WAITING_FOR_CLOUD_INIT = "InstanceWaitingForCloudInit"
    INSTANCE_BOOTSTRAPED = "InstanceBootstraped"

    MACHINE_PRIVATE_NETWORK_ATTACHING = "MachinePrivateNetworkAttaching"
    MACHINE_PRIVATE_NETWORK_READY = "MachinePrivateNetworkReady"
    MACHINE_PRIVATE_NETWORK_FAILED = "MachinePrivateNetworkFailed"
    MACHINE_PRIVATE_NETWORK_DETACHING = "MachinePrivateNetworkDetaching"
    MACHINE_PRIVATE_NETWORK_SKIPPED = "MachinePrivateNetworkSkipped"


CLUSTER_READY_CONDITIONS: Final = (
    ConditionType.CLUSTER_PRIVATE_NETWORK_READY,
    ConditionType.CONTROL_PLANE_ENDPOINT_READY,
    ConditionType.CLUSTER_SSH_KEY_READY,
)

MACHINE_READY_CONDITIONS: Final = (
    ConditionType.INSTANCE_READY,
    ConditionType.MACHINE_PRIVATE_NETWORKS_READY,
)
