from __future__ import annotations

from datetime import UTC, datetime

import pytest

from capc.api.types import (
    APIEndpoint,
    CapiCluster,
    CapiMachine,
    ClusterResource,
    ClusterSpec,
    InstanceStatus,
    MachineResource,
    MachineStatus,
    ObjectMeta,
    OwnerReference,
    ProviderInstance,
    Secret,
)
from capc.constants import DEFAULT_PRODUCT_ID, PAUSED_ANNOTATION
from capc.core.exceptions import InvalidSpecError
from capc.providers.base import build_provider_id, parse_provider_id

pytestmark = [pytest.mark.unit]


class TestObjectMeta:
    def test_finalizers(self):
        meta = ObjectMeta(name="x")

        assert meta.add_finalizer("f")
        assert not meta.add_finalizer("f")
        assert meta.finalizers == ["f"]
        assert meta.remove_finalizer("f")
        assert not meta.remove_finalizer("f")

    def test_owner_lookup(self):
        meta = ObjectMeta(name="x", owner_references=[
            OwnerReference(api_version="v1", kind="Machine", name="m"),
        ])
        assert meta.owner("Machine").name == "m"  # type: ignore[union-attr]
        assert meta.owner("Cluster") is None

    def test_from_kubernetes_shape(self):
        meta = ObjectMeta.from_dict({
            "name": "x",
            "namespace": "ns",
            "generation": 3,
            "resourceVersion": "42",
            "finalizers": ["f"],
            "deletionTimestamp": "2026-01-01T00:00:00Z",
            "ownerReferences": [{"apiVersion": "v1", "kind": "Machine", "name": "m", "controller": True}],
        })

        assert meta.key.namespace == "ns"
        assert meta.generation == 3
        assert meta.deleting
        assert meta.deletion_timestamp == datetime(2026, 1, 1, tzinfo=UTC)
        assert meta.owner_references[0].controller
        assert ObjectMeta.from_dict(meta.to_dict()) == meta


class TestInstanceStatus:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("running", InstanceStatus.RUNNING),
            ("RUNNING", InstanceStatus.RUNNING),
            ("manual-provisioning", InstanceStatus.MANUAL_PROVISIONING),
            (None, InstanceStatus.UNKNOWN),
            ("", InstanceStatus.UNKNOWN),
            ("something_new", InstanceStatus.OTHER),
        ],
    )
    def test_parse(self, raw: str | None, expected: InstanceStatus):
        assert InstanceStatus.parse(raw) == expected


class TestCluster:
    def test_spec_defaults_from_empty(self):
        spec = ClusterSpec.from_dict({})

        assert spec.region == "EU"
        assert not spec.control_plane_endpoint.is_set
        assert spec.private_network is None
        assert spec.display_name_prefix == "capc"

    def test_endpoint_is_set(self):
        assert APIEndpoint("1.2.3.4", 6443).is_set
        assert not APIEndpoint("1.2.3.4", 0).is_set
        assert not APIEndpoint("", 6443).is_set

    def test_resource_round_trip(self):
        raw = {
            "apiVersion": "infrastructure.cluster.x-k8s.io/v1beta2",
            "kind": "ContaboCluster",
            "metadata": {"name": "c", "namespace": "default"},
            "spec": {
                "region": "US-east",
                "controlPlaneEndpoint": {"host": "203.0.113.1", "port": 6443},
                "privateNetwork": {"name": "net"},
            },
            "status": {
                "ready": True,
                "clusterUUID": "abc",
                "privateNetwork": {"privateNetworkId": 5, "name": "net"},
                "sshKey": {"name": "k", "secretName": "c-cntb-sshkey", "secretId": 9},
                "failureDomains": {"US-east": {"controlPlane": True}},
            },
        }

        cluster = ClusterResource.from_dict(raw)

        assert cluster.spec.private_network is not None
        assert cluster.spec.private_network.name == "net"
        assert cluster.status.private_network is not None
        assert cluster.status.private_network.network_id == 5
        assert cluster.status.ssh_key is not None
        assert cluster.status.ssh_key.secret_id == 9
        assert cluster.status.failure_domains == ["US-east"]
        assert ClusterResource.from_dict(cluster.to_dict()).to_dict() == cluster.to_dict()


class TestMachine:
    def test_spec_defaults(self):
        machine = MachineResource.from_dict({"metadata": {"name": "m"}})

        assert machine.spec.provider_id == ""
        assert machine.spec.instance.product_id == DEFAULT_PRODUCT_ID
        assert machine.spec.attach_private_network
        assert "providerID" not in machine.spec.to_dict()

    def test_status_round_trip(self):
        status = MachineStatus(
            ready=False,
            instance=ProviderInstance(instance_id=7, display_name="x", status=InstanceStatus.ERROR),
            failure_reason="InstanceFailed",
            failure_message="boom",
            failure_generation=2,
            error_message="boom",
            handled_actions={"rescue": "t1"},
        )

        raw = status.to_dict()
        restored = MachineStatus.from_dict(raw)

        assert raw["initialization"]["errorMessage"] == "boom"
        assert restored.failed
        assert restored.instance == status.instance
        assert restored.to_dict() == raw


class TestCapiObjects:
    def test_cluster_paused(self):
        cluster = CapiCluster.from_dict({"metadata": {"name": "c"}, "spec": {"paused": True}})
        assert cluster.is_paused

        annotated = CapiCluster(metadata=ObjectMeta(name="c", annotations={PAUSED_ANNOTATION: ""}))
        assert annotated.is_paused
        assert not CapiCluster(metadata=ObjectMeta(name="c")).is_paused

    def test_machine_fields(self):
        machine = CapiMachine.from_dict({
            "metadata": {"name": "m", "labels": {"cluster.x-k8s.io/control-plane": ""}},
            "spec": {
                "clusterName": "c",
                "bootstrap": {"dataSecretName": "m-bootstrap"},
                "infrastructureRef": {"kind": "ContaboMachine", "name": "m"},
            },
            "status": {"nodeRef": {"kind": "Node", "name": "node-1"}},
        })

        assert machine.cluster_name == "c"
        assert machine.data_secret_name == "m-bootstrap"
        assert machine.infrastructure_ref is not None
        assert machine.infrastructure_ref.kind == "ContaboMachine"
        assert machine.node_ref == "node-1"
        assert machine.is_control_plane

    def test_secret_data_is_base64_on_the_wire(self):
        secret = Secret(metadata=ObjectMeta(name="s"), data={"value": "hello"})

        raw = secret.to_dict()

        assert raw["data"] == {"value": "aGVsbG8="}
        assert Secret.from_dict(raw).data == {"value": "hello"}


class TestProviderId:
    def test_build_and_parse(self):
        assert build_provider_id(12345) == "contabo://12345"
        assert parse_provider_id("contabo://12345") == 12345

    @pytest.mark.parametrize("raw", ["", "aws:///i-1", "contabo://", "contabo://abc"])
    def test_invalid(self, raw: str):
        with pytest.raises(InvalidSpecError) as exc_info:
            parse_provider_id(raw)
        assert exc_info.value.reason == "InvalidProviderID"
