from __future__ import annotations

import pytest

from capc.api.registry import Registry, ResourceKind, default_registry
from capc.api.types import CapiCluster, CapiMachine, ClusterResource, MachineResource, Secret

pytestmark = [pytest.mark.unit]


class TestRegistry:
    def test_default_kinds(self):
        registry = default_registry()

        assert [rk.kind for rk in registry] == ["ContaboCluster", "ContaboMachine", "Cluster", "Machine"]
        assert registry.for_type(MachineResource).plural == "contabomachines"
        assert registry.for_kind("Cluster").type is CapiCluster
        assert registry.for_type(ClusterResource).api_version == "infrastructure.cluster.x-k8s.io/v1beta2"
        assert not registry.for_type(CapiMachine).has_status

    def test_registries_are_independent(self):
        a = default_registry()
        b = Registry()

        assert len(a) == 4
        assert len(b) == 0
        assert ClusterResource not in b

    def test_duplicate_kind_rejected(self):
        registry = Registry()
        rk = ResourceKind("Secret", "", "v1", "secrets", Secret, has_status=False)
        registry.register(rk)

        with pytest.raises(ValueError, match="already registered"):
            registry.register(rk)

    def test_lookup_errors_name_the_missing_kind(self):
        registry = default_registry()

        with pytest.raises(KeyError, match="Known: ContaboCluster"):
            registry.for_kind("Node")
        with pytest.raises(KeyError, match="Secret"):
            registry.for_type(Secret)

    def test_contains_kind_or_type(self):
        registry = default_registry()
        assert "ContaboMachine" in registry
        assert MachineResource in registry
        assert "Node" not in registry
