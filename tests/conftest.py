from __future__ import annotations

import pytest

from capc.config import ControllerConfig
from capc.controllers.cluster import ClusterReconciler
from capc.controllers.machine import MachineReconciler
from capc.store.memory import MemoryStore
from tests.fakes import FakeProvider, FixedClock, fake_keygen


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def controller_config() -> ControllerConfig:
    return ControllerConfig(workers=2, reconcile_timeout=5.0, requeue_interval=30.0)


@pytest.fixture
def cluster_reconciler(
    store: MemoryStore, provider: FakeProvider, controller_config: ControllerConfig, clock: FixedClock,
) -> ClusterReconciler:
    return ClusterReconciler(store, provider, controller_config, clock=clock, keygen=fake_keygen)


@pytest.fixture
def machine_reconciler(
    store: MemoryStore, provider: FakeProvider, controller_config: ControllerConfig, clock: FixedClock,
) -> MachineReconciler:
    return MachineReconciler(store, provider, controller_config, clock=clock)
