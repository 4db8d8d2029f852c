from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import pytest

from capc.api.registry import Registry
from capc.api.types import ClusterResource, InstanceStatus, MachineResource, ObjectKey
from capc.config import ControllerConfig
from capc.constants import CLUSTER_NAME_LABEL
from capc.scheduler.manager import Manager
from capc.store.base import WatchEvent
from capc.store.memory import MemoryStore
from tests.fakes import (
    CLUSTER,
    MACHINE,
    NAMESPACE,
    FakeProvider,
    FixedClock,
    fake_keygen,
    make_capi_cluster,
    make_capi_machine,
    make_cluster,
    make_machine,
    seed_cluster,
    seed_machine,
)

pytestmark = [pytest.mark.unit]

CLUSTER_KEY = ObjectKey(NAMESPACE, CLUSTER)
MACHINE_KEY = ObjectKey(NAMESPACE, MACHINE)


async def eventually(check: Callable[[], Awaitable[bool]], timeout: float = 5.0) -> None:
    async with asyncio.timeout(timeout):
        while not await check():
            await asyncio.sleep(0.01)


class FlakyWatchStore(MemoryStore):
    """Drops the first watch of every kind before it delivers anything."""

    def __init__(self) -> None:
        super().__init__()
        self.subscriptions: Counter[str] = Counter()

    async def watch(self, kind: type[Any]) -> AsyncIterator[WatchEvent[Any]]:
        self.subscriptions[kind.KIND] += 1
        if self.subscriptions[kind.KIND] == 1:
            raise ConnectionResetError("watch connection reset")
        async for event in super().watch(kind):
            yield event


@pytest.fixture
def fast_config() -> ControllerConfig:
    return ControllerConfig(
        workers=2, reconcile_timeout=5.0, requeue_interval=0.05, resync_period=60.0, backoff_base=0.05,
    )


@pytest.fixture
def manager(store: MemoryStore, provider: FakeProvider, fast_config: ControllerConfig) -> Manager:
    return Manager(store, provider, fast_config, clock=FixedClock(), keygen=fake_keygen)


class TestEventMapping:
    async def test_capi_machine_maps_to_infrastructure_machine(self, manager: Manager):
        await manager._on_capi_machine(make_capi_machine())
        assert MACHINE_KEY in manager.machines.queue

    async def test_capi_cluster_maps_to_cluster_and_its_machines(self, store: MemoryStore, manager: Manager):
        machine = make_machine()
        machine.metadata.labels[CLUSTER_NAME_LABEL] = CLUSTER
        await store.create(machine)
        await store.create(make_machine("other"))

        await manager._on_capi_cluster(make_capi_cluster())

        assert CLUSTER_KEY in manager.clusters.queue
        assert MACHINE_KEY in manager.machines.queue
        assert ObjectKey(NAMESPACE, "other") not in manager.machines.queue

    async def test_infrastructure_cluster_event_requeues_its_machines(self, store: MemoryStore, manager: Manager):
        machine = make_machine()
        machine.metadata.labels[CLUSTER_NAME_LABEL] = CLUSTER
        await store.create(machine)

        await manager._on_cluster(make_cluster())

        assert CLUSTER_KEY in manager.clusters.queue
        assert MACHINE_KEY in manager.machines.queue

    async def test_unregistered_kinds_are_not_watched(self, store: MemoryStore, provider: FakeProvider):
        manager = Manager(store, provider, ControllerConfig(workers=1), registry=Registry(), keygen=fake_keygen)
        async with manager:
            assert manager._pumps == []
            assert manager.clusters.running


class TestLifecycle:
    async def test_provisions_and_tears_down(
        self, store: MemoryStore, provider: FakeProvider, manager: Manager,
    ):
        provider.create_status = InstanceStatus.RUNNING
        await seed_cluster(store)
        await seed_machine(store, node_ref=MACHINE)

        async def machine_ready() -> bool:
            machine = await store.get(MachineResource, MACHINE_KEY)
            return machine is not None and machine.status.ready

        async def gone(kind: type, key: ObjectKey) -> bool:
            return await store.get(kind, key) is None

        async with manager:
            await eventually(machine_ready)

            cluster = await store.get(ClusterResource, CLUSTER_KEY)
            assert cluster is not None and cluster.status.ready
            assert len(provider.calls_to("create_instance")) == 1
            assert len(provider.calls_to("create_private_network")) == 1
            assert len(provider.calls_to("create_secret")) == 1

            await store.delete(MachineResource, MACHINE_KEY)
            await eventually(lambda: gone(MachineResource, MACHINE_KEY))
            assert provider.instances == {}

            await store.delete(ClusterResource, CLUSTER_KEY)
            await eventually(lambda: gone(ClusterResource, CLUSTER_KEY))
            assert provider.networks == {}
            assert provider.secrets == {}

        assert not manager.clusters.running
        assert not manager.machines.running

    async def test_existing_objects_are_reconciled_on_start(
        self, store: MemoryStore, provider: FakeProvider, manager: Manager,
    ):
        await seed_cluster(store)

        async def cluster_ready() -> bool:
            cluster = await store.get(ClusterResource, CLUSTER_KEY)
            return cluster is not None and cluster.status.ready

        async with manager:
            await eventually(cluster_ready)

    async def test_run_returns_after_stop(self, manager: Manager):
        runner = asyncio.create_task(manager.run())
        await asyncio.sleep(0.05)

        await manager.stop()

        await asyncio.wait_for(runner, 1)
        assert not manager.machines.running


class TestWatchRecovery:
    async def test_failed_watch_is_resubscribed(self, provider: FakeProvider, fast_config: ControllerConfig):
        store = FlakyWatchStore()
        manager = Manager(store, provider, fast_config, clock=FixedClock(), keygen=fake_keygen)

        async def resubscribed() -> bool:
            return store.subscriptions[ClusterResource.KIND] >= 2

        async def cluster_ready() -> bool:
            cluster = await store.get(ClusterResource, CLUSTER_KEY)
            return cluster is not None and cluster.status.ready

        async with manager:
            await eventually(resubscribed)
            await seed_cluster(store)
            await eventually(cluster_ready)

        assert store.subscriptions[ClusterResource.KIND] == 2
