"""Wires stores, reconcilers and controllers together.

The manager watches every registered kind and turns events into work-queue
keys for the two owned kinds:

    ContaboCluster  -> the cluster itself and every machine of its cluster
    ContaboMachine  -> the machine itself
    Cluster         -> its infrastructure cluster and every machine
    Machine         -> its infrastructure machine
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from capc.api.conditions import Clock, utcnow
from capc.api.registry import Registry, default_registry
from capc.api.types import CapiCluster, CapiMachine, ClusterResource, MachineResource, ObjectKey
from capc.config import ControllerConfig
from capc.constants import CLUSTER_NAME_LABEL
from capc.controllers.cluster import ClusterReconciler
from capc.controllers.machine import MachineReconciler
from capc.controllers.sshkey import KeyGenerator, generate_keypair
from capc.observability.logger import logger
from capc.providers.base import ComputeProvider
from capc.store.base import ObjectStore, WatchEvent

from .controller import Controller
from .queue import BackoffRateLimiter

log = logger.bind(component="manager")

type EventHandler = Callable[[Any], Awaitable[None]]


class Manager:
    def __init__(
        self,
        store: ObjectStore,
        provider: ComputeProvider,
        config: ControllerConfig,
        *,
        registry: Registry | None = None,
        clock: Clock = utcnow,
        keygen: KeyGenerator = generate_keypair,
    ) -> None:
        self._store = store
        self._provider = provider
        self._registry = registry or default_registry()

        self.cluster_reconciler = ClusterReconciler(store, provider, config, clock=clock, keygen=keygen)
        self.machine_reconciler = MachineReconciler(store, provider, config, clock=clock)
        self.clusters: Controller[ObjectKey] = Controller(
            "contabocluster", self.cluster_reconciler.reconcile, config,
        )
        self.machines: Controller[ObjectKey] = Controller(
            "contabomachine", self.machine_reconciler.reconcile, config,
        )

        self._handlers: dict[str, EventHandler] = {
            ClusterResource.KIND: self._on_cluster,
            MachineResource.KIND: self._on_machine,
            CapiCluster.KIND: self._on_capi_cluster,
            CapiMachine.KIND: self._on_capi_machine,
        }
        self._pumps: list[asyncio.Task[None]] = []
        self._watch_backoff: BackoffRateLimiter[str] = BackoffRateLimiter(config.backoff_base, config.backoff_max)
        self._stopped = asyncio.Event()

    async def __aenter__(self) -> Manager:
        await self.start()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.stop()

    async def start(self) -> None:
        for rk in self._registry:
            handler = self._handlers.get(rk.kind)
            if handler is None:
                log.debug("No event handler for {kind}, not watching", kind=rk.kind)
                continue
            self._pumps.append(asyncio.create_task(self._pump(rk.type, handler), name=f"watch-{rk.kind}"))
        # let the watches subscribe before the initial listing
        await asyncio.sleep(0)

        await self.clusters.start()
        await self.machines.start()

        for cluster in await self._store.list(ClusterResource):
            self.clusters.enqueue(cluster.metadata.key)
        for machine in await self._store.list(MachineResource):
            self.machines.enqueue(machine.metadata.key)
        log.info("Manager started, watching {n} kinds", n=len(self._pumps))

    async def stop(self) -> None:
        for pump in self._pumps:
            pump.cancel()
        await asyncio.gather(*self._pumps, return_exceptions=True)
        self._pumps = []
        await self.clusters.stop()
        await self.machines.stop()
        self._stopped.set()
        log.info("Manager stopped")

    async def run(self) -> None:
        """Run until ``stop`` is called or the task is cancelled."""
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            if not self._stopped.is_set():
                await self.stop()

    async def _pump(self, kind: type[Any], handler: EventHandler) -> None:
        """Feed watch events to ``handler``, resubscribing whenever the watch stops."""
        while True:
            try:
                async for event in self._store.watch(kind):
                    self._watch_backoff.forget(kind.KIND)
                    await self._dispatch(kind, handler, event)
                reason = "stream ended"
            except Exception as e:
                reason = str(e) or type(e).__name__
            delay = self._watch_backoff.when(kind.KIND)
            log.warning(
                "Watch on {kind} stopped ({reason}), resubscribing in {delay:.1f}s",
                kind=kind.KIND, reason=reason, delay=delay,
            )
            await asyncio.sleep(delay)

    async def _dispatch(self, kind: type[Any], handler: EventHandler, event: WatchEvent[Any]) -> None:
        try:
            await handler(event.object)
        except Exception:
            log.exception(
                "Failed to handle {type} event for {kind} {key}",
                type=event.type, kind=kind.KIND, key=str(event.object.metadata.key),
            )

    # ─── Event mapping ───────────────────────────────────────────────

    async def _enqueue_machines_of(self, namespace: str, cluster_name: str) -> None:
        for machine in await self._store.list(
            MachineResource, namespace=namespace, labels={CLUSTER_NAME_LABEL: cluster_name},
        ):
            self.machines.enqueue(machine.metadata.key)

    async def _on_cluster(self, cluster: ClusterResource) -> None:
        self.clusters.enqueue(cluster.metadata.key)
        if (owner := cluster.metadata.owner(CapiCluster.KIND)) is not None:
            await self._enqueue_machines_of(cluster.metadata.namespace, owner.name)

    async def _on_machine(self, machine: MachineResource) -> None:
        self.machines.enqueue(machine.metadata.key)

    async def _on_capi_cluster(self, capi_cluster: CapiCluster) -> None:
        ref = capi_cluster.infrastructure_ref
        if ref is None or ref.kind != ClusterResource.KIND:
            return
        self.clusters.enqueue(ObjectKey(ref.namespace or capi_cluster.metadata.namespace, ref.name))
        await self._enqueue_machines_of(capi_cluster.metadata.namespace, capi_cluster.metadata.name)

    async def _on_capi_machine(self, capi_machine: CapiMachine) -> None:
        ref = capi_machine.infrastructure_ref
        if ref is None or ref.kind != MachineResource.KIND:
            return
        self.machines.enqueue(ObjectKey(ref.namespace or capi_machine.metadata.namespace, ref.name))
