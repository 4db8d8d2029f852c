"""ContaboCluster reconciler.

Drives a cluster through private network, control-plane endpoint and SSH
key until every required condition is true, and tears the provider-side
resources down in reverse order when the cluster is deleted.
"""

from __future__ import annotations

import asyncio
import uuid

from capc.api.conditions import Clock, utcnow
from capc.api.types import (
    CapiCluster,
    ClusterResource,
    ObjectKey,
    ObjectMeta,
    OwnerReference,
    PrivateNetworkStatus,
    ProviderSecret,
    Secret,
    SshKeyStatus,
)
from capc.config import ControllerConfig
from capc.constants import (
    CLUSTER_FINALIZER,
    CLUSTER_NAME_LABEL,
    CLUSTER_READY_CONDITIONS,
    INFRA_GROUP,
    INFRA_VERSION,
    SSH_PRIVATE_KEY,
    SSH_PUBLIC_KEY,
    ConditionType,
    Reason,
)
from capc.core.exceptions import NotFoundError, ProviderError
from capc.observability.logger import logger
from capc.providers.base import ComputeProvider
from capc.store.base import ObjectStore

from .base import DONE, GONE, Reconciler, Result
from .naming import private_network_name, ssh_key_name, ssh_secret_name
from .sshkey import KeyGenerator, generate_keypair

log = logger.bind(controller="contabocluster")


class ClusterReconciler(Reconciler):
    def __init__(
        self,
        store: ObjectStore,
        provider: ComputeProvider,
        config: ControllerConfig,
        *,
        clock: Clock = utcnow,
        keygen: KeyGenerator = generate_keypair,
    ) -> None:
        super().__init__(store, provider, config, clock=clock)
        self._keygen = keygen

    async def reconcile(self, key: ObjectKey) -> Result:
        cluster = await self._store.get(ClusterResource, key)
        if cluster is None:
            return GONE

        if cluster.metadata.deleting:
            return await self._reconcile_delete(cluster)

        owner = cluster.metadata.owner(CapiCluster.KIND)
        if owner is None:
            log.debug("Cluster {key} has no owner Cluster yet", key=str(key))
            return self._wait()
        capi_cluster = await self._store.get(CapiCluster, ObjectKey(key.namespace, owner.name))
        if capi_cluster is None:
            return self._wait()
        if capi_cluster.is_paused:
            log.debug("Cluster {key} is paused", key=str(key))
            return DONE

        if cluster.metadata.add_finalizer(CLUSTER_FINALIZER):
            await self._persist_meta(cluster)

        # Provider names derive from the uuid, so it is stored before anything
        # is created under it.
        if not cluster.status.cluster_uuid:
            cluster.status.cluster_uuid = str(uuid.uuid4())
            await self._checkpoint(cluster)
            log.info(
                "Assigned uuid {uuid} to cluster {key}",
                uuid=cluster.status.cluster_uuid, key=str(key),
            )

        before = self._snapshot(cluster)
        try:
            await self._reconcile_private_network(cluster)
            self._reconcile_endpoint(cluster)
            # The key is provisioned even while the endpoint is pending: whoever
            # supplies the endpoint may need machines, and machines need the key.
            await self._reconcile_ssh_key(cluster)
        finally:
            ready = self._update_ready(cluster)
            await self._persist_status(cluster, before)
        return DONE if ready else self._wait()

    def _update_ready(self, cluster: ClusterResource) -> bool:
        """Derive ``ready`` and the Ready condition from the step conditions."""
        status = cluster.status
        ready = status.conditions.summary(CLUSTER_READY_CONDITIONS)
        status.conditions.mark_summary(CLUSTER_READY_CONDITIONS, reason=Reason.AVAILABLE)
        if ready and not status.ready:
            log.info("Cluster {key} is ready", key=str(cluster.metadata.key))
        status.ready = ready
        if ready:
            status.provisioned = True
            status.failure_domains = [cluster.spec.region]
        return ready

    # ─── Private network ─────────────────────────────────────────────

    async def _reconcile_private_network(self, cluster: ClusterResource) -> None:
        conditions = cluster.status.conditions
        cond = ConditionType.CLUSTER_PRIVATE_NETWORK_READY
        spec = cluster.spec.private_network

        if spec is None:
            conditions.mark_true(cond, Reason.CLUSTER_PRIVATE_NETWORK_SKIPPED)
            return

        name = private_network_name(cluster)
        try:
            network = None
            if (recorded := cluster.status.private_network) is not None:
                try:
                    network = await self._provider.get_private_network(recorded.network_id)
                except NotFoundError:
                    log.warning(
                        "Private network {network_id} of cluster {key} is gone",
                        network_id=recorded.network_id, key=str(cluster.metadata.key),
                    )
                    cluster.status.private_network = None

            if network is None:
                network = await self._provider.find_private_network(name)

            if network is None:
                conditions.mark_false(cond, Reason.CLUSTER_PRIVATE_NETWORK_CREATING)
                network = await self._provider.create_private_network(name, spec.region or cluster.spec.region)
                log.info(
                    "Created private network {network_id} for cluster {key}",
                    network_id=network.network_id, key=str(cluster.metadata.key),
                )
                cluster.status.private_network = PrivateNetworkStatus.of(network)
                await self._checkpoint(cluster)
        except ProviderError as e:
            conditions.mark_false(cond, Reason.CLUSTER_PRIVATE_NETWORK_FAILED, str(e))
            raise

        cluster.status.private_network = PrivateNetworkStatus.of(network)
        conditions.mark_true(cond, Reason.CLUSTER_PRIVATE_NETWORK_READY)

    # ─── Control-plane endpoint ──────────────────────────────────────

    def _reconcile_endpoint(self, cluster: ClusterResource) -> bool:
        conditions = cluster.status.conditions
        cond = ConditionType.CONTROL_PLANE_ENDPOINT_READY
        if not cluster.spec.control_plane_endpoint.is_set:
            conditions.mark_false(
                cond,
                Reason.WAITING_FOR_CONTROL_PLANE_ENDPOINT,
                "spec.controlPlaneEndpoint host and port are not set",
            )
            return False
        conditions.mark_true(cond, Reason.CONTROL_PLANE_ENDPOINT_READY)
        return True

    # ─── SSH key ─────────────────────────────────────────────────────

    async def _reconcile_ssh_key(self, cluster: ClusterResource) -> None:
        conditions = cluster.status.conditions
        cond = ConditionType.CLUSTER_SSH_KEY_READY

        public_key = await self._ensure_key_secret(cluster)
        if public_key is None:
            conditions.mark_false(
                cond,
                Reason.CLUSTER_SSH_KEY_FAILED,
                f"secret {ssh_secret_name(cluster)} has no {SSH_PUBLIC_KEY} entry",
            )
            return

        name = ssh_key_name(cluster)
        try:
            secret = None
            recorded = cluster.status.ssh_key
            if recorded is not None and recorded.secret_id is not None:
                try:
                    secret = await self._provider.get_secret(recorded.secret_id)
                except NotFoundError:
                    log.warning(
                        "SSH key secret {secret_id} of cluster {key} is gone",
                        secret_id=recorded.secret_id, key=str(cluster.metadata.key),
                    )

            if secret is None:
                secret = await self._provider.find_secret(name)

            if secret is None:
                conditions.mark_false(cond, Reason.CLUSTER_SSH_KEY_CREATING)
                secret = await self._provider.create_secret(name, public_key)
                log.info(
                    "Created SSH key secret {secret_id} for cluster {key}",
                    secret_id=secret.secret_id, key=str(cluster.metadata.key),
                )
                cluster.status.ssh_key = self._ssh_key_status(cluster, secret)
                await self._checkpoint(cluster)
        except ProviderError as e:
            conditions.mark_false(cond, Reason.CLUSTER_SSH_KEY_FAILED, str(e))
            raise

        cluster.status.ssh_key = self._ssh_key_status(cluster, secret)
        conditions.mark_true(cond, Reason.CLUSTER_SSH_KEY_READY)

    @staticmethod
    def _ssh_key_status(cluster: ClusterResource, secret: ProviderSecret) -> SshKeyStatus:
        return SshKeyStatus(name=secret.name, secret_name=ssh_secret_name(cluster), secret_id=secret.secret_id)

    async def _ensure_key_secret(self, cluster: ClusterResource) -> str | None:
        """Create the key pair secret if missing; return its public key."""
        key = ObjectKey(cluster.metadata.namespace, ssh_secret_name(cluster))
        existing = await self._store.get_secret(key)
        if existing is not None:
            return existing.data.get(SSH_PUBLIC_KEY)

        private, public = await asyncio.to_thread(self._keygen, ssh_key_name(cluster))
        secret = Secret(
            metadata=ObjectMeta(
                name=key.name,
                namespace=key.namespace,
                labels={CLUSTER_NAME_LABEL: cluster.metadata.name},
                owner_references=[OwnerReference(
                    api_version=f"{INFRA_GROUP}/{INFRA_VERSION}",
                    kind=ClusterResource.KIND,
                    name=cluster.metadata.name,
                    uid=cluster.metadata.uid,
                    controller=True,
                )],
            ),
            data={SSH_PRIVATE_KEY: private, SSH_PUBLIC_KEY: public},
        )
        await self._store.create_secret(secret)
        log.info("Created key pair secret {name}", name=str(key))
        return public

    # ─── Deletion ────────────────────────────────────────────────────

    async def _reconcile_delete(self, cluster: ClusterResource) -> Result:
        """Undo one provider resource per pass.

        Each step clears its status record before returning, so a pass that
        finds nothing recorded makes no provider call at all.
        """
        if CLUSTER_FINALIZER not in cluster.metadata.finalizers:
            return DONE

        status = cluster.status
        conditions = status.conditions
        key = cluster.metadata.key
        before = self._snapshot(cluster)
        status.ready = False
        conditions.mark_false(ConditionType.READY, Reason.DELETING)

        try:
            if status.private_network is not None:
                network_id = status.private_network.network_id
                conditions.mark_false(
                    ConditionType.CLUSTER_PRIVATE_NETWORK_READY, Reason.CLUSTER_PRIVATE_NETWORK_DELETING,
                )
                try:
                    await self._provider.delete_private_network(network_id)
                    log.info("Deleted private network {network_id}", network_id=network_id)
                except NotFoundError:
                    pass
                status.private_network = None
                return Result(requeue=True)

            if status.ssh_key is not None:
                conditions.mark_false(ConditionType.CLUSTER_SSH_KEY_READY, Reason.CLUSTER_SSH_KEY_DELETING)
                if status.ssh_key.secret_id is not None:
                    try:
                        await self._provider.delete_secret(status.ssh_key.secret_id)
                        log.info("Deleted SSH key secret {secret_id}", secret_id=status.ssh_key.secret_id)
                    except NotFoundError:
                        pass
                await self._store.delete_secret(ObjectKey(key.namespace, status.ssh_key.secret_name))
                status.ssh_key = None
                return Result(requeue=True)
        finally:
            await self._persist_status(cluster, before)

        # Key secret may exist without a recorded provider secret.
        await self._store.delete_secret(ObjectKey(key.namespace, ssh_secret_name(cluster)))
        cluster.metadata.remove_finalizer(CLUSTER_FINALIZER)
        await self._persist_meta(cluster)
        log.info("Cluster {key} teardown complete", key=str(key))
        return DONE
