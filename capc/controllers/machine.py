"""ContaboMachine reconciler.

A machine waits for its cluster's infrastructure, its bootstrap data, the
cluster SSH key and (when requested) the private network. It then binds
exactly one compute instance, follows it through provisioning, attaches it
to the private network and reports ready once the instance runs.

``spec.providerID`` is the only link to the instance. It is written right
after the create call returns and never regenerated; a crash before it is
persisted is recovered by looking the instance up by its display name.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from capc.api.types import (
    CapiCluster,
    CapiMachine,
    ClusterResource,
    InstanceStatus,
    MachineAddress,
    MachineResource,
    ObjectKey,
    ProviderInstance,
)
from capc.constants import (
    BLOCKED_POLL,
    BOOTSTRAP_DATA_KEY,
    CLUSTER_NAME_LABEL,
    INSTALLING_POLL,
    MACHINE_FINALIZER,
    MACHINE_READY_CONDITIONS,
    PROVISIONING_POLL,
    ConditionType,
    MachineAction,
    Reason,
)
from capc.core.exceptions import InstanceNotFoundError, InvalidSpecError, NotFoundError, ProviderError
from capc.observability.logger import logger
from capc.providers.base import InstanceCreate, InstanceReinstall, build_provider_id, parse_provider_id

from .base import DONE, GONE, Reconciler, Result
from .naming import instance_display_name

log = logger.bind(controller="contabomachine")

_PHASES = {
    ConditionType.INSTANCE_CREATING: Reason.INSTANCE_CREATING,
    ConditionType.INSTANCE_PROVISIONING: Reason.INSTANCE_PROVISIONING,
    ConditionType.INSTANCE_INSTALLING: Reason.INSTANCE_INSTALLING,
}

# Instance states that need a human (or the provider) before anything moves.
_WAITING_STATES = {
    InstanceStatus.STOPPED: (Reason.INSTANCE_STOPPED, "instance is stopped"),
    InstanceStatus.RESCUE: (Reason.INSTANCE_RESCUING, "instance is booted into the rescue system"),
    InstanceStatus.RESET_PASSWORD: (Reason.INSTANCE_RESETTING_PASSWORD, "instance password is being reset"),
    InstanceStatus.UNKNOWN: (Reason.INSTANCE_STATUS_UNKNOWN, "provider reported no instance status"),
    InstanceStatus.OTHER: (Reason.INSTANCE_STATUS_UNKNOWN, "provider reported an unrecognized instance status"),
}


def _addresses(instance: ProviderInstance, private_ip: str) -> list[MachineAddress]:
    addresses = []
    if instance.ipv4:
        addresses.append(MachineAddress("ExternalIP", instance.ipv4))
    if instance.ipv6:
        addresses.append(MachineAddress("ExternalIP", instance.ipv6))
    if private_ip:
        addresses.append(MachineAddress("InternalIP", private_ip))
    return addresses


class MachineReconciler(Reconciler):
    async def reconcile(self, key: ObjectKey) -> Result:
        machine = await self._store.get(MachineResource, key)
        if machine is None:
            return GONE

        if machine.metadata.deleting:
            return await self._reconcile_delete(machine)

        owner = machine.metadata.owner(CapiMachine.KIND)
        if owner is None:
            log.debug("Machine {key} has no owner Machine yet", key=str(key))
            return self._wait()
        capi_machine = await self._store.get(CapiMachine, ObjectKey(key.namespace, owner.name))
        if capi_machine is None or not capi_machine.cluster_name:
            return self._wait()
        capi_cluster = await self._store.get(CapiCluster, ObjectKey(key.namespace, capi_machine.cluster_name))
        if capi_cluster is None:
            return self._wait()
        if capi_cluster.is_paused:
            log.debug("Machine {key} is paused", key=str(key))
            return DONE

        cluster = None
        if (ref := capi_cluster.infrastructure_ref) is not None:
            cluster = await self._store.get(ClusterResource, ObjectKey(ref.namespace or key.namespace, ref.name))

        changed = machine.metadata.add_finalizer(MACHINE_FINALIZER)
        if machine.metadata.labels.get(CLUSTER_NAME_LABEL) != capi_machine.cluster_name:
            machine.metadata.labels[CLUSTER_NAME_LABEL] = capi_machine.cluster_name
            changed = True
        if changed:
            await self._persist_meta(machine)

        status = machine.status
        if status.failed:
            if status.failure_generation == machine.metadata.generation:
                return DONE
            log.info(
                "Machine {key} changed since it failed ({reason}), retrying",
                key=str(key), reason=status.failure_reason,
            )

        before = self._snapshot(machine)
        try:
            status.failure_reason = status.failure_message = status.error_message = ""
            status.failure_generation = None
            return await self._reconcile_normal(machine, capi_machine, cluster)
        except InvalidSpecError as e:
            self._fail(machine, e.reason, str(e))
            return DONE
        finally:
            await self._persist_status(machine, before)

    async def _reconcile_normal(
        self,
        machine: MachineResource,
        capi_machine: CapiMachine,
        cluster: ClusterResource | None,
    ) -> Result:
        conditions = machine.status.conditions

        # 1. cluster infrastructure
        if cluster is None or not cluster.status.ready:
            conditions.mark_false(
                ConditionType.CLUSTER_INFRASTRUCTURE_READY, Reason.WAITING_FOR_CLUSTER_INFRASTRUCTURE,
            )
            return self._not_ready(machine, Reason.WAITING_FOR_CLUSTER_INFRASTRUCTURE)
        conditions.mark_true(ConditionType.CLUSTER_INFRASTRUCTURE_READY, Reason.CLUSTER_INFRASTRUCTURE_READY)

        # 2. bootstrap data
        user_data = await self._bootstrap_data(machine, capi_machine)
        if user_data is None:
            conditions.mark_false(ConditionType.BOOTSTRAP_DATA_AVAILABLE, Reason.WAITING_FOR_BOOTSTRAP_DATA)
            return self._not_ready(machine, Reason.WAITING_FOR_BOOTSTRAP_DATA)
        conditions.mark_true(ConditionType.BOOTSTRAP_DATA_AVAILABLE, Reason.BOOTSTRAP_DATA_AVAILABLE)

        # 3. ssh key
        ssh_key = cluster.status.ssh_key
        if ssh_key is None or ssh_key.secret_id is None:
            return self._not_ready(machine, Reason.WAITING_FOR_SSH_KEY)
        ssh_key_ids = (ssh_key.secret_id,)

        # 4. private network
        if self._wants_network(machine, cluster) and (
            cluster.status.private_network is None
            or not cluster.status.conditions.is_true(ConditionType.CLUSTER_PRIVATE_NETWORK_READY)
        ):
            conditions.mark_false(
                ConditionType.MACHINE_PRIVATE_NETWORKS_READY, Reason.WAITING_FOR_PRIVATE_NETWORKS,
            )
            return self._not_ready(machine, Reason.WAITING_FOR_PRIVATE_NETWORKS)

        if not machine.spec.provider_id:
            return await self._create_instance(machine, cluster, user_data, ssh_key_ids)

        instance_id = parse_provider_id(machine.spec.provider_id)
        try:
            with self._reporting(machine):
                instance = await self._provider.get_instance(instance_id)
        except InstanceNotFoundError:
            machine.status.instance = None
            self._fail(machine, Reason.INSTANCE_NOT_FOUND, f"instance {instance_id} no longer exists")
            return DONE
        machine.status.instance = instance

        for action in MachineAction:
            token = machine.metadata.annotations.get(action.annotation)
            if token and machine.status.handled_actions.get(action.value) != token:
                return await self._run_action(machine, instance, action, token, user_data, ssh_key_ids)

        if (result := self._observe(machine, instance)) is not None:
            return result

        for phase in _PHASES:
            conditions.mark_false(phase, Reason.INSTANCE_READY)
        private_ip = await self._reconcile_network(machine, cluster, instance)
        return self._mark_running(machine, capi_machine, instance, private_ip)

    # ─── Preconditions ───────────────────────────────────────────────

    async def _bootstrap_data(self, machine: MachineResource, capi_machine: CapiMachine) -> str | None:
        if not capi_machine.data_secret_name:
            return None
        secret = await self._store.get_secret(
            ObjectKey(machine.metadata.namespace, capi_machine.data_secret_name)
        )
        if secret is None:
            return None
        return secret.data.get(BOOTSTRAP_DATA_KEY)

    @staticmethod
    def _wants_network(machine: MachineResource, cluster: ClusterResource) -> bool:
        return machine.spec.attach_private_network and cluster.spec.private_network is not None

    # ─── Instance ────────────────────────────────────────────────────

    async def _create_instance(
        self,
        machine: MachineResource,
        cluster: ClusterResource,
        user_data: str,
        ssh_key_ids: tuple[int, ...],
    ) -> Result:
        conditions = machine.status.conditions
        name = instance_display_name(cluster, machine)

        with self._reporting(machine):
            instance = await self._provider.find_instance(name)
            if instance is not None:
                log.warning(
                    "Adopting instance {instance_id} ({name}) for machine {key}",
                    instance_id=instance.instance_id, name=name, key=str(machine.metadata.key),
                )
            else:
                spec = machine.spec.instance
                conditions.mark_false(ConditionType.INSTANCE_READY, Reason.INSTANCE_CREATING)
                instance = await self._provider.create_instance(InstanceCreate(
                    display_name=name,
                    product_id=spec.product_id,
                    image_id=spec.image_id,
                    region=spec.region or cluster.spec.region,
                    ssh_key_ids=ssh_key_ids,
                    user_data=user_data,
                    default_user=spec.default_user,
                ))
                log.info(
                    "Created instance {instance_id} for machine {key}",
                    instance_id=instance.instance_id, key=str(machine.metadata.key),
                )

        machine.spec.provider_id = build_provider_id(instance.instance_id)
        await self._persist_meta(machine)

        machine.status.instance = instance
        conditions.mark_true(ConditionType.INSTANCE_CREATING, Reason.INSTANCE_CREATING)
        return self._not_ready(machine, Reason.INSTANCE_CREATING, after=PROVISIONING_POLL)

    def _observe(self, machine: MachineResource, instance: ProviderInstance) -> Result | None:
        """Map the provider state; None means the instance is running."""
        match instance.status:
            case InstanceStatus.RUNNING:
                return None
            case InstanceStatus.CREATING | InstanceStatus.PROVISIONING:
                self._phase(machine, ConditionType.INSTANCE_PROVISIONING)
                return self._not_ready(machine, Reason.INSTANCE_PROVISIONING, after=PROVISIONING_POLL)
            case InstanceStatus.MANUAL_PROVISIONING:
                self._phase(machine, ConditionType.INSTANCE_PROVISIONING)
                return self._not_ready(
                    machine, Reason.INSTANCE_PROVISIONING,
                    "instance is waiting for manual provisioning by the provider",
                    after=self._config.long_requeue_interval,
                )
            case InstanceStatus.INSTALLING | InstanceStatus.UNINSTALLED:
                self._phase(machine, ConditionType.INSTANCE_INSTALLING)
                return self._not_ready(machine, Reason.INSTANCE_INSTALLING, after=INSTALLING_POLL)
            case InstanceStatus.ERROR | InstanceStatus.FAILED:
                self._fail(machine, Reason.INSTANCE_FAILED, f"instance {instance.instance_id} is in state {instance.status}")
                return DONE
            case InstanceStatus.PRODUCT_NOT_AVAILABLE:
                raise InvalidSpecError(
                    Reason.INSTANCE_FAILED,
                    f"product {machine.spec.instance.product_id} is not available in region {instance.region}",
                )
            case InstanceStatus.VERIFICATION_REQUIRED | InstanceStatus.PENDING_PAYMENT:
                return self._not_ready(
                    machine, Reason.INSTANCE_FAILED,
                    f"instance {instance.instance_id} is blocked by the account ({instance.status})",
                    after=self._config.long_requeue_interval,
                )
            case _:
                reason, message = _WAITING_STATES[instance.status]
                return self._not_ready(machine, reason, message, after=BLOCKED_POLL)

    def _phase(self, machine: MachineResource, active: ConditionType) -> None:
        conditions = machine.status.conditions
        for phase, reason in _PHASES.items():
            if phase == active:
                conditions.mark_true(phase, reason)
            else:
                conditions.mark_false(phase, _PHASES[active])

    # ─── Side actions ────────────────────────────────────────────────

    async def _run_action(
        self,
        machine: MachineResource,
        instance: ProviderInstance,
        action: MachineAction,
        token: str,
        user_data: str,
        ssh_key_ids: tuple[int, ...],
    ) -> Result:
        conditions = machine.status.conditions
        instance_id = instance.instance_id
        log.info(
            "Running {action} on instance {instance_id} for machine {key}",
            action=action.value, instance_id=instance_id, key=str(machine.metadata.key),
        )

        match action:
            case MachineAction.REINSTALL:
                spec = machine.spec.instance
                with self._reporting(machine, Reason.INSTANCE_REINSTALLING_FAILED):
                    await self._provider.reinstall_instance(instance_id, InstanceReinstall(
                        image_id=spec.image_id,
                        ssh_key_ids=ssh_key_ids,
                        user_data=user_data,
                        default_user=spec.default_user,
                    ))
                machine.status.handled_actions[action.value] = token
                conditions.mark_false(ConditionType.INSTANCE_BOOTSTRAP, Reason.INSTANCE_WAITING_FOR_CLOUD_INIT)
                return self._not_ready(machine, Reason.INSTANCE_REINSTALLING, after=INSTALLING_POLL)
            case MachineAction.RESCUE:
                with self._reporting(machine):
                    await self._provider.rescue_instance(instance_id, ssh_key_ids)
                machine.status.handled_actions[action.value] = token
                return self._not_ready(machine, Reason.INSTANCE_RESCUING, after=BLOCKED_POLL)
            case MachineAction.RESET_PASSWORD:
                with self._reporting(machine):
                    await self._provider.reset_password(instance_id, ssh_key_ids)
                machine.status.handled_actions[action.value] = token
                return Result(requeue=True)

    # ─── Running ─────────────────────────────────────────────────────

    async def _reconcile_network(
        self,
        machine: MachineResource,
        cluster: ClusterResource,
        instance: ProviderInstance,
    ) -> str:
        """Attach the instance to the cluster network; return its private IP if known."""
        conditions = machine.status.conditions
        cond = ConditionType.MACHINE_PRIVATE_NETWORKS_READY

        if not self._wants_network(machine, cluster) or cluster.status.private_network is None:
            conditions.mark_true(cond, Reason.MACHINE_PRIVATE_NETWORK_SKIPPED)
            return ""

        network_id = cluster.status.private_network.network_id
        try:
            network = await self._provider.get_private_network(network_id)
            private_ip = network.instances.get(instance.instance_id)
            if private_ip is None:
                conditions.mark_false(cond, Reason.MACHINE_PRIVATE_NETWORK_ATTACHING)
                await self._provider.attach_private_network(network_id, instance.instance_id)
                log.info(
                    "Attached instance {instance_id} to private network {network_id}",
                    instance_id=instance.instance_id, network_id=network_id,
                )
                private_ip = ""
        except ProviderError as e:
            conditions.mark_false(cond, Reason.MACHINE_PRIVATE_NETWORK_FAILED, str(e))
            raise

        machine.status.private_network_id = network_id
        conditions.mark_true(cond, Reason.MACHINE_PRIVATE_NETWORK_READY)
        return private_ip

    def _mark_running(
        self,
        machine: MachineResource,
        capi_machine: CapiMachine,
        instance: ProviderInstance,
        private_ip: str,
    ) -> Result:
        status = machine.status
        conditions = status.conditions

        status.addresses = _addresses(instance, private_ip)
        if not status.ready:
            log.info(
                "Instance {instance_id} of machine {key} is running",
                instance_id=instance.instance_id, key=str(machine.metadata.key),
            )
        conditions.mark_true(ConditionType.INSTANCE_READY, Reason.INSTANCE_READY)
        conditions.mark_summary(MACHINE_READY_CONDITIONS, reason=Reason.AVAILABLE)
        status.ready = conditions.summary(MACHINE_READY_CONDITIONS)
        status.provisioned = True

        # InstanceBootstrap is not part of Ready: the node only joins after
        # the framework sees the machine infrastructure as ready.
        if capi_machine.node_ref:
            conditions.mark_true(ConditionType.INSTANCE_BOOTSTRAP, Reason.INSTANCE_BOOTSTRAPED)
            return DONE
        conditions.mark_false(ConditionType.INSTANCE_BOOTSTRAP, Reason.INSTANCE_WAITING_FOR_CLOUD_INIT)
        return self._wait()

    # ─── Helpers ─────────────────────────────────────────────────────

    def _not_ready(
        self,
        machine: MachineResource,
        reason: str,
        message: str = "",
        *,
        after: float | None = None,
    ) -> Result:
        conditions = machine.status.conditions
        conditions.mark_false(ConditionType.INSTANCE_READY, reason, message)
        machine.status.ready = False
        conditions.mark_summary(MACHINE_READY_CONDITIONS)
        return Result(requeue_after=after or self._config.requeue_interval)

    @contextmanager
    def _reporting(
        self,
        machine: MachineResource,
        reason: str = Reason.INSTANCE_PROVISIONING_FAILED,
    ) -> Iterator[None]:
        """Put a provider failure on InstanceReady before it propagates.

        Not-found errors pass through untouched; callers classify them.
        """
        try:
            yield
        except NotFoundError:
            raise
        except ProviderError as e:
            self._not_ready(machine, reason, str(e))
            raise

    def _fail(self, machine: MachineResource, reason: str, message: str) -> None:
        """Record a failure that retrying cannot fix until the spec changes."""
        status = machine.status
        log.error(
            "Machine {key} failed: {reason}: {message}",
            key=str(machine.metadata.key), reason=reason, message=message,
        )
        status.failure_reason = reason
        status.failure_message = message
        status.failure_generation = machine.metadata.generation
        status.error_message = message
        status.ready = False
        status.conditions.mark_false(ConditionType.INSTANCE_READY, reason, message)
        status.conditions.mark_summary(MACHINE_READY_CONDITIONS)

    # ─── Deletion ────────────────────────────────────────────────────

    async def _reconcile_delete(self, machine: MachineResource) -> Result:
        if MACHINE_FINALIZER not in machine.metadata.finalizers:
            return DONE

        before = self._snapshot(machine)
        machine.status.ready = False
        machine.status.conditions.mark_false(ConditionType.READY, Reason.DELETING)
        try:
            gone = await self._delete_instance(machine)
        finally:
            await self._persist_status(machine, before)
        if not gone:
            return self._wait()

        machine.metadata.remove_finalizer(MACHINE_FINALIZER)
        await self._persist_meta(machine)
        log.info("Machine {key} teardown complete", key=str(machine.metadata.key))
        return DONE

    async def _delete_instance(self, machine: MachineResource) -> bool:
        """Delete the bound instance; True once it no longer exists."""
        if not machine.spec.provider_id:
            return True
        try:
            instance_id = parse_provider_id(machine.spec.provider_id)
        except InvalidSpecError as e:
            log.warning("Machine {key} has nothing to delete: {error}", key=str(machine.metadata.key), error=str(e))
            return True

        status = machine.status
        conditions = status.conditions

        if conditions.reason(ConditionType.INSTANCE_READY) == Reason.INSTANCE_DELETING:
            try:
                await self._provider.get_instance(instance_id)
            except NotFoundError:
                return True
            return False

        if status.private_network_id is not None:
            conditions.mark_false(
                ConditionType.MACHINE_PRIVATE_NETWORKS_READY, Reason.MACHINE_PRIVATE_NETWORK_DETACHING,
            )
            try:
                await self._provider.detach_private_network(status.private_network_id, instance_id)
            except NotFoundError:
                pass
            status.private_network_id = None

        try:
            await self._provider.delete_instance(instance_id)
        except NotFoundError:
            return True
        log.info("Deleting instance {instance_id}", instance_id=instance_id)
        conditions.mark_false(ConditionType.INSTANCE_READY, Reason.INSTANCE_DELETING)
        return False
