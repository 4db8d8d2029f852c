"""Contabo implementation of ``ComputeProvider``.

Maps Contabo payloads onto the internal models. Contabo never hard-deletes
an instance: cancelling keeps it listed with a ``cancelDate`` until the end
of the billing period. Such instances are reported as not found, which is
what the machine reconciler polls for after deleting.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager

from capc.api.types import InstanceStatus, PrivateNetwork, ProviderInstance, ProviderSecret
from capc.constants import Reason
from capc.core.exceptions import InstanceNotFoundError, InvalidSpecError, NotFoundError
from capc.observability.logger import logger
from capc.providers.base import InstanceCreate, InstanceReinstall

from .client import ContaboClient, ContaboError
from .config import Contabo
from .types import ContaboInstance, ContaboPrivateNetwork, ContaboSecret

# Instances are ordered for one-month billing periods.
DEFAULT_PERIOD = 1


def to_provider_instance(raw: ContaboInstance) -> ProviderInstance:
    ip_config = raw.get("ipConfig") or {}
    return ProviderInstance(
        instance_id=int(raw["instanceId"]),
        display_name=raw.get("displayName") or "",
        status=InstanceStatus.parse(raw.get("status")),
        product_id=raw.get("productId") or "",
        region=raw.get("region") or "",
        image_id=raw.get("imageId") or "",
        default_user=raw.get("defaultUser") or "",
        ipv4=(ip_config.get("v4") or {}).get("ip", ""),
        ipv6=(ip_config.get("v6") or {}).get("ip", ""),
    )


def to_private_network(raw: ContaboPrivateNetwork) -> PrivateNetwork:
    instances: dict[int, str] = {}
    for inst in raw.get("instances") or []:
        v4 = (inst.get("privateIpConfig") or {}).get("v4") or []
        instances[int(inst["instanceId"])] = v4[0]["ip"] if v4 else ""
    return PrivateNetwork(
        network_id=int(raw["privateNetworkId"]),
        name=raw.get("name") or "",
        region=raw.get("region") or "",
        data_center=raw.get("dataCenter") or "",
        cidr=raw.get("cidr") or "",
        instances=instances,
    )


def to_provider_secret(raw: ContaboSecret) -> ProviderSecret:
    return ProviderSecret(secret_id=int(raw["secretId"]), name=raw["name"], type=raw.get("type", "ssh"))


def _cancelled(raw: ContaboInstance) -> bool:
    return bool(raw.get("cancelDate"))


@contextmanager
def _missing_as(error: Callable[[], NotFoundError]) -> Iterator[None]:
    try:
        yield
    except ContaboError as e:
        if e.status == 404:
            raise error() from e
        raise


# Contabo rejects a request it will never accept (unknown product, image or
# region) with one of these.
_REJECTED = frozenset({400, 422})


@contextmanager
def _rejected_as_invalid(reason: str) -> Iterator[None]:
    try:
        yield
    except ContaboError as e:
        if e.status in _REJECTED:
            raise InvalidSpecError(reason, f"rejected by Contabo: {e}") from e
        raise


class ContaboProvider:
    def __init__(self, config: Contabo, client: ContaboClient | None = None) -> None:
        self._config = config
        self._client = client or ContaboClient(config)
        self._log = logger.bind(provider="contabo")

    async def close(self) -> None:
        await self._client.close()

    # ─── Instances ───────────────────────────────────────────────────

    async def create_instance(self, request: InstanceCreate) -> ProviderInstance:
        with _rejected_as_invalid(Reason.INSTANCE_FAILED):
            instance_id = await self._client.create_instance({
                "displayName": request.display_name,
                "productId": request.product_id,
                "imageId": request.image_id,
                "region": request.region,
                "sshKeys": list(request.ssh_key_ids),
                "userData": request.user_data,
                "defaultUser": request.default_user,
                "period": DEFAULT_PERIOD,
            })
        self._log.info(
            "Created instance {instance_id} ({name})",
            instance_id=instance_id, name=request.display_name,
        )
        return await self.get_instance(instance_id)

    async def get_instance(self, instance_id: int) -> ProviderInstance:
        with _missing_as(lambda: InstanceNotFoundError(instance_id)):
            raw = await self._client.get_instance(instance_id)
        if _cancelled(raw):
            raise InstanceNotFoundError(instance_id)
        return to_provider_instance(raw)

    async def find_instance(self, display_name: str) -> ProviderInstance | None:
        for raw in await self._client.list_instances(display_name=display_name):
            if raw.get("displayName") == display_name and not _cancelled(raw):
                return to_provider_instance(raw)
        return None

    async def delete_instance(self, instance_id: int) -> None:
        # An already cancelled instance raises InstanceNotFoundError here.
        await self.get_instance(instance_id)
        with _missing_as(lambda: InstanceNotFoundError(instance_id)):
            await self._client.cancel_instance(instance_id)
        self._log.info("Cancelled instance {instance_id}", instance_id=instance_id)

    async def reinstall_instance(self, instance_id: int, request: InstanceReinstall) -> None:
        with (
            _missing_as(lambda: InstanceNotFoundError(instance_id)),
            _rejected_as_invalid(Reason.INSTANCE_REINSTALLING_FAILED),
        ):
            await self._client.reinstall_instance(instance_id, {
                "imageId": request.image_id,
                "sshKeys": list(request.ssh_key_ids),
                "userData": request.user_data,
                "defaultUser": request.default_user,
            })

    async def rescue_instance(self, instance_id: int, ssh_key_ids: tuple[int, ...]) -> None:
        with _missing_as(lambda: InstanceNotFoundError(instance_id)):
            await self._client.rescue_instance(instance_id, {"sshKeys": list(ssh_key_ids)})

    async def reset_password(self, instance_id: int, ssh_key_ids: tuple[int, ...]) -> None:
        with _missing_as(lambda: InstanceNotFoundError(instance_id)):
            await self._client.reset_password(instance_id, {"sshKeys": list(ssh_key_ids)})

    # ─── Private networks ────────────────────────────────────────────

    async def create_private_network(self, name: str, region: str) -> PrivateNetwork:
        network = to_private_network(await self._client.create_private_network({
            "name": name,
            "region": region,
            "description": "Managed by capc",
        }))
        self._log.info(
            "Created private network {network_id} ({name})",
            network_id=network.network_id, name=name,
        )
        return network

    async def get_private_network(self, network_id: int) -> PrivateNetwork:
        with _missing_as(lambda: NotFoundError("private network", network_id)):
            return to_private_network(await self._client.get_private_network(network_id))

    async def find_private_network(self, name: str) -> PrivateNetwork | None:
        for raw in await self._client.list_private_networks(name=name):
            if raw.get("name") == name:
                return to_private_network(raw)
        return None

    async def delete_private_network(self, network_id: int) -> None:
        with _missing_as(lambda: NotFoundError("private network", network_id)):
            await self._client.delete_private_network(network_id)

    async def attach_private_network(self, network_id: int, instance_id: int) -> None:
        with _missing_as(lambda: NotFoundError("private network", network_id)):
            await self._client.assign_instance(network_id, instance_id)

    async def detach_private_network(self, network_id: int, instance_id: int) -> None:
        with _missing_as(lambda: NotFoundError("private network assignment", f"{network_id}/{instance_id}")):
            await self._client.unassign_instance(network_id, instance_id)

    # ─── Secrets ─────────────────────────────────────────────────────

    async def create_secret(self, name: str, value: str) -> ProviderSecret:
        secret = to_provider_secret(
            await self._client.create_secret({"name": name, "value": value, "type": "ssh"})
        )
        self._log.info("Created secret {secret_id} ({name})", secret_id=secret.secret_id, name=name)
        return secret

    async def get_secret(self, secret_id: int) -> ProviderSecret:
        with _missing_as(lambda: NotFoundError("secret", secret_id)):
            return to_provider_secret(await self._client.get_secret(secret_id))

    async def find_secret(self, name: str) -> ProviderSecret | None:
        for raw in await self._client.list_secrets(name=name):
            if raw.get("name") == name:
                return to_provider_secret(raw)
        return None

    async def delete_secret(self, secret_id: int) -> None:
        with _missing_as(lambda: NotFoundError("secret", secret_id)):
            await self._client.delete_secret(secret_id)
