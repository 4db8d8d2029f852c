"""Compute provider adapter contract.

The reconcilers only talk to a ``ComputeProvider``. Implementations map
their API's shapes onto the internal models in ``capc.api.types`` and
raise ``capc.core.exceptions`` errors:

- ``InstanceNotFoundError`` / ``NotFoundError`` when a resource is gone,
- ``InvalidSpecError`` when a create or reinstall request can never succeed,
- ``ProviderError`` (with ``status``) for everything else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from capc.api.types import PrivateNetwork, ProviderInstance, ProviderSecret
from capc.constants import PROVIDER_ID_PREFIX
from capc.core.exceptions import InvalidSpecError


@dataclass(frozen=True, slots=True)
class InstanceCreate:
    display_name: str
    product_id: str
    image_id: str
    region: str
    ssh_key_ids: tuple[int, ...]
    user_data: str
    default_user: str


@dataclass(frozen=True, slots=True)
class InstanceReinstall:
    image_id: str
    ssh_key_ids: tuple[int, ...]
    user_data: str
    default_user: str


@runtime_checkable
class ComputeProvider(Protocol):
    # Instances
    async def create_instance(self, request: InstanceCreate) -> ProviderInstance: ...
    async def get_instance(self, instance_id: int) -> ProviderInstance: ...
    async def find_instance(self, display_name: str) -> ProviderInstance | None: ...
    async def delete_instance(self, instance_id: int) -> None: ...
    async def reinstall_instance(self, instance_id: int, request: InstanceReinstall) -> None: ...
    async def rescue_instance(self, instance_id: int, ssh_key_ids: tuple[int, ...]) -> None: ...
    async def reset_password(self, instance_id: int, ssh_key_ids: tuple[int, ...]) -> None: ...

    # Private networks
    async def create_private_network(self, name: str, region: str) -> PrivateNetwork: ...
    async def get_private_network(self, network_id: int) -> PrivateNetwork: ...
    async def find_private_network(self, name: str) -> PrivateNetwork | None: ...
    async def delete_private_network(self, network_id: int) -> None: ...
    async def attach_private_network(self, network_id: int, instance_id: int) -> None: ...
    async def detach_private_network(self, network_id: int, instance_id: int) -> None: ...

    # Secrets (SSH public keys)
    async def create_secret(self, name: str, value: str) -> ProviderSecret: ...
    async def get_secret(self, secret_id: int) -> ProviderSecret: ...
    async def find_secret(self, name: str) -> ProviderSecret | None: ...
    async def delete_secret(self, secret_id: int) -> None: ...

    async def close(self) -> None: ...


def build_provider_id(instance_id: int) -> str:
    return f"{PROVIDER_ID_PREFIX}{instance_id}"


def parse_provider_id(provider_id: str) -> int:
    """``contabo://12345`` -> 12345."""
    if not provider_id.startswith(PROVIDER_ID_PREFIX):
        raise InvalidSpecError(
            "InvalidProviderID", f"providerID {provider_id!r} must start with {PROVIDER_ID_PREFIX}",
        )
    raw = provider_id.removeprefix(PROVIDER_ID_PREFIX)
    if not raw.isdigit():
        raise InvalidSpecError("InvalidProviderID", f"providerID {provider_id!r} has no numeric instance id")
    return int(raw)
