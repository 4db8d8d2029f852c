"""Async HTTP client for the Contabo API."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from capc.core.exceptions import ProviderError
from capc.infra.http import HttpClient, HttpError, OAuth2Auth
from capc.infra.retry import on_status_code, retry, transient
from capc.observability.logger import logger

from .types import (
    ContaboInstance,
    ContaboPrivateNetwork,
    ContaboSecret,
    CreateInstanceParams,
    CreatePrivateNetworkParams,
    CreateSecretParams,
    InstanceActionParams,
    ReinstallInstanceParams,
)

if TYPE_CHECKING:
    from .config import Contabo

PAGE_SIZE = 100


class ContaboError(ProviderError):
    """Error from the Contabo API."""


class ContaboClient:
    """Async HTTP client for the Contabo API.

    Returns TypedDicts straight from the ``data`` envelope. Every request
    carries a fresh ``x-request-id``. Rate limits, gateway errors and
    transport failures are retried.

    Example:
        async with ContaboClient(Contabo(...)) as client:
            instance = await client.get_instance(12345)
    """

    def __init__(self, config: Contabo, http: HttpClient | None = None) -> None:
        self._config = config
        self._log = logger.bind(provider="contabo", component="client")
        self._http = http or HttpClient(
            config.api_url,
            OAuth2Auth(
                config.client_id,
                config.client_secret,
                config.auth_url,
                username=config.api_user,
                password=config.api_password,
            ),
            timeout=config.request_timeout,
            default_headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> ContaboClient:
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.close()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        request_id = str(uuid.uuid4())
        try:
            return await self._http.request(
                method, path, json=json, params=params,
                headers={"x-request-id": request_id},
            )
        except HttpError as e:
            self._log.warning(
                "API error {method} {path}: {status} (request {request_id})",
                method=method, path=path, status=e.status, request_id=request_id,
            )
            raise ContaboError(f"Contabo API error {e.status}: {e.body[:300]}", status=e.status) from e

    async def _data(self, method: str, path: str, **kwargs: Any) -> list[Any]:
        result = await self._request(method, path, **kwargs)
        return list((result or {}).get("data") or [])

    async def _one(self, method: str, path: str, **kwargs: Any) -> Any:
        data = await self._data(method, path, **kwargs)
        if not data:
            raise ContaboError(f"Empty response from {method} {path}", status=404)
        return data[0]

    # =========================================================================
    # Instances
    # =========================================================================

    @retry(on=transient())
    async def list_instances(self, *, display_name: str | None = None) -> list[ContaboInstance]:
        params: dict[str, Any] = {"size": PAGE_SIZE}
        if display_name:
            params["displayName"] = display_name
        return await self._data("GET", "/compute/instances", params=params)

    @retry(on=transient())
    async def get_instance(self, instance_id: int) -> ContaboInstance:
        return await self._one("GET", f"/compute/instances/{instance_id}")

    @retry(on=on_status_code(429))
    async def create_instance(self, params: CreateInstanceParams) -> int:
        """Create an instance and return its id."""
        self._log.debug("Creating instance {name}", name=params["displayName"])
        created = await self._one("POST", "/compute/instances", json=dict(params))
        return int(created["instanceId"])

    @retry(on=transient())
    async def cancel_instance(self, instance_id: int) -> None:
        await self._request("POST", f"/compute/instances/{instance_id}/cancel", json={})

    @retry(on=transient())
    async def reinstall_instance(self, instance_id: int, params: ReinstallInstanceParams) -> None:
        await self._request("PUT", f"/compute/instances/{instance_id}", json=dict(params))

    @retry(on=transient())
    async def rescue_instance(self, instance_id: int, params: InstanceActionParams) -> None:
        await self._request("POST", f"/compute/instances/{instance_id}/actions/rescue", json=dict(params))

    @retry(on=transient())
    async def reset_password(self, instance_id: int, params: InstanceActionParams) -> None:
        await self._request(
            "POST", f"/compute/instances/{instance_id}/actions/resetPassword", json=dict(params),
        )

    # =========================================================================
    # Private networks
    # =========================================================================

    @retry(on=transient())
    async def list_private_networks(self, *, name: str | None = None) -> list[ContaboPrivateNetwork]:
        params: dict[str, Any] = {"size": PAGE_SIZE}
        if name:
            params["name"] = name
        return await self._data("GET", "/private-networks", params=params)

    @retry(on=transient())
    async def get_private_network(self, network_id: int) -> ContaboPrivateNetwork:
        return await self._one("GET", f"/private-networks/{network_id}")

    @retry(on=on_status_code(429))
    async def create_private_network(self, params: CreatePrivateNetworkParams) -> ContaboPrivateNetwork:
        self._log.debug("Creating private network {name}", name=params["name"])
        return await self._one("POST", "/private-networks", json=dict(params))

    @retry(on=transient())
    async def delete_private_network(self, network_id: int) -> None:
        await self._request("DELETE", f"/private-networks/{network_id}")

    @retry(on=transient())
    async def assign_instance(self, network_id: int, instance_id: int) -> None:
        await self._request("POST", f"/private-networks/{network_id}/instances/{instance_id}", json={})

    @retry(on=transient())
    async def unassign_instance(self, network_id: int, instance_id: int) -> None:
        await self._request("DELETE", f"/private-networks/{network_id}/instances/{instance_id}")

    # =========================================================================
    # Secrets
    # =========================================================================

    @retry(on=transient())
    async def list_secrets(self, *, name: str | None = None, type: str = "ssh") -> list[ContaboSecret]:
        params: dict[str, Any] = {"size": PAGE_SIZE, "type": type}
        if name:
            params["name"] = name
        return await self._data("GET", "/secrets", params=params)

    @retry(on=transient())
    async def get_secret(self, secret_id: int) -> ContaboSecret:
        return await self._one("GET", f"/secrets/{secret_id}")

    @retry(on=on_status_code(429))
    async def create_secret(self, params: CreateSecretParams) -> ContaboSecret:
        self._log.debug("Creating secret {name}", name=params["name"])
        return await self._one("POST", "/secrets", json=dict(params))

    @retry(on=transient())
    async def delete_secret(self, secret_id: int) -> None:
        await self._request("DELETE", f"/secrets/{secret_id}")
