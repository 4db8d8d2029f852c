"""Contabo API response types.

TypedDicts for API payloads, mirroring the JSON field names.
"""

from __future__ import annotations

from typing import NotRequired, TypedDict

# =============================================================================
# Instances
# =============================================================================


class IpV4(TypedDict):
    ip: str
    netmaskCidr: NotRequired[int]
    gateway: NotRequired[str]


class IpV6(TypedDict):
    ip: str
    netmaskCidr: NotRequired[int]
    gateway: NotRequired[str]


class IpConfig(TypedDict):
    v4: NotRequired[IpV4]
    v6: NotRequired[IpV6]


class ContaboInstance(TypedDict):
    instanceId: int
    displayName: str
    name: NotRequired[str]
    status: str
    productId: NotRequired[str]
    region: NotRequired[str]
    dataCenter: NotRequired[str]
    imageId: NotRequired[str]
    defaultUser: NotRequired[str]
    ipConfig: NotRequired[IpConfig]
    cancelDate: NotRequired[str | None]
    createdDate: NotRequired[str]


class CreateInstanceParams(TypedDict):
    displayName: str
    productId: str
    imageId: str
    region: str
    sshKeys: list[int]
    userData: str
    defaultUser: str
    period: int


class ReinstallInstanceParams(TypedDict):
    imageId: str
    sshKeys: list[int]
    userData: str
    defaultUser: str


class InstanceActionParams(TypedDict):
    sshKeys: list[int]


# =============================================================================
# Private networks
# =============================================================================


class PrivateIpV4(TypedDict):
    ip: str
    netmaskCidr: NotRequired[int]


class PrivateIpConfig(TypedDict):
    v4: NotRequired[list[PrivateIpV4]]


class NetworkInstance(TypedDict):
    instanceId: int
    displayName: NotRequired[str]
    privateIpConfig: NotRequired[PrivateIpConfig]


class ContaboPrivateNetwork(TypedDict):
    privateNetworkId: int
    name: str
    description: NotRequired[str]
    region: NotRequired[str]
    dataCenter: NotRequired[str]
    cidr: NotRequired[str]
    instances: NotRequired[list[NetworkInstance]]


class CreatePrivateNetworkParams(TypedDict):
    name: str
    region: str
    description: NotRequired[str]


# =============================================================================
# Secrets
# =============================================================================


class ContaboSecret(TypedDict):
    secretId: int
    name: str
    type: str
    value: NotRequired[str]


class CreateSecretParams(TypedDict):
    name: str
    value: str
    type: str
