"""Compute providers."""

from capc.providers.base import (
    ComputeProvider,
    InstanceCreate,
    InstanceReinstall,
    build_provider_id,
    parse_provider_id,
)

__all__ = [
    "ComputeProvider",
    "InstanceCreate",
    "InstanceReinstall",
    "build_provider_id",
    "parse_provider_id",
]
