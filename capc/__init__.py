"""capc - Cluster API infrastructure provider for Contabo.

Example:

    from capc import Contabo, ControllerConfig, Manager, MemoryStore

    provider = await Contabo(client_id=..., client_secret=...,
                             api_user=..., api_password=...).create_provider()
    async with Manager(MemoryStore(), provider, ControllerConfig()) as manager:
        ...
"""

from capc.api import (
    ClusterResource,
    ConditionSet,
    MachineResource,
    ObjectKey,
    Registry,
    default_registry,
)
from capc.config import ControllerConfig, ManagerConfig, build_config, load_config
from capc.controllers import ClusterReconciler, MachineReconciler, Result
from capc.core.exceptions import (
    CapcError,
    ConfigurationError,
    ConflictError,
    InstanceNotFoundError,
    InvalidSpecError,
    NotFoundError,
    ProviderError,
)
from capc.providers.base import ComputeProvider
from capc.providers.contabo import Contabo, ContaboProvider
from capc.scheduler import Controller, Manager, WorkQueue
from capc.store import MemoryStore, ObjectStore

__version__ = "0.1.0"

__all__ = [
    "CapcError",
    "ClusterReconciler",
    "ClusterResource",
    "ComputeProvider",
    "ConditionSet",
    "ConfigurationError",
    "ConflictError",
    "Contabo",
    "ContaboProvider",
    "Controller",
    "ControllerConfig",
    "InstanceNotFoundError",
    "InvalidSpecError",
    "MachineReconciler",
    "MachineResource",
    "Manager",
    "ManagerConfig",
    "MemoryStore",
    "NotFoundError",
    "ObjectKey",
    "ObjectStore",
    "ProviderError",
    "Registry",
    "Result",
    "WorkQueue",
    "build_config",
    "default_registry",
    "load_config",
]
