"""TOML-based manager configuration.

Loads ~/.capc/config.toml (global) and capc.toml (project), merges them,
applies environment overrides, and builds a ``ManagerConfig``::

    [contabo]
    client_id = "..."
    request_timeout = 30

    [controller]
    workers = 4
    requeue_interval = 30

    [store]
    backend = "kubernetes"
    namespace = "capc-system"

    [logging]
    level = "DEBUG"
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

from capc.core.exceptions import ConfigurationError
from capc.observability.logging import LogConfig
from capc.providers.contabo.config import Contabo

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".capc" / "config.toml"
PROJECT_CONFIG_NAME = "capc.toml"

# env var -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "CONTABO_CLIENT_ID": ("contabo", "client_id"),
    "CONTABO_CLIENT_SECRET": ("contabo", "client_secret"),
    "CONTABO_API_USER": ("contabo", "api_user"),
    "CONTABO_API_PASSWORD": ("contabo", "api_password"),
    "CAPC_NAMESPACE": ("store", "namespace"),
    "CAPC_LOG_LEVEL": ("logging", "level"),
}


@dataclass(frozen=True, slots=True)
class ControllerConfig:
    """Work queue and reconcile timing.

    Args:
        workers: Concurrent reconciles per resource kind.
        reconcile_timeout: Deadline for a single reconcile, in seconds.
        requeue_interval: Delay before re-checking a dependency that is not ready.
        long_requeue_interval: Delay for states only a human can resolve
            (account verification, pending payment, manual provisioning).
        resync_period: Delay before re-reconciling an object that is done.
        backoff_base: First retry delay after an error.
        backoff_max: Cap for the exponential error backoff.
    """

    workers: int = 4
    reconcile_timeout: float = 120.0
    requeue_interval: float = 30.0
    long_requeue_interval: float = 300.0
    resync_period: float = 600.0
    backoff_base: float = 1.0
    backoff_max: float = 300.0

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ConfigurationError("controller.workers must be at least 1")
        if self.backoff_base <= 0 or self.backoff_max < self.backoff_base:
            raise ConfigurationError("controller.backoff_base must be > 0 and <= backoff_max")


@dataclass(frozen=True, slots=True)
class StoreConfig:
    backend: Literal["kubernetes", "memory"] = "kubernetes"
    namespace: str = ""
    kubeconfig: str | None = None


@dataclass(frozen=True, slots=True)
class ManagerConfig:
    contabo: Contabo = field(default_factory=Contabo)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LogConfig = field(default_factory=LogConfig)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    path: Path | None = None,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    """Merge the global file with the project file (or an explicit ``path``)."""
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    if path is not None:
        if not path.is_file():
            raise ConfigurationError(f"Config file {path} not found")
        project_cfg = _read_toml(path)
    else:
        project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)
    return _deep_merge(global_cfg, project_cfg)


def apply_env(raw: RawConfig, env: Mapping[str, str]) -> RawConfig:
    overrides: RawConfig = {}
    for var, (section, key) in ENV_OVERRIDES.items():
        if value := env.get(var):
            overrides.setdefault(section, {})[key] = value
    return _deep_merge(raw, overrides)


def _build[T](cls: type[T], section: str, raw: Any) -> T:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"[{section}] must be a table")
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in [{section}]: {', '.join(sorted(unknown))}. Valid: {', '.join(sorted(known))}"
        )
    try:
        return cls(**raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid [{section}]: {e}") from e


def build_config(raw: RawConfig, env: Mapping[str, str] | None = None) -> ManagerConfig:
    raw = apply_env(raw, os.environ if env is None else env)
    unknown = set(raw) - {"contabo", "controller", "store", "logging"}
    if unknown:
        raise ConfigurationError(f"Unknown config sections: {', '.join(sorted(unknown))}")

    store = _build(StoreConfig, "store", raw.get("store"))
    if store.backend not in ("kubernetes", "memory"):
        raise ConfigurationError(f"Unknown store backend '{store.backend}'. Valid: kubernetes, memory")

    return ManagerConfig(
        contabo=_build(Contabo, "contabo", raw.get("contabo")),
        controller=_build(ControllerConfig, "controller", raw.get("controller")),
        store=store,
        logging=_build(LogConfig, "logging", raw.get("logging")),
    )
