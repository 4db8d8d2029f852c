"""Controller manager entry point: ``python -m capc`` or ``capc``."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import signal
from pathlib import Path

from capc.api.registry import default_registry
from capc.config import ManagerConfig, build_config, load_config
from capc.observability.logger import logger
from capc.observability.logging import setup_logging, teardown_logging
from capc.providers.base import ComputeProvider
from capc.scheduler.manager import Manager
from capc.store.base import ObjectStore
from capc.store.kubernetes import KubernetesStore, load_client_config
from capc.store.memory import MemoryStore

log = logger.bind(component="main")


def _create_store(config: ManagerConfig) -> ObjectStore:
    match config.store.backend:
        case "memory":
            return MemoryStore()
        case "kubernetes":
            load_client_config(config.store.kubeconfig)
            return KubernetesStore(default_registry(), namespace=config.store.namespace or None)


async def main(config: ManagerConfig) -> None:
    handler_ids = setup_logging(config.logging)
    try:
        provider = await config.contabo.create_provider()
        try:
            await _serve(config, provider)
        finally:
            await provider.close()
    finally:
        teardown_logging(handler_ids)


async def _serve(config: ManagerConfig, provider: ComputeProvider) -> None:
    manager = Manager(_create_store(config), provider, config.controller)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.ensure_future(manager.stop()))

    log.info(
        "Starting capc (store={backend}, workers={workers})",
        backend=config.store.backend, workers=config.controller.workers,
    )
    await manager.run()


def cli() -> None:
    parser = argparse.ArgumentParser(description="Contabo Cluster API infrastructure provider")
    parser.add_argument("--config", type=Path, default=None, help="Config file (default: ./capc.toml)")
    parser.add_argument("--log-level", type=str, default=None, choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--store", type=str, default=None, choices=["kubernetes", "memory"])
    parser.add_argument("--namespace", type=str, default=None, help="Only watch this namespace")
    args = parser.parse_args()

    config = build_config(load_config(path=args.config))
    if args.log_level:
        config = dataclasses.replace(config, logging=dataclasses.replace(config.logging, level=args.log_level))
    if args.store or args.namespace:
        config = dataclasses.replace(config, store=dataclasses.replace(
            config.store,
            backend=args.store or config.store.backend,
            namespace=args.namespace or config.store.namespace,
        ))
    asyncio.run(main(config))


if __name__ == "__main__":
    cli()
