"""Object store backed by the Kubernetes API.

Custom objects go through ``CustomObjectsApi`` and secrets through
``CoreV1Api``. The client is synchronous, so every call runs in a worker
thread via ``asyncio.to_thread``; watches stream in a thread and hand
events to the event loop through a queue.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator
from typing import Any

from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from capc.api.registry import Registry, ResourceKind
from capc.api.types import KubeObject, ObjectKey, Secret
from capc.core.exceptions import ConflictError, ObjectNotFoundError
from capc.observability.logger import logger
from capc.store.base import EventType, WatchEvent, matches_labels

WATCH_TIMEOUT_SECONDS = 300
WATCH_RETRY_BASE = 1.0
WATCH_RETRY_MAX = 60.0


def load_client_config(kubeconfig: str | None = None) -> None:
    """In-cluster service account first, then the kubeconfig file."""
    try:
        config.load_incluster_config()
    except ConfigException:
        config.load_kube_config(config_file=kubeconfig)


def _label_selector(labels: dict[str, str] | None) -> str | None:
    if not labels:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class KubernetesStore:
    def __init__(
        self,
        registry: Registry,
        *,
        namespace: str | None = None,
        api_client: client.ApiClient | None = None,
    ) -> None:
        self._registry = registry
        self._namespace = namespace or None
        self._api_client = api_client or client.ApiClient()
        self._custom = client.CustomObjectsApi(self._api_client)
        self._core = client.CoreV1Api(self._api_client)
        self._log = logger.bind(component="store", backend="kubernetes")

    def _decode[T: KubeObject](self, kind: type[T], raw: dict[str, Any]) -> T:
        return kind.from_dict(raw)

    def _translate(self, e: ApiException, kind: str, key: ObjectKey) -> Exception:
        match e.status:
            case 404:
                return ObjectNotFoundError(kind, key)
            case 409:
                return ConflictError(kind, key)
            case _:
                return e

    # ─── Objects ─────────────────────────────────────────────────────

    async def get[T: KubeObject](self, kind: type[T], key: ObjectKey) -> T | None:
        rk = self._registry.for_type(kind)
        try:
            raw = await asyncio.to_thread(
                self._custom.get_namespaced_custom_object,
                rk.group, rk.version, key.namespace, rk.plural, key.name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self._decode(kind, raw)

    async def list[T: KubeObject](
        self,
        kind: type[T],
        *,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[T]:
        rk = self._registry.for_type(kind)
        ns = namespace or self._namespace
        selector = _label_selector(labels)
        if ns:
            raw = await asyncio.to_thread(
                self._custom.list_namespaced_custom_object,
                rk.group, rk.version, ns, rk.plural, label_selector=selector,
            )
        else:
            raw = await asyncio.to_thread(
                self._custom.list_cluster_custom_object,
                rk.group, rk.version, rk.plural, label_selector=selector,
            )
        items = [self._decode(kind, item) for item in raw.get("items", [])]
        return [obj for obj in items if matches_labels(obj, labels)]

    async def _replace[T: KubeObject](self, obj: T, *, status: bool) -> T:
        rk = self._registry.for_type(type(obj))
        key = obj.metadata.key
        fn = (
            self._custom.replace_namespaced_custom_object_status
            if status else self._custom.replace_namespaced_custom_object
        )
        try:
            raw = await asyncio.to_thread(
                fn, rk.group, rk.version, key.namespace, rk.plural, key.name, obj.to_dict(),
            )
        except ApiException as e:
            raise self._translate(e, rk.kind, key) from e
        return self._decode(type(obj), raw)

    async def update[T: KubeObject](self, obj: T) -> T:
        return await self._replace(obj, status=False)

    async def update_status[T: KubeObject](self, obj: T) -> T:
        return await self._replace(obj, status=True)

    async def watch[T: KubeObject](self, kind: type[T]) -> AsyncIterator[WatchEvent[T]]:
        rk = self._registry.for_type(kind)
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        stop = threading.Event()
        thread = threading.Thread(
            target=self._stream, args=(rk, loop, queue, stop), name=f"watch-{rk.plural}", daemon=True,
        )
        thread.start()
        try:
            while True:
                item = await queue.get()
                yield WatchEvent(EventType(item["type"]), self._decode(kind, item["object"]))
        finally:
            stop.set()

    def _stream(
        self,
        rk: ResourceKind,
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue[dict[str, Any]],
        stop: threading.Event,
    ) -> None:
        """Stream events until ``stop`` is set, reconnecting after any failure."""
        log = self._log.bind(kind=rk.kind)
        args: tuple[Any, ...]
        if self._namespace:
            fn, args = self._custom.list_namespaced_custom_object, (rk.group, rk.version, self._namespace, rk.plural)
        else:
            fn, args = self._custom.list_cluster_custom_object, (rk.group, rk.version, rk.plural)

        w = watch.Watch()
        failures = 0
        while not stop.is_set():
            try:
                for event in w.stream(fn, *args, timeout_seconds=WATCH_TIMEOUT_SECONDS):
                    if stop.is_set():
                        w.stop()
                        return
                    failures = 0
                    if event.get("type") in EventType.__members__:
                        loop.call_soon_threadsafe(queue.put_nowait, event)
                continue
            except ApiException as e:
                if e.status == 410:
                    # Resource version too old: start over with a fresh listing.
                    log.warning("Watch expired, restarting")
                    w = watch.Watch()
                    continue
                error: Exception = e
            except Exception as e:
                error = e
            delay = min(WATCH_RETRY_BASE * 2 ** failures, WATCH_RETRY_MAX)
            failures += 1
            log.warning("Watch failed: {error}, reconnecting in {delay:.1f}s", error=error, delay=delay)
            stop.wait(delay)

    # ─── Secrets ─────────────────────────────────────────────────────

    async def get_secret(self, key: ObjectKey) -> Secret | None:
        try:
            raw = await asyncio.to_thread(self._core.read_namespaced_secret, key.name, key.namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return Secret.from_dict(self._api_client.sanitize_for_serialization(raw))

    async def create_secret(self, secret: Secret) -> Secret:
        key = secret.metadata.key
        body = secret.to_dict()
        body["metadata"].pop("resourceVersion", None)
        try:
            raw = await asyncio.to_thread(self._core.create_namespaced_secret, key.namespace, body)
        except ApiException as e:
            raise self._translate(e, secret.KIND, key) from e
        return Secret.from_dict(self._api_client.sanitize_for_serialization(raw))

    async def delete_secret(self, key: ObjectKey) -> bool:
        try:
            await asyncio.to_thread(self._core.delete_namespaced_secret, key.name, key.namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True
