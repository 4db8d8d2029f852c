"""Object stores: the reconcilers' view of the Kubernetes API."""

from capc.store.base import EventType, ObjectStore, WatchEvent
from capc.store.memory import MemoryStore

__all__ = ["EventType", "MemoryStore", "ObjectStore", "WatchEvent"]
