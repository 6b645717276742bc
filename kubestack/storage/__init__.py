"""Durable stores for cached data and stack snapshots."""

from kubestack.storage.kv_store import (
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
)
from kubestack.storage.snapshot_store import StackSnapshot, StackSnapshotStore

__all__ = [
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "StackSnapshot",
    "StackSnapshotStore",
]
