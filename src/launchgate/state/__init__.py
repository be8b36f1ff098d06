"""Durable state layer.

This package is the single owner of persisted launch state: records,
the resolved destination, setup flags and the permission prompt state.
"""

from launchgate.state.backends import JsonFileBackend, KeyValueBackend, MemoryBackend
from launchgate.state.store import LaunchStore, PersistentStore, StoreKey

__all__ = [
    "JsonFileBackend",
    "KeyValueBackend",
    "LaunchStore",
    "MemoryBackend",
    "PersistentStore",
    "StoreKey",
]
