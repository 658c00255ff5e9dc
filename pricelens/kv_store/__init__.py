"""Durable key/value backends."""

from .base import KeyValueStore
from .factory import build_store
from .memory import InMemoryKeyValueStore

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "build_store",
]
