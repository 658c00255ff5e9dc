"""Shared protocol for durable key/value backends."""

from typing import Any, Dict, Iterable, Mapping, Protocol


class KeyValueStore(Protocol):
    """
    Async key -> JSON document store.

    Each call is applied as a unit: a `set` of several keys never lands
    half-written, and missing keys are simply absent from `get` results.
    """

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return the stored documents for `keys`, omitting keys that are absent."""

    async def set(self, items: Mapping[str, Any]) -> None:
        """Write every document in `items`."""

    async def remove(self, keys: Iterable[str]) -> None:
        """Delete `keys` without raising for ones that are absent."""

    async def close(self) -> None:
        """Release connections held by the backend."""
