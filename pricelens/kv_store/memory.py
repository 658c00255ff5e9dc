"""In-memory key/value store, intended for development and tests."""

import json
from typing import Any, Dict, Iterable, Mapping

from pricelens.kv_store.base import KeyValueStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="kv_store/in_memory_store")


class InMemoryKeyValueStore(KeyValueStore):
    """Non-durable store that keeps documents as serialized JSON."""

    def __init__(self) -> None:
        logger.debug("Initializing InMemoryKeyValueStore")
        self._data: dict[str, str] = {}

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return decoded copies so callers never share state with the store."""
        return {key: json.loads(self._data[key]) for key in keys if key in self._data}

    async def set(self, items: Mapping[str, Any]) -> None:
        """Serialize everything first so a bad document leaves the store untouched."""
        encoded = {key: json.dumps(value) for key, value in items.items()}
        self._data.update(encoded)

    async def remove(self, keys: Iterable[str]) -> None:
        """Remove keys if present."""
        for key in keys:
            self._data.pop(key, None)

    async def close(self) -> None:
        """Nothing to release."""
