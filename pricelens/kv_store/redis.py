"""Redis-backed key/value store."""

import json
from typing import Any, Dict, Iterable, Mapping

from pricelens.kv_store.base import KeyValueStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="kv_store/redis_store")


class RedisKeyValueStore(KeyValueStore):
    """Stores each document as a JSON string under `prefix + key`."""

    def __init__(self, client, prefix: str = "pricelens:") -> None:
        """Initialize with an asyncio Redis client and a key prefix."""
        logger.debug("Initializing RedisKeyValueStore")
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        """Return the Redis key for a store key."""
        return f"{self.prefix}{key}"

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Fetch documents with one MGET, skipping missing or corrupt values."""
        keys = list(keys)
        if not keys:
            return {}
        raw_values = await self.client.mget([self._key(k) for k in keys])
        out: Dict[str, Any] = {}
        for key, raw in zip(keys, raw_values):
            if raw is None:
                continue
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            try:
                out[key] = json.loads(raw)
            except ValueError as exc:
                logger.error("Discarding undecodable document for %s: %s", key, exc)
        return out

    async def set(self, items: Mapping[str, Any]) -> None:
        """Write all documents inside one MULTI/EXEC transaction."""
        encoded = {self._key(k): json.dumps(v) for k, v in items.items()}
        if not encoded:
            return
        async with self.client.pipeline(transaction=True) as pipe:
            for key, value in encoded.items():
                pipe.set(key, value)
            await pipe.execute()

    async def remove(self, keys: Iterable[str]) -> None:
        """Delete keys if present."""
        keys = [self._key(k) for k in keys]
        if keys:
            await self.client.delete(*keys)

    async def close(self) -> None:
        """Close the client's connection pool."""
        await self.client.aclose()
