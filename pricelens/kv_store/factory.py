"""Factory helpers for choosing a key/value backend at startup."""

from __future__ import annotations

from pricelens import config
from pricelens.kv_store.base import KeyValueStore
from pricelens.kv_store.memory import InMemoryKeyValueStore
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="kv_store/factory")


DEFAULT_BACKEND_NAME = "sql"


def build_store(settings: config.Settings | None = None) -> KeyValueStore:
    """Instantiate the configured key/value store."""
    settings = settings or config.settings
    backend = (settings.store_backend or DEFAULT_BACKEND_NAME).lower()

    if backend == "memory":
        logger.info("Using in-memory key/value store; nothing survives a restart")
        return InMemoryKeyValueStore()

    if backend == "sql":
        from .sql import SqlKeyValueStore

        db_url = settings.store_database_url
        if not db_url:
            raise ValueError("store_database_url must be set for the sql store backend")
        return SqlKeyValueStore.from_url(db_url)

    if backend == "redis":
        import redis.asyncio as redis_asyncio

        from .redis import RedisKeyValueStore

        redis_url = settings.store_redis_url
        if not redis_url:
            raise ValueError("store_redis_url must be set for the redis store backend")
        logger.info("Using Redis key/value store at %s", mask_url(redis_url))
        client = redis_asyncio.Redis.from_url(redis_url)
        return RedisKeyValueStore(client, prefix=settings.store_redis_prefix)

    raise ValueError(f"Unknown store backend '{backend}'")
