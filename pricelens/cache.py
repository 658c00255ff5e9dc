"""Persistent listing cache with TTL, LRU eviction and schema-version wipes.

The whole entry map lives in memory and is mirrored to the key/value store
under a single document. Loading happens once per process, on first use; every
caller awaits the same initialization task. The cache is best-effort: store
failures are logged and the in-memory view keeps serving.
"""

from __future__ import annotations

import asyncio
import copy
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from pricelens.errors import CacheImportError
from pricelens.kv_store.base import KeyValueStore
from pricelens.models import CacheExport, CacheStats
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache")

PRODUCT_CACHE_KEY = "product_cache"
CACHE_METADATA_KEY = "cache_metadata"


@dataclass
class CacheEntry:
    """One cached payload plus its write and last-read times (epoch seconds)."""
    payload: Any
    created_at: float
    last_accessed_at: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CacheEntry"]:
        """Parse a stored entry, returning None when it is malformed."""
        if not isinstance(data, dict):
            return None
        try:
            created_at = float(data["created_at"])
            last_accessed_at = float(data.get("last_accessed_at", created_at))
        except (KeyError, TypeError, ValueError):
            return None
        return cls(payload=data.get("payload"), created_at=created_at, last_accessed_at=last_accessed_at)


@dataclass
class CacheMetadata:
    """Process-wide record: schema version and time of the last sweep."""
    schema_version: str
    last_cleanup_at: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CacheMetadata"]:
        if not isinstance(data, dict):
            return None
        try:
            return cls(schema_version=str(data["schema_version"]), last_cleanup_at=float(data["last_cleanup_at"]))
        except (KeyError, TypeError, ValueError):
            return None


class VersionedCache:
    """Key -> JSON payload cache persisted through a KeyValueStore."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        schema_version: str,
        max_age_seconds: float,
        max_items: int,
        cleanup_interval_seconds: float = 24 * 60 * 60,
    ) -> None:
        self.store = store
        self.schema_version = schema_version
        self.max_age = max_age_seconds
        self.max_items = max_items
        self.cleanup_interval = cleanup_interval_seconds
        self._entries: Dict[str, CacheEntry] = {}
        self._metadata: Optional[CacheMetadata] = None
        self._initialized = False
        self._init_task: Optional[asyncio.Task] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def __len__(self) -> int:
        return len(self._entries)

    def is_valid(self, entry: CacheEntry, now: float | None = None) -> bool:
        """An entry is valid while younger than max age and carrying a payload."""
        now = time.time() if now is None else now
        return entry.payload is not None and now - entry.created_at < self.max_age

    # ----------------------------- lifecycle -----------------------------

    async def initialize(self) -> None:
        """Load persisted state once; concurrent callers share the same task."""
        if self._initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        await asyncio.shield(self._init_task)

    async def _initialize(self) -> None:
        now = time.time()
        metadata: Optional[CacheMetadata] = None
        try:
            stored = await self.store.get([CACHE_METADATA_KEY])
            raw_metadata = stored.get(CACHE_METADATA_KEY)
            metadata = CacheMetadata.from_dict(raw_metadata)

            if raw_metadata is None:
                metadata = CacheMetadata(schema_version=self.schema_version, last_cleanup_at=now)
            elif metadata is None or metadata.schema_version != self.schema_version:
                logger.info(
                    "Cache schema changed (%s -> %s); wiping persisted entries",
                    getattr(metadata, "schema_version", None),
                    self.schema_version,
                )
                await self._clear(raise_errors=True)
                metadata = CacheMetadata(schema_version=self.schema_version, last_cleanup_at=now)

            stored = await self.store.get([PRODUCT_CACHE_KEY])
            raw_entries = stored.get(PRODUCT_CACHE_KEY) or {}
            if isinstance(raw_entries, dict):
                for key, raw in raw_entries.items():
                    entry = CacheEntry.from_dict(raw)
                    if entry is not None and self.is_valid(entry, now):
                        self._entries[key] = entry

            if now - metadata.last_cleanup_at > self.cleanup_interval:
                await self._cleanup()
                metadata.last_cleanup_at = time.time()

            self._metadata = metadata
            await self.store.set({CACHE_METADATA_KEY: metadata.to_dict()})
            logger.debug("Cache initialized with %d valid items", len(self._entries))
        except Exception as exc:
            logger.error("Cache initialization error; continuing with in-memory state: %s", exc)
        finally:
            if self._metadata is None:
                self._metadata = metadata or CacheMetadata(schema_version=self.schema_version, last_cleanup_at=now)
            self._initialized = True

    # ----------------------------- reads/writes -----------------------------

    async def get(self, key: str) -> Any:
        """Return a copy of the payload for `key`, or None if absent or expired."""
        await self.initialize()
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = time.time()
        if not self.is_valid(entry, now):
            self._entries.pop(key, None)
            return None
        entry.last_accessed_at = now
        return copy.deepcopy(entry.payload)

    async def set(self, key: str, value: Any) -> None:
        """Store a brand-new entry for `key` and persist the whole map."""
        await self.initialize()
        now = time.time()
        self._entries[key] = CacheEntry(payload=copy.deepcopy(value), created_at=now, last_accessed_at=now)
        if len(self._entries) > self.max_items:
            await self._cleanup(persist=False)
        await self._persist()

    async def cleanup(self) -> int:
        """Drop invalid entries, then evict least-recently-accessed ones over capacity."""
        await self.initialize()
        return await self._cleanup()

    async def _cleanup(self, *, persist: bool = True) -> int:
        now = time.time()
        expired = [key for key, entry in self._entries.items() if not self.is_valid(entry, now)]
        for key in expired:
            del self._entries[key]
        removed = len(expired)

        if len(self._entries) > self.max_items:
            # most recent first; popping from the tail evicts the coldest entries
            ordered = sorted(self._entries.items(), key=lambda kv: kv[1].last_accessed_at, reverse=True)
            while len(self._entries) > self.max_items:
                key, _entry = ordered.pop()
                del self._entries[key]
                removed += 1

        if removed:
            logger.debug("Cleaned up %d cache entries", removed)
            if persist:
                await self._persist()
        return removed

    async def clear(self) -> None:
        """Empty the cache in memory and in the store."""
        await self.initialize()
        await self._clear()

    async def _clear(self, *, raise_errors: bool = False) -> None:
        self._entries.clear()
        self._metadata = CacheMetadata(schema_version=self.schema_version, last_cleanup_at=time.time())
        try:
            await self.store.remove([PRODUCT_CACHE_KEY, CACHE_METADATA_KEY])
        except Exception as exc:
            logger.error("Cache clear error: %s", exc)
            if raise_errors:
                raise
            return
        logger.info("Cache cleared")

    async def _persist(self) -> None:
        try:
            await self.store.set({PRODUCT_CACHE_KEY: {key: entry.to_dict() for key, entry in self._entries.items()}})
        except Exception as exc:
            logger.error("Cache persistence error: %s", exc)

    async def _persist_metadata(self) -> None:
        try:
            await self.store.set({CACHE_METADATA_KEY: self._metadata.to_dict()})
        except Exception as exc:
            logger.error("Cache metadata persistence error: %s", exc)

    # ----------------------------- settings surface -----------------------------

    async def stats(self) -> CacheStats:
        """Item count, schema version and last sweep time."""
        await self.initialize()
        return CacheStats(
            items=len(self._entries),
            schema_version=self.schema_version,
            last_cleanup_at=self._metadata.last_cleanup_at if self._metadata else None,
        )

    async def export(self) -> CacheExport:
        """Snapshot valid payloads in the interchange format."""
        await self.initialize()
        now = time.time()
        items = {key: copy.deepcopy(entry.payload) for key, entry in self._entries.items() if self.is_valid(entry, now)}
        return CacheExport(version=self.schema_version, timestamp=int(now * 1000), items=items)

    async def import_export(self, data: CacheExport | Mapping[str, Any]) -> int:
        """
        Replace the cache with the items of an export.

        The export must carry this build's schema version (strict equality)
        and an `items` map; anything else raises CacheImportError and leaves
        the cache as it was. Imported entries get fresh timestamps.
        """
        try:
            export = data if isinstance(data, CacheExport) else CacheExport.model_validate(data)
        except ValidationError as exc:
            raise CacheImportError("Invalid cache file format: version and items are required") from exc
        if export.version != self.schema_version:
            raise CacheImportError(
                f"Cache file version {export.version!r} does not match expected version {self.schema_version!r}"
            )

        await self.initialize()
        now = time.time()
        self._entries = {
            key: CacheEntry(payload=copy.deepcopy(value), created_at=now, last_accessed_at=now)
            for key, value in export.items.items()
            if value is not None
        }
        await self._cleanup(persist=False)
        self._metadata = CacheMetadata(schema_version=self.schema_version, last_cleanup_at=now)
        await self._persist()
        await self._persist_metadata()
        logger.info("Imported %d cache entries", len(self._entries))
        return len(self._entries)
