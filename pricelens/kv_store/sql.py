"""SQLAlchemy-backed key/value store (SQLite by default).

Documents live in a single two-column table. Every public call runs in one
transaction on a worker thread, so a multi-key `set` either lands completely
or not at all and the event loop never blocks on disk I/O.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Iterable, List, Mapping

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, delete, insert, select
from sqlalchemy.engine import Engine

from pricelens.kv_store.base import KeyValueStore
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="kv_store/sql_store")

DEFAULT_TABLE_NAME = "pricelens_kv"


class SqlKeyValueStore(KeyValueStore):
    """Durable store on any SQLAlchemy engine."""

    def __init__(self, engine: Engine, *, table_name: str = DEFAULT_TABLE_NAME) -> None:
        """Bind to an engine and create the backing table if needed."""
        self.engine = engine
        self.metadata = MetaData()
        self.table = Table(
            table_name,
            self.metadata,
            Column("key", String(512), primary_key=True),
            Column("value", Text, nullable=False),
        )
        self.metadata.create_all(self.engine)

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlKeyValueStore":
        """Create an engine from a URL and build the store."""
        logger.info("Opening SQL key/value store at %s", mask_url(database_url))
        engine = create_engine(database_url, future=True)
        return cls(engine, **kwargs)

    def _get_sync(self, keys: List[str]) -> Dict[str, Any]:
        if not keys:
            return {}
        stmt = select(self.table.c.key, self.table.c.value).where(self.table.c.key.in_(keys))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return {row.key: json.loads(row.value) for row in rows}

    def _set_sync(self, encoded: Dict[str, str]) -> None:
        if not encoded:
            return
        with self.engine.begin() as conn:
            conn.execute(delete(self.table).where(self.table.c.key.in_(list(encoded))))
            conn.execute(
                insert(self.table),
                [{"key": key, "value": value} for key, value in encoded.items()],
            )

    def _remove_sync(self, keys: List[str]) -> None:
        if not keys:
            return
        with self.engine.begin() as conn:
            conn.execute(delete(self.table).where(self.table.c.key.in_(keys)))

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Fetch documents for `keys`."""
        return await asyncio.to_thread(self._get_sync, list(keys))

    async def set(self, items: Mapping[str, Any]) -> None:
        """Upsert documents in a single transaction."""
        encoded = {key: json.dumps(value) for key, value in items.items()}
        await asyncio.to_thread(self._set_sync, encoded)

    async def remove(self, keys: Iterable[str]) -> None:
        """Delete documents in a single transaction."""
        await asyncio.to_thread(self._remove_sync, list(keys))

    async def close(self) -> None:
        """Dispose of pooled connections."""
        await asyncio.to_thread(self.engine.dispose)
