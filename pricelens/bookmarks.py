"""Saved listings, keyed by URL."""

from __future__ import annotations

import time
from typing import Dict, List

from pydantic import ValidationError

from pricelens.kv_store.base import KeyValueStore
from pricelens.models import Bookmark
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="bookmarks")

BOOKMARKS_KEY = "bookmarks"


class BookmarkStore:
    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def _load(self) -> Dict[str, dict]:
        stored = (await self.store.get([BOOKMARKS_KEY])).get(BOOKMARKS_KEY)
        return stored if isinstance(stored, dict) else {}

    async def add(self, url: str, title: str) -> Bookmark:
        """Save (or re-save) a listing; re-adding moves it to the top."""
        bookmark = Bookmark(title=title, url=url, timestamp=int(time.time() * 1000))
        bookmarks = await self._load()
        bookmarks[url] = bookmark.model_dump()
        await self.store.set({BOOKMARKS_KEY: bookmarks})
        return bookmark

    async def remove(self, url: str) -> bool:
        bookmarks = await self._load()
        if bookmarks.pop(url, None) is None:
            return False
        await self.store.set({BOOKMARKS_KEY: bookmarks})
        return True

    async def list(self) -> List[Bookmark]:
        """Newest first."""
        items: List[Bookmark] = []
        for url, raw in (await self._load()).items():
            try:
                items.append(Bookmark.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed bookmark %s", url)
        return sorted(items, key=lambda b: b.timestamp, reverse=True)
