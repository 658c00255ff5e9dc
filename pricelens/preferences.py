"""The user's platform, agent and currency choices."""

from __future__ import annotations

from pydantic import ValidationError

from pricelens.kv_store.base import KeyValueStore
from pricelens.models import Preferences
from pricelens.notifications import NotificationHub
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="preferences")

PREFERENCES_KEY = "preferences"


class PreferenceStore:
    """Loads and saves Preferences; saving announces `preferencesUpdated`."""

    def __init__(self, store: KeyValueStore, hub: NotificationHub, defaults: Preferences) -> None:
        self.store = store
        self.hub = hub
        self.defaults = defaults

    async def load(self) -> Preferences:
        """Stored preferences, with missing or invalid fields taken from defaults."""
        try:
            stored = (await self.store.get([PREFERENCES_KEY])).get(PREFERENCES_KEY)
        except Exception as exc:
            logger.error("Failed to read preferences: %s", exc)
            return self.defaults
        if not isinstance(stored, dict):
            return self.defaults
        merged = {**self.defaults.model_dump(), **{k: v for k, v in stored.items() if v}}
        try:
            return Preferences.model_validate(merged)
        except ValidationError as exc:
            logger.warning("Stored preferences are invalid; using defaults: %s", exc)
            return self.defaults

    async def save(self, preferences: Preferences) -> Preferences:
        preferences = preferences.model_copy(update={"currency": preferences.currency.upper()})
        await self.store.set({PREFERENCES_KEY: preferences.model_dump()})
        delivered = await self.hub.broadcast({"type": "preferencesUpdated", "preferences": preferences.model_dump()})
        logger.info("Preferences saved; notified %d subscribers", delivered)
        return preferences
