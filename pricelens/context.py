"""Builds every component once and wires them together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from pricelens import config
from pricelens.bookmarks import BookmarkStore
from pricelens.cache import VersionedCache
from pricelens.exchange_rates import ExchangeRateProvider
from pricelens.kv_store import KeyValueStore, build_store
from pricelens.models import Preferences
from pricelens.notifications import NotificationHub
from pricelens.pipeline import HttpPageFetcher, PriceResolutionPipeline
from pricelens.preferences import PreferenceStore
from pricelens.pricing import PriceQuoteService
from pricelens.proxy import ProxyChannel
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="context")

USER_AGENT = "pricelens/0.1"


@dataclass
class AppContext:
    settings: config.Settings
    store: KeyValueStore
    http_client: httpx.AsyncClient
    cache: VersionedCache
    rates: ExchangeRateProvider
    proxy: ProxyChannel
    pipeline: PriceResolutionPipeline
    hub: NotificationHub
    preferences: PreferenceStore
    bookmarks: BookmarkStore
    quotes: PriceQuoteService

    @classmethod
    def from_settings(
        cls,
        settings: config.Settings | None = None,
        *,
        store: KeyValueStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        proxy: ProxyChannel | None = None,
    ) -> "AppContext":
        """Build the object graph; pass `store`, `http_client` or `proxy` to override backends."""
        settings = settings or config.settings
        store = store if store is not None else build_store(settings)
        http_client = http_client or httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            timeout=settings.fetch_timeout_seconds,
        )
        cache = VersionedCache(
            store,
            schema_version=settings.cache_schema_version,
            max_age_seconds=settings.cache_max_age_seconds,
            max_items=settings.cache_max_items,
            cleanup_interval_seconds=settings.cache_cleanup_interval_seconds,
        )
        rates = ExchangeRateProvider(
            settings.rates_sources,
            client=http_client,
            base_currency=settings.base_currency,
            refresh_interval_seconds=settings.rates_refresh_interval_seconds,
            timeout_seconds=settings.rates_timeout_seconds,
        )
        proxy = proxy or ProxyChannel(timeout_seconds=settings.proxy_timeout_seconds)
        pipeline = PriceResolutionPipeline(
            cache,
            proxy,
            HttpPageFetcher(http_client),
            lookup_base_url=settings.lookup_base_url,
            fetch_timeout_seconds=settings.fetch_timeout_seconds,
        )
        hub = NotificationHub()
        hub.subscribe(pipeline.handle_message)
        defaults = Preferences(
            platform=settings.default_platform,
            agent=settings.default_agent,
            currency=settings.default_currency,
        )
        logger.info("Application context ready (store backend: %s)", settings.store_backend)
        return cls(
            settings=settings,
            store=store,
            http_client=http_client,
            cache=cache,
            rates=rates,
            proxy=proxy,
            pipeline=pipeline,
            hub=hub,
            preferences=PreferenceStore(store, hub, defaults),
            bookmarks=BookmarkStore(store),
            quotes=PriceQuoteService(rates),
        )

    async def clear_cache(self) -> None:
        """Empty the listing cache and keep in-flight resolutions from refilling it."""
        self.pipeline.invalidate()
        await self.cache.clear()

    async def import_cache(self, data: Mapping[str, Any]) -> int:
        """Replace the listing cache with an export; in-flight resolutions are superseded first."""
        self.pipeline.invalidate()
        return await self.cache.import_export(data)

    async def set_cache_enabled(self, enabled: bool) -> int:
        return await self.hub.broadcast({"type": "cacheToggled", "enabled": enabled})

    async def close(self) -> None:
        await self.http_client.aclose()
        await self.store.close()
