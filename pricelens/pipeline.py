"""Resolve a listing URL to one upstream price.

Per request: cache check -> listing fetch -> extract platform references ->
concurrent lookups through the proxy channel -> priority selection -> cache
write. Every path ends in a well-formed ResolvedPrice; nothing here raises to
the caller for network or parsing trouble.
"""
from __future__ import annotations

import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx
import lxml.html
from lxml import etree
from pydantic import ValidationError

from pricelens.cache import VersionedCache
from pricelens.models import ResolvedPrice
from pricelens.platforms import (
    PLATFORMS,
    Platform,
    extract_product_id,
    find_references,
    lookup_url,
    select_platform_price,
)
from pricelens.proxy import ProxyChannel
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="pipeline")

PageFetcher = Callable[[str], Awaitable[str]]

LISTING_SUBTITLE_CLASSES = ("showalbumheader__gallerysubtitle", "htmlwrap__main")
PRICE_BLOCK_CLASSES = ("rounded-sm", "bg-muted", "p-1", "text-right", "text-3xl")

_PRICE_NUMBER = re.compile(r"\d[\d,]*(?:\.\d+)?")


def _class_xpath(classes) -> str:
    """XPath matching elements that carry every class in `classes`."""
    conditions = " and ".join(
        f"contains(concat(' ', normalize-space(@class), ' '), ' {name} ')" for name in classes
    )
    return f"//*[{conditions}]"


def _parse_html(html: str):
    if not html or not html.strip():
        return None
    try:
        return lxml.html.fromstring(html)
    except (etree.LxmlError, ValueError) as exc:
        logger.debug("Unparseable HTML: %s", exc)
        return None


def extract_listing_text(html: str) -> str:
    """Text of the listing's subtitle block, where upstream links are pasted."""
    doc = _parse_html(html)
    if doc is None:
        return ""
    nodes = doc.xpath(_class_xpath(LISTING_SUBTITLE_CLASSES))
    return nodes[0].text_content() if nodes else ""


def parse_price_text(text: str) -> Optional[float]:
    """First number in a price label ("¥ 1,299.00" -> 1299.0)."""
    match = _PRICE_NUMBER.search(text or "")
    if not match:
        return None
    return float(match.group(0).replace(",", ""))


def parse_lookup_price(html: str) -> Optional[float]:
    """Price shown on a lookup page, or None when the block is missing."""
    doc = _parse_html(html)
    if doc is None:
        return None
    blocks = doc.xpath(_class_xpath(PRICE_BLOCK_CLASSES))
    if not blocks:
        return None
    spans = blocks[0].xpath(".//span")
    if not spans:
        return None
    return parse_price_text(spans[0].text_content())


class HttpPageFetcher:
    """Fetches listing pages with a shared httpx client."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def __call__(self, url: str) -> str:
        resp = await self.client.get(url, follow_redirects=True)
        resp.raise_for_status()
        return resp.text


class PriceResolutionPipeline:
    """
    Resolves listings, memoizing results in a VersionedCache.

    Concurrent requests for the same listing share one network round trip.
    Each network resolution carries a per-key generation; a result whose
    generation was superseded (forced refresh, cache invalidation) still
    answers its callers but is not written to the cache.
    """

    def __init__(
        self,
        cache: VersionedCache,
        proxy: ProxyChannel,
        page_fetcher: PageFetcher,
        *,
        lookup_base_url: str,
        platforms: Mapping[str, Platform] = PLATFORMS,
        fetch_timeout_seconds: float = 10.0,
    ) -> None:
        self.cache = cache
        self.proxy = proxy
        self.page_fetcher = page_fetcher
        self.lookup_base_url = lookup_base_url
        self.platforms = dict(platforms)
        self.fetch_timeout = fetch_timeout_seconds
        self.cache_enabled = True
        self._inflight: Dict[str, asyncio.Task] = {}
        self._generations: Dict[str, int] = {}

    async def resolve(self, url: str, *, use_cache: bool = True) -> ResolvedPrice:
        """Return the price for a listing; `use_cache=False` is the retry path."""
        if use_cache and self.cache_enabled:
            cached = await self._cached(url)
            if cached is not None:
                logger.debug("Cache hit for %s", url)
                return cached

        task = self._inflight.get(url)
        if task is None or not use_cache:
            task = self._start(url)
        return await asyncio.shield(task)

    def invalidate(self) -> None:
        """Mark every in-flight resolution as superseded."""
        for key in self._generations:
            self._generations[key] += 1

    async def handle_message(self, message: Mapping[str, Any]) -> None:
        """React to broadcast settings changes."""
        if message.get("type") == "cacheToggled":
            self.cache_enabled = bool(message.get("enabled"))
            logger.info("Listing cache %s", "enabled" if self.cache_enabled else "disabled")

    async def _cached(self, url: str) -> Optional[ResolvedPrice]:
        raw = await self.cache.get(url)
        if raw is None:
            return None
        try:
            return ResolvedPrice.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed cached price for %s: %s", url, exc)
            return None

    def _start(self, url: str) -> asyncio.Task:
        generation = self._generations.get(url, 0) + 1
        self._generations[url] = generation
        task = asyncio.ensure_future(self._resolve_and_persist(url, generation))
        self._inflight[url] = task
        task.add_done_callback(lambda done, key=url: self._forget(key, done))
        return task

    def _forget(self, url: str, task: asyncio.Task) -> None:
        if self._inflight.get(url) is task:
            del self._inflight[url]
            self._generations.pop(url, None)

    async def _resolve_and_persist(self, url: str, generation: int) -> ResolvedPrice:
        html = await self._fetch_page(url)
        if html is None:
            # failed listing fetches are not cached
            return self._unavailable()
        result = await self._select_from_page(url, html)
        if not self.cache_enabled:
            return result
        if self._generations.get(url) != generation:
            logger.debug("Discarding superseded resolution for %s", url)
            return result
        await self.cache.set(url, result.model_dump(mode="json"))
        return result

    def _unavailable(self) -> ResolvedPrice:
        return select_platform_price({}, self.platforms)

    async def fetch_listing(self, url: str) -> ResolvedPrice:
        """Network path only: fetch, extract, query platforms, select."""
        html = await self._fetch_page(url)
        if html is None:
            return self._unavailable()
        return await self._select_from_page(url, html)

    async def _fetch_page(self, url: str) -> Optional[str]:
        """Listing HTML, or None on timeout or any fetch error."""
        try:
            return await asyncio.wait_for(self.page_fetcher(url), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning("Listing fetch timed out after %ss: %s", self.fetch_timeout, url)
        except Exception as exc:
            logger.warning("Listing fetch failed for %s: %s", url, exc)
        return None

    async def _select_from_page(self, url: str, html: str) -> ResolvedPrice:
        references = find_references(extract_listing_text(html), self.platforms)
        prices: Dict[str, ResolvedPrice] = {
            name: ResolvedPrice.unavailable(name, platform.currency) for name, platform in self.platforms.items()
        }
        if not references:
            logger.debug("No platform references on listing %s", url)
            return select_platform_price(prices, self.platforms)

        outcomes = await asyncio.gather(
            *(self._query_platform(name, link) for name, link in references.items()),
            return_exceptions=True,
        )
        for name, outcome in zip(references, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("%s price lookup crashed: %s", name, outcome)
                continue
            prices[name] = outcome
        return select_platform_price(prices, self.platforms)

    async def _query_platform(self, name: str, link: str) -> ResolvedPrice:
        platform = self.platforms[name]
        product_id = extract_product_id(name, link)
        if not product_id:
            return ResolvedPrice.unavailable(name, platform.currency)

        target = lookup_url(self.lookup_base_url, name, product_id)
        try:
            response = await asyncio.wait_for(self.proxy.fetch(target), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning("%s price lookup timed out: %s", name, target)
            response = None

        price = None
        if response is not None and response.success:
            price = parse_lookup_price(response.data or "")
        elif response is not None:
            logger.info("%s price lookup failed for %s: %s", name, target, response.error)
        return ResolvedPrice(platform=name, price=price, link=link, currency=platform.currency)
