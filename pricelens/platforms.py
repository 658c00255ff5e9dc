"""Upstream marketplaces a listing can link to, and how one price is chosen."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Mapping, Optional
from urllib.parse import parse_qs, quote, urlsplit

from pricelens.models import ResolvedPrice
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="platforms")


@dataclass(frozen=True)
class Platform:
    """A marketplace; lower `priority` wins ties during selection."""
    name: str
    priority: int
    reference_pattern: re.Pattern
    currency: str = "CNY"


TAOBAO = Platform(
    name="taobao",
    priority=1,
    reference_pattern=re.compile(r'item\.taobao\.com[^\s"]*'),
)
WEIDIAN = Platform(
    name="weidian",
    priority=2,
    reference_pattern=re.compile(r'shop\d+\.v\.weidian\.com/item\.html\?[^\s"]*'),
)

PLATFORMS: Dict[str, Platform] = {p.name: p for p in (TAOBAO, WEIDIAN)}


def _query_param(url: str, name: str) -> Optional[str]:
    """Case-insensitive lookup of the first value of a query parameter."""
    params = parse_qs(urlsplit(url).query)
    for key, values in params.items():
        if key.lower() == name.lower() and values and values[0]:
            return values[0]
    return None


def extract_product_id(platform: str, raw_url: str) -> Optional[str]:
    """
    Return the platform's product id embedded in `raw_url`, or None.

    - weidian: the `itemID` query parameter
      (`https://shop123.v.weidian.com/item.html?itemID=7234120843`);
    - taobao: the `id` query parameter, else a numeric last path segment
      (`https://item.taobao.com/item.htm?id=12345`, `https://item.taobao.com/12345`).
    """
    try:
        if platform == WEIDIAN.name:
            return _query_param(raw_url, "itemID")
        if platform == TAOBAO.name:
            item_id = _query_param(raw_url, "id")
            if item_id:
                return item_id
            last = urlsplit(raw_url).path.rstrip("/").rsplit("/", 1)[-1]
            return last if last.isdigit() else None
    except ValueError as exc:
        logger.debug("Could not parse %s url %r: %s", platform, raw_url, exc)
        return None
    return None


def normalize_link(reference: str) -> str:
    """Page text references omit the scheme; add https when missing."""
    if reference.startswith(("http://", "https://")):
        return reference
    return f"https://{reference}"


def find_references(text: str, platforms: Mapping[str, Platform] = PLATFORMS) -> Dict[str, str]:
    """Return `platform -> link` for each platform whose pattern matches `text`."""
    found: Dict[str, str] = {}
    for name, platform in platforms.items():
        match = platform.reference_pattern.search(text or "")
        if match:
            found[name] = normalize_link(match.group(0))
    return found


def lookup_url(base_url: str, platform: str, product_id: str) -> str:
    """Price lookup page for a product on the lookup site."""
    return f"{base_url.rstrip('/')}/{platform}/{quote(product_id, safe='')}"


def select_platform_price(
    prices: Mapping[str, ResolvedPrice],
    platforms: Mapping[str, Platform] = PLATFORMS,
) -> ResolvedPrice:
    """
    Pick the one price to show.

    Platforms holding both a price and a link compete on ascending priority;
    equal priorities keep the order of `prices`. With no such platform the
    lowest-priority-value platform is returned as-is, unavailable or not.
    """
    available = [
        (platforms[name].priority, result) for name, result in prices.items()
        if name in platforms and result.is_available and result.link
    ]
    if available:
        return sorted(available, key=lambda pair: pair[0])[0][1]

    fallback = min(platforms.values(), key=lambda p: p.priority)
    return prices.get(fallback.name) or ResolvedPrice.unavailable(fallback.name, fallback.currency)
