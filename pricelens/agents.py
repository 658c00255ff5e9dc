"""Purchasing agents: their markup and how to link a product through them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol
from urllib.parse import quote, urlencode

from pricelens.platforms import TAOBAO, WEIDIAN, extract_product_id

DEFAULT_FEE_MULTIPLIER = 1.03


class LinkBuilder(Protocol):
    def build(self, platform: str, product_url: str) -> Optional[str]:
        ...


@dataclass(frozen=True)
class QueryAppendLinkBuilder:
    """`{base_url}?url=<encoded product url>`; works for any platform."""
    base_url: str
    param: str = "url"

    def build(self, platform: str, product_url: str) -> Optional[str]:
        sep = "&" if "?" in self.base_url else "?"
        return f"{self.base_url}{sep}{urlencode({self.param: product_url})}"


@dataclass(frozen=True)
class CssbuyLinkBuilder:
    base_url: str = "https://www.cssbuy.com"

    def build(self, platform: str, product_url: str) -> Optional[str]:
        product_id = extract_product_id(platform, product_url)
        if not product_id:
            return None
        if platform == WEIDIAN.name:
            return f"{self.base_url}/item-micro-{product_id}.html"
        if platform == TAOBAO.name:
            return f"{self.base_url}/item-{product_id}.html"
        return None


@dataclass(frozen=True)
class SugargooLinkBuilder:
    base_url: str = "https://www.sugargoo.com/#/home/productDetail"

    def build(self, platform: str, product_url: str) -> Optional[str]:
        return f"{self.base_url}?productLink={quote(product_url, safe='')}"


@dataclass(frozen=True)
class CnfansLinkBuilder:
    base_url: str = "https://cnfans.com/product/"
    shop_types = {TAOBAO.name: "taobao", WEIDIAN.name: "weidian"}

    def build(self, platform: str, product_url: str) -> Optional[str]:
        shop_type = self.shop_types.get(platform)
        product_id = extract_product_id(platform, product_url)
        if not shop_type or not product_id:
            return None
        return f"{self.base_url}?{urlencode({'shop_type': shop_type, 'id': product_id})}"


@dataclass(frozen=True)
class Agent:
    id: str
    name: str
    fee_multiplier: float
    link_builder: LinkBuilder

    def product_link(self, platform: str, product_url: Optional[str]) -> Optional[str]:
        if not product_url:
            return None
        return self.link_builder.build(platform, product_url)


AGENTS: Dict[str, Agent] = {
    agent.id: agent
    for agent in (
        Agent("superbuy", "Superbuy", 1.0238, QueryAppendLinkBuilder("https://www.superbuy.com/en/page/buy/")),
        Agent("wegobuy", "Wegobuy", DEFAULT_FEE_MULTIPLIER, QueryAppendLinkBuilder("https://www.wegobuy.com/en/page/buy/")),
        Agent("cssbuy", "CSSBuy", 1.02, CssbuyLinkBuilder()),
        Agent("sugargoo", "Sugargoo", DEFAULT_FEE_MULTIPLIER, SugargooLinkBuilder()),
        Agent("cnfans", "CNFans", DEFAULT_FEE_MULTIPLIER, CnfansLinkBuilder()),
    )
}


def get_agent(agent_id: Optional[str]) -> Agent:
    """Registry lookup; unknown ids get the default fee and the generic link rule."""
    agent = AGENTS.get((agent_id or "").lower())
    if agent is not None:
        return agent
    name = agent_id or "unknown"
    return Agent(name, name, DEFAULT_FEE_MULTIPLIER, AGENTS["superbuy"].link_builder)


def fee_multiplier(agent_id: Optional[str]) -> float:
    return get_agent(agent_id).fee_multiplier
