"""Pydantic records shared by the cache, the pipeline and the HTTP surface."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

PRICE_UNAVAILABLE_LABEL = "N/A"


class ResolvedPrice(BaseModel):
    """Outcome of one resolution attempt; `price is None` means unavailable."""
    model_config = ConfigDict(frozen=True)

    platform: str
    price: Optional[float] = None
    link: Optional[str] = None
    currency: str = "CNY"

    @property
    def is_available(self) -> bool:
        """True when a numeric price was found."""
        return self.price is not None

    @classmethod
    def unavailable(cls, platform: str, currency: str = "CNY") -> "ResolvedPrice":
        """Build the well-formed "no price, no link" result."""
        return cls(platform=platform, price=None, link=None, currency=currency)


class Preferences(BaseModel):
    """User choices applied at presentation time only."""
    platform: str
    agent: str
    currency: str


class Bookmark(BaseModel):
    """A saved listing; `timestamp` is epoch milliseconds."""
    title: str
    url: str
    timestamp: int


class CacheExport(BaseModel):
    """File interchange format for the listing price cache."""
    version: str
    timestamp: Optional[int] = None
    items: Dict[str, Any]


class CacheStats(BaseModel):
    """Summary shown on the settings surface."""
    items: int
    schema_version: str
    last_cleanup_at: Optional[float] = None


class PriceQuote(BaseModel):
    """A resolved price after agent fee and currency conversion."""
    platform: str
    link: Optional[str] = None
    agent: str
    agent_link: Optional[str] = None
    currency: str
    amount: Optional[float] = None
    display: str = PRICE_UNAVAILABLE_LABEL
    converted: bool = Field(
        default=False,
        description="False when no exchange-rate table was usable and the amount is unconverted.",
    )
