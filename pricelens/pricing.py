"""Agent fees and currency display, applied to resolved prices at read time.

Cached prices are stored in their upstream currency without any fee, so a
change of agent or display currency never invalidates the cache.
"""
from __future__ import annotations

from typing import Callable, Optional

from pricelens.agents import get_agent
from pricelens.errors import RatesUnavailableError
from pricelens.exchange_rates import ExchangeRateProvider
from pricelens.models import PRICE_UNAVAILABLE_LABEL, Preferences, PriceQuote, ResolvedPrice
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="pricing")

Converter = Callable[[float, str, str], float]

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "CNY": "¥",
    "JPY": "¥",
    "CAD": "C$",
    "AUD": "A$",
    "KRW": "₩",
}
SUFFIX_SYMBOLS = {"PLN": "zł"}


def apply_agent_fee(price: float, agent_id: Optional[str]) -> float:
    """Price including the agent's markup, rounded to cents. Unknown agents pay the default."""
    return round(price * get_agent(agent_id).fee_multiplier, 2)


def format_price(amount: Optional[float], currency_code: str) -> str:
    if amount is None:
        return PRICE_UNAVAILABLE_LABEL
    code = (currency_code or "").upper()
    if code in SUFFIX_SYMBOLS:
        return f"{amount:.2f} {SUFFIX_SYMBOLS[code]}"
    return f"{CURRENCY_SYMBOLS.get(code, '')}{amount:.2f}"


def compose_price(
    amount: float,
    from_code: str,
    agent_id: Optional[str],
    display_code: str,
    convert: Converter,
    base_code: str = "USD",
) -> float:
    """
    Upstream currency -> base currency -> agent fee -> display currency.

    The fee is applied to the base amount; the order is fixed because each
    conversion step can round or fall back to identity independently.
    """
    base_amount = convert(amount, from_code, base_code)
    with_fee = base_amount * get_agent(agent_id).fee_multiplier
    return round(convert(with_fee, base_code, display_code), 2)


class PriceQuoteService:
    """Turns a ResolvedPrice into what the user sees for their preferences."""

    def __init__(self, rates: ExchangeRateProvider) -> None:
        self.rates = rates

    async def quote(self, resolved: ResolvedPrice, preferences: Preferences) -> PriceQuote:
        agent = get_agent(preferences.agent)
        quote = PriceQuote(
            platform=resolved.platform,
            link=resolved.link,
            agent=agent.id,
            agent_link=agent.product_link(resolved.platform, resolved.link),
            currency=preferences.currency.upper(),
        )
        if not resolved.is_available:
            return quote

        try:
            await self.rates.get_rates()
        except RatesUnavailableError as exc:
            logger.warning("Quoting without fresh exchange rates: %s", exc)

        display_code = preferences.currency.upper()
        converted = self.rates.table is not None
        if not converted:
            # identity conversion; label the amount with the currency it is really in
            display_code = resolved.currency.upper()

        amount = compose_price(
            resolved.price,
            resolved.currency,
            agent.id,
            display_code,
            self.rates.convert,
            base_code=self.rates.base_currency,
        )
        return quote.model_copy(update={
            "currency": display_code,
            "amount": amount,
            "display": format_price(amount, display_code),
            "converted": converted,
        })
