"""Currency table fetched from public rate APIs, refreshed on an interval."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

import httpx

from pricelens.errors import RatesUnavailableError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="exchange_rates")


@dataclass(frozen=True)
class ExchangeRateTable:
    """One unit of `base` equals `rates[code]` units of `code`."""
    base: str
    rates: Mapping[str, float] = field(default_factory=dict)
    fetched_at: float = 0.0

    def convert(self, amount: float, from_code: str, to_code: str) -> float:
        """Convert through the base currency; unknown codes leave `amount` unchanged."""
        src, dst = from_code.upper(), to_code.upper()
        if src == dst:
            return amount
        src_rate = self.rates.get(src)
        dst_rate = self.rates.get(dst)
        if not src_rate or not dst_rate:
            logger.warning("No rate for %s -> %s; returning amount unchanged", src, dst)
            return amount
        return amount / src_rate * dst_rate


def parse_rates_payload(payload: Any, base: str) -> Dict[str, float]:
    """
    Extract a `code -> rate` map from a rate API response.

    Two shapes are understood:
    - `{"rates": {"EUR": 0.92, ...}}` (open.er-api.com, exchangerate-api.com),
      optionally with `"result": "success"`;
    - `{"usd": {"eur": 0.92, ...}}` (currency-api), keyed by the lower-case base.
    """
    if not isinstance(payload, dict):
        raise ValueError("rate payload is not an object")
    if payload.get("result") not in (None, "success"):
        raise ValueError(f"rate API reported {payload.get('result')!r}")
    raw = payload.get("rates")
    if raw is None:
        raw = payload.get(base.lower())
    if not isinstance(raw, dict) or not raw:
        raise ValueError("rate payload has no rates map")

    rates = {
        str(code).upper(): float(value)
        for code, value in raw.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0
    }
    rates.setdefault(base.upper(), 1.0)
    if len(rates) < 2:
        raise ValueError("rate payload has no usable rates")
    return rates


class ExchangeRateProvider:
    """
    Owns the in-memory ExchangeRateTable shared by every quote.

    Concurrent callers that find the table stale share one refresh. Sources
    are tried in order and the first parseable answer wins. A stale table is
    kept after a failed refresh so `convert` still has something to use.
    """

    def __init__(
        self,
        sources: Sequence[str],
        *,
        client: httpx.AsyncClient,
        base_currency: str = "USD",
        refresh_interval_seconds: float = 3600,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.sources = list(sources)
        self.client = client
        self.base_currency = base_currency.upper()
        self.refresh_interval = refresh_interval_seconds
        self.timeout = timeout_seconds
        self._table: Optional[ExchangeRateTable] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def table(self) -> Optional[ExchangeRateTable]:
        return self._table

    def is_fresh(self, now: float | None = None) -> bool:
        if self._table is None:
            return False
        now = time.time() if now is None else now
        return now - self._table.fetched_at < self.refresh_interval

    async def get_rates(self) -> ExchangeRateTable:
        """Return a fresh table, refreshing from the sources when needed."""
        if self.is_fresh():
            return self._table
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh())
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> ExchangeRateTable:
        failures: Dict[str, str] = {}
        for url in self.sources:
            try:
                resp = await self.client.get(url, timeout=self.timeout)
                resp.raise_for_status()
                rates = parse_rates_payload(resp.json(), self.base_currency)
            except (httpx.HTTPError, ValueError) as exc:
                failures[url] = str(exc) or exc.__class__.__name__
                logger.warning("Exchange-rate source %s failed; trying next: %s", url, failures[url])
                continue

            table = ExchangeRateTable(base=self.base_currency, rates=rates, fetched_at=time.time())
            # a slower, older refresh must not replace a newer table
            if self._table is None or table.fetched_at >= self._table.fetched_at:
                self._table = table
            logger.info("Loaded %d exchange rates from %s", len(rates), url)
            return self._table

        logger.error("All exchange-rate sources failed: %s", failures)
        raise RatesUnavailableError(failures)

    def convert(self, amount: float, from_code: str, to_code: str) -> float:
        """Convert with the current table; identity when no table has loaded yet."""
        if self._table is None:
            return amount
        return self._table.convert(amount, from_code, to_code)
