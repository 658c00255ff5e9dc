"""Exceptions surfaced to callers of the pricelens core."""


class PriceLensError(Exception):
    """Base class for errors raised by pricelens components."""


class RatesUnavailableError(PriceLensError):
    """Every configured exchange-rate source failed."""

    def __init__(self, failures: dict[str, str] | None = None) -> None:
        self.failures = dict(failures or {})
        detail = "; ".join(f"{source}: {reason}" for source, reason in self.failures.items())
        super().__init__(f"Exchange rates unavailable ({detail})" if detail else "Exchange rates unavailable")


class CacheImportError(PriceLensError):
    """A cache export file was rejected; the cache is left unmodified."""
