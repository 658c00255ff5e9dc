"""Application configuration pulled from environment variables via pydantic."""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RATE_SOURCES = [
    "https://open.er-api.com/v6/latest/USD",
    "https://api.exchangerate-api.com/v4/latest/USD",
    "https://cdn.jsdelivr.net/npm/@fawazahmed0/currency-api@latest/v1/currencies/usd.json",
]


class Settings(BaseSettings):
    """Environment-driven configuration for the pricelens service."""
    model_config = SettingsConfigDict(env_prefix="PRICELENS_", extra="ignore")

    # durable key/value store
    store_backend: str = "sql"  # options: sql, memory, redis
    store_database_url: str = "sqlite:///./pricelens.db"
    store_redis_url: str | None = None
    store_redis_prefix: str = "pricelens:"

    # listing price cache
    cache_schema_version: str = "1.0.0"
    cache_max_age_seconds: int = 7 * 24 * 60 * 60
    cache_max_items: int = 1000
    cache_cleanup_interval_seconds: int = 24 * 60 * 60

    # network
    fetch_timeout_seconds: float = 10.0
    proxy_timeout_seconds: float = 10.0
    lookup_base_url: str = "https://www.jadeship.com/item"

    # exchange rates
    base_currency: str = "USD"
    rates_refresh_interval_seconds: int = 3600
    rates_timeout_seconds: float = 10.0
    rates_sources: list[str] = Field(default_factory=lambda: list(DEFAULT_RATE_SOURCES))

    # preferences used until the user saves their own
    default_platform: str = "weidian"
    default_agent: str = "superbuy"
    default_currency: str = "USD"

    api_key: str | None = None
    log_level: str = "INFO"

    @field_validator("lookup_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("base_currency", "default_currency", mode="after")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        """Currency codes are handled upper-case everywhere."""
        return v.strip().upper()


settings = Settings()
