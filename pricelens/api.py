"""HTTP API for listing price lookups and their settings."""

import hmac
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import BaseModel

from .context import AppContext
from .errors import CacheImportError, RatesUnavailableError
from .models import Bookmark, CacheExport, CacheStats, Preferences, PriceQuote, ResolvedPrice
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="pricelens/api")


def get_context(request: Request) -> AppContext:
    """The AppContext owned by the running application."""
    return request.app.state.context


def require_api_key(request: Request, x_api_key: str | None = Header(default=None)):
    """
    Validate the X-API-Key header against the configured api_key setting.
    """
    expected = get_context(request).settings.api_key
    # If no key is configured, allow requests (dev/default mode).
    if not expected:
        return

    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if hmac.compare_digest(str(x_api_key), str(expected)):
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


router = APIRouter(dependencies=[Depends(require_api_key)])


class PriceResponse(BaseModel):
    """Resolved upstream price plus the quote for the current preferences."""
    resolved: ResolvedPrice
    quote: PriceQuote


class PreferencesResponse(BaseModel):
    preferences: Preferences


class RatesResponse(BaseModel):
    base: str
    fetched_at: float
    rates: Dict[str, float]


class CacheImportResponse(BaseModel):
    imported: int


class CacheToggleRequest(BaseModel):
    enabled: bool


class CacheToggleResponse(BaseModel):
    enabled: bool
    notified: int


class BookmarkRequest(BaseModel):
    url: str
    title: str


class BookmarksResponse(BaseModel):
    bookmarks: List[Bookmark]


@router.get("/price", response_model=PriceResponse)
async def get_price(
    url: str = Query(..., min_length=1),
    refresh: bool = False,
    ctx: AppContext = Depends(get_context),
):
    """Resolve a listing; `refresh=true` skips the cached value."""
    resolved = await ctx.pipeline.resolve(url, use_cache=not refresh)
    preferences = await ctx.preferences.load()
    quote = await ctx.quotes.quote(resolved, preferences)
    logger.info("Resolved listing %s via %s (available: %s)", url, resolved.platform, resolved.is_available)
    return PriceResponse(resolved=resolved, quote=quote)


@router.get("/preferences", response_model=PreferencesResponse)
async def get_preferences(ctx: AppContext = Depends(get_context)):
    """Return stored preferences (or defaults)."""
    return PreferencesResponse(preferences=await ctx.preferences.load())


@router.put("/preferences", response_model=PreferencesResponse)
async def set_preferences(prefs: Preferences, ctx: AppContext = Depends(get_context)):
    """Save preferences and notify subscribers."""
    return PreferencesResponse(preferences=await ctx.preferences.save(prefs))


@router.get("/rates", response_model=RatesResponse)
async def get_rates(ctx: AppContext = Depends(get_context)):
    """Current exchange-rate table, refreshed when stale."""
    try:
        table = await ctx.rates.get_rates()
    except RatesUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return RatesResponse(base=table.base, fetched_at=table.fetched_at, rates=dict(table.rates))


@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(ctx: AppContext = Depends(get_context)):
    return await ctx.cache.stats()


@router.get("/cache/export", response_model=CacheExport)
async def export_cache(ctx: AppContext = Depends(get_context)):
    """Download valid cache entries in the interchange format."""
    return await ctx.cache.export()


@router.post("/cache/import", response_model=CacheImportResponse)
async def import_cache(data: Dict[str, Any], ctx: AppContext = Depends(get_context)):
    """Replace the cache with an export; version mismatches are rejected."""
    try:
        imported = await ctx.import_cache(data)
    except CacheImportError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return CacheImportResponse(imported=imported)


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cache(ctx: AppContext = Depends(get_context)):
    await ctx.clear_cache()


@router.put("/cache/enabled", response_model=CacheToggleResponse)
async def set_cache_enabled(req: CacheToggleRequest, ctx: AppContext = Depends(get_context)):
    """Turn listing caching on or off for this process."""
    notified = await ctx.set_cache_enabled(req.enabled)
    return CacheToggleResponse(enabled=ctx.pipeline.cache_enabled, notified=notified)


@router.get("/bookmarks", response_model=BookmarksResponse)
async def list_bookmarks(ctx: AppContext = Depends(get_context)):
    """Saved listings, newest first."""
    return BookmarksResponse(bookmarks=await ctx.bookmarks.list())


@router.post("/bookmarks", response_model=Bookmark, status_code=status.HTTP_201_CREATED)
async def add_bookmark(req: BookmarkRequest, ctx: AppContext = Depends(get_context)):
    return await ctx.bookmarks.add(req.url, req.title)


@router.delete("/bookmarks", status_code=status.HTTP_204_NO_CONTENT)
async def remove_bookmark(url: str = Query(..., min_length=1), ctx: AppContext = Depends(get_context)):
    if not await ctx.bookmarks.remove(url):
        raise HTTPException(status_code=404, detail="Unknown bookmark")
