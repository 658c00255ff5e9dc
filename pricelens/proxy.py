"""Credential-free GET channel used for cross-site price lookups.

Lookups run blocking `requests` calls on a worker thread. Each call uses a
fresh session that ignores environment/netrc credentials, carries no cookies
and no Referer, and drops any user:password embedded in the URL. The result
is always a `ProxyResponse`; this module never raises for network errors.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional
from urllib.parse import urlsplit, urlunsplit

import requests
from pydantic import BaseModel

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="proxy")

PROXY_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


class ProxyResponse(BaseModel):
    """Outcome of a proxied GET."""
    success: bool
    data: Optional[str] = None
    error: Optional[str] = None


def strip_credentials(url: str) -> str:
    """Remove any `user:password@` part from a URL."""
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))


class ProxyChannel:
    """Performs lookups on behalf of the pipeline."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.timeout = timeout_seconds
        self.session_factory = session_factory

    def _new_session(self) -> requests.Session:
        session = self.session_factory()
        session.trust_env = False
        session.cookies.clear()
        session.auth = None
        session.headers.pop("Referer", None)
        return session

    def fetch_sync(self, url: str) -> ProxyResponse:
        """Blocking GET; non-2xx and transport errors become `success=False`."""
        target = strip_credentials(url)
        try:
            with self._new_session() as session:
                resp = session.get(target, headers=PROXY_HEADERS, timeout=self.timeout, allow_redirects=True)
                if not resp.ok:
                    return ProxyResponse(success=False, error=f"HTTP error! status: {resp.status_code}")
                return ProxyResponse(success=True, data=resp.text)
        except requests.exceptions.RequestException as exc:
            logger.warning("Proxy fetch failed for %s: %s", target, exc)
            return ProxyResponse(success=False, error=str(exc) or exc.__class__.__name__)

    async def fetch(self, url: str) -> ProxyResponse:
        """Run `fetch_sync` off the event loop."""
        return await asyncio.to_thread(self.fetch_sync, url)
