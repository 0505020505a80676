from typing import Callable, Dict, Optional

import httpx

from iptvresolver.config.settings import settings
from iptvresolver.utils.logger import provider_logger


# ===========================
# Client Options
# ===========================
def provider_headers() -> Dict[str, str]:
    return {"User-Agent": settings.PROVIDER_USER_AGENT, "Accept": "application/json"}


def build_client() -> httpx.AsyncClient:
    transport = httpx.AsyncHTTPTransport(
        retries=settings.HTTP_RETRIES,
        proxy=settings.PROXY_URL or None,
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
    )
    return httpx.AsyncClient(
        timeout=httpx.Timeout(float(settings.HTTP_TIMEOUT), connect=float(settings.HTTP_CONNECT_TIMEOUT)),
        headers=provider_headers(),
        follow_redirects=True,
        transport=transport,
    )


# ===========================
# Shared Provider Client
# ===========================
class HTTPClient:
    """Lazily opened ``httpx.AsyncClient`` shared by every provider call.

    A closed client is replaced on the next ``get_client`` call, so the holder
    survives an application restart inside the same process.
    """

    def __init__(self, factory: Callable[[], httpx.AsyncClient] = build_client):
        self._factory = factory
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_open(self) -> bool:
        return self._client is not None and not self._client.is_closed

    async def get_client(self) -> httpx.AsyncClient:
        if not self.is_open:
            self._client = self._factory()
            provider_logger.debug(f"HTTP client opened (proxy {'on' if settings.PROXY_URL else 'off'})")
        return self._client

    async def close(self):
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None
        provider_logger.debug("HTTP client closed")


http_client = HTTPClient()
