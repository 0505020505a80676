from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from iptvresolver.config.settings import settings
from iptvresolver.core.cache import stable_hash
from iptvresolver.core.exceptions import ProviderError
from iptvresolver.utils.http_client import http_client
from iptvresolver.utils.logger import provider_logger


# ===========================
# Xtream Credentials
# ===========================
@dataclass(frozen=True)
class XtreamCredentials:
    base_url: str
    username: str
    password: str = field(repr=False)

    @property
    def provider_key(self) -> str:
        return stable_hash(f"{self.base_url}|{self.username}|{self.password}")

    def stream_url(self, kind: str, stream_id: int, extension: Optional[str] = None) -> str:
        return f"{self.base_url}/{kind}/{self.username}/{self.password}/{stream_id}.{extension or 'mp4'}"


# ===========================
# Catalog Provider Protocol
# ===========================
class CatalogProvider(Protocol):

    async def fetch_raw_catalog(self, credentials: XtreamCredentials) -> List[Dict[str, Any]]:
        ...

    async def fetch_raw_vod_catalog(self, credentials: XtreamCredentials) -> List[Dict[str, Any]]:
        ...

    async def fetch_raw_episode_list(self, credentials: XtreamCredentials, series_id: int) -> Any:
        ...


# ===========================
# Listing Normalization
# ===========================
def as_listing(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        data = list(data.values())
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


# ===========================
# Xtream API Client
# ===========================
class XtreamClient:

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self._client = client
        self.timeout = float(timeout if timeout is not None else settings.HTTP_TIMEOUT)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await http_client.get_client()

    async def _call(self, credentials: XtreamCredentials, action: str, **params) -> Any:
        url = f"{credentials.base_url}/player_api.php"
        query = {"username": credentials.username, "password": credentials.password, "action": action}
        query.update(params)

        client = await self._get_client()
        try:
            response = await client.get(url, params=query, timeout=self.timeout)
        except httpx.HTTPError as e:
            provider_logger.error(f"{action} failed: {type(e).__name__}")
            raise ProviderError(action, reason=type(e).__name__) from e

        if response.status_code != 200:
            provider_logger.error(f"{action} returned HTTP {response.status_code}")
            raise ProviderError(action, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            provider_logger.error(f"{action} returned invalid JSON")
            raise ProviderError(action, status_code=response.status_code, reason="invalid JSON") from e

    async def fetch_raw_catalog(self, credentials: XtreamCredentials) -> List[Dict[str, Any]]:
        listing = as_listing(await self._call(credentials, "get_series"))
        provider_logger.debug(f"Series catalog: {len(listing)} entries")
        return listing

    async def fetch_raw_vod_catalog(self, credentials: XtreamCredentials) -> List[Dict[str, Any]]:
        listing = as_listing(await self._call(credentials, "get_vod_streams"))
        provider_logger.debug(f"VOD catalog: {len(listing)} entries")
        return listing

    async def fetch_raw_episode_list(self, credentials: XtreamCredentials, series_id: int) -> Any:
        return await self._call(credentials, "get_series_info", series_id=series_id)
