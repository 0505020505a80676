"""Pytest configuration and shared fakes."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

# Make the ``iptvresolver`` package importable without an editable install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from iptvresolver.core.cache import CacheStore  # noqa: E402
from iptvresolver.core.exceptions import ProviderError  # noqa: E402
from iptvresolver.services.resolver import ResolverConfig, SeriesResolver  # noqa: E402
from iptvresolver.services.xtream import XtreamCredentials  # noqa: E402
from iptvresolver.utils.database import MemoryStore  # noqa: E402


class FakeProvider:
    """In-memory catalog provider that records every call it receives."""

    def __init__(
        self,
        series: list[dict[str, Any]] | None = None,
        vod: list[dict[str, Any]] | None = None,
        episodes: dict[int, Any] | None = None,
        delay: float = 0.0,
        fail_catalog: bool = False,
        failing_series: tuple[int, ...] = (),
    ) -> None:
        self.series = series or []
        self.vod = vod or []
        self.episodes = episodes or {}
        self.delay = delay
        self.fail_catalog = fail_catalog
        self.failing_series = set(failing_series)
        self.catalog_calls = 0
        self.vod_calls = 0
        self.episode_calls: list[int] = []
        self.active = 0
        self.max_active = 0

    async def fetch_raw_catalog(self, credentials: XtreamCredentials) -> list[dict[str, Any]]:
        self.catalog_calls += 1
        if self.fail_catalog:
            raise ProviderError("get_series", status_code=500)
        return list(self.series)

    async def fetch_raw_vod_catalog(self, credentials: XtreamCredentials) -> list[dict[str, Any]]:
        self.vod_calls += 1
        if self.fail_catalog:
            raise ProviderError("get_vod_streams", status_code=500)
        return list(self.vod)

    async def fetch_raw_episode_list(self, credentials: XtreamCredentials, series_id: int) -> Any:
        self.episode_calls.append(series_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        if series_id in self.failing_series:
            raise ProviderError("get_series_info", status_code=500)
        return self.episodes.get(series_id, {"episodes": {}})


def season_payload(seasons: dict[int, list[tuple[int, int]]], extension: str = "mkv") -> dict[str, Any]:
    """Build a ``get_series_info`` payload from ``{season: [(episode, stream_id)]}``."""

    return {
        "info": {"name": "Fixture"},
        "episodes": {
            str(season): [
                {
                    "id": str(stream_id),
                    "episode_num": episode,
                    "title": f"S{season:02d}E{episode:02d}",
                    "container_extension": extension,
                }
                for episode, stream_id in items
            ]
            for season, items in seasons.items()
        },
    }


@pytest.fixture
def credentials() -> XtreamCredentials:
    return XtreamCredentials(base_url="http://provider.test:8080", username="user", password="secret")


@pytest.fixture
def make_resolver():
    """Return a factory building a resolver over a fresh in-memory store."""

    def factory(provider: FakeProvider, store: MemoryStore | None = None, **config: Any):
        cache = CacheStore(store if store is not None else MemoryStore())
        return SeriesResolver(provider, cache, ResolverConfig(**config))

    return factory
