import asyncio

import pytest

from conftest import FakeProvider, season_payload
from iptvresolver.services.stream import FALLBACK_CONFIDENCE, StreamService, year_adjustment


def make_service(make_resolver, provider, **config) -> StreamService:
    return StreamService(make_resolver(provider, **config))


def test_episode_source_uses_series_url(make_resolver, credentials):
    provider = FakeProvider(
        series=[{"series_id": 1, "name": "Dark", "year": 2017}],
        episodes={1: season_payload({1: [(3, 4003)]})},
    )
    service = make_service(make_resolver, provider)

    async def runner():
        return await service.find_episode_source(credentials, "Dark", 1, 3, year=2017)

    source = asyncio.run(runner())

    assert source["url"] == "http://provider.test:8080/series/user/secret/4003.mkv"
    assert source["stream_id"] == 4003
    assert source["method"] == "title_canonical"
    assert source["confidence"] == pytest.approx(0.93)
    assert source["title"] == "Dark S1E3"
    assert provider.vod_calls == 0


def test_episode_falls_back_to_vod_listing(make_resolver, credentials):
    provider = FakeProvider(vod=[
        {"stream_id": 501, "name": "The Office S01E01", "container_extension": "mkv"},
        {"stream_id": 502, "name": "The Office S01E02"},
        {"stream_id": 503, "name": "Parks S01E01"},
    ])
    service = make_service(make_resolver, provider)

    async def runner():
        return await service.find_episode_source(credentials, "The Office", 1, 1)

    source = asyncio.run(runner())

    assert source["stream_id"] == 501
    assert source["url"] == "http://provider.test:8080/movie/user/secret/501.mkv"
    assert source["confidence"] == FALLBACK_CONFIDENCE
    assert source["method"] == "vod_episode_name"


def test_vod_episode_number_alone_needs_an_id_past_season_one(make_resolver, credentials):
    provider = FakeProvider(vod=[
        {"stream_id": 601, "name": "Lost Episode 4"},
        {"stream_id": 602, "name": "Lost Episode 4 ", "tmdb": "4607"},
    ])
    service = make_service(make_resolver, provider)

    async def runner():
        without_id = await service.find_episode_in_vod(credentials, "Lost", 2, 4, None, None, True)
        with_id = await service.find_episode_in_vod(credentials, "Lost", 2, 4, "4607", None, True)
        season_one = await service.find_episode_in_vod(credentials, "Lost", 1, 4, None, None, True)
        return without_id, with_id, season_one

    without_id, with_id, season_one = asyncio.run(runner())

    assert without_id is None
    assert with_id["stream_id"] == 602
    assert season_one is not None


def test_movie_source_from_ranked_match(make_resolver, credentials):
    provider = FakeProvider(vod=[{"stream_id": 900, "name": "Heat (1995)", "year": 1995}])
    service = make_service(make_resolver, provider)

    async def runner():
        return await service.find_movie_source(credentials, "Heat", year=1995)

    source = asyncio.run(runner())

    assert source["url"] == "http://provider.test:8080/movie/user/secret/900.mp4"
    assert source["method"] == "title_canonical"


def test_movie_source_falls_back_to_name_score(make_resolver, credentials):
    provider = FakeProvider(vod=[
        {"stream_id": 910, "name": "Knight Moves"},
        {"stream_id": 911, "name": "Unrelated"},
    ])
    service = make_service(make_resolver, provider)

    async def runner():
        return await service.find_movie_source(credentials, "Knight Rises")

    source = asyncio.run(runner())

    assert source["stream_id"] == 910
    assert source["method"] == "vod_name"
    assert source["confidence"] == FALLBACK_CONFIDENCE


def test_short_movie_title_matches_by_name(make_resolver, credentials):
    provider = FakeProvider(vod=[
        {"stream_id": 42, "name": "Up (2009)"},
        {"stream_id": 43, "name": "Heat (1995)"},
    ])
    service = make_service(make_resolver, provider)

    async def runner():
        return await service.find_movie_source(credentials, "Up", year=2009)

    source = asyncio.run(runner())

    assert source["stream_id"] == 42
    assert source["method"] == "vod_name"


def test_short_series_title_falls_back_to_vod_listing(make_resolver, credentials):
    provider = FakeProvider(
        series=[{"series_id": 1, "name": "The Office", "year": 2005}],
        vod=[{"stream_id": 77, "name": "ER S01E01"}, {"stream_id": 78, "name": "ER S01E02"}],
    )
    service = make_service(make_resolver, provider)

    async def runner():
        return await service.find_episode_source(credentials, "ER", 1, 1, year=1994)

    source = asyncio.run(runner())

    assert source["stream_id"] == 77
    assert source["method"] == "vod_episode_name"
    assert provider.episode_calls == []


def test_movie_source_none_when_catalog_unavailable(make_resolver, credentials):
    service = make_service(make_resolver, FakeProvider(fail_catalog=True))

    async def runner():
        return await service.find_movie_source(credentials, "Heat")

    assert asyncio.run(runner()) is None


def test_warm_caches_counts_both_catalogs(make_resolver, credentials):
    provider = FakeProvider(
        series=[{"series_id": 1, "name": "Dark"}],
        vod=[{"stream_id": 2, "name": "Heat"}, {"stream_id": 3, "name": "Ran"}],
    )
    service = make_service(make_resolver, provider)

    assert asyncio.run(service.warm_caches(credentials)) == {"series": 1, "vod": 2}


@pytest.mark.parametrize(
    ("query_year", "entry_year", "expected"),
    [(2000, 2000, 20), (2000, 2001, 8), (2000, 2005, -25), (None, 2000, 0), (2000, None, 0)],
)
def test_year_adjustment(query_year, entry_year, expected):
    assert year_adjustment(query_year, entry_year) == expected
