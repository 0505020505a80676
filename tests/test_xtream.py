import asyncio

import httpx
import pytest

from iptvresolver.core.exceptions import ProviderError
from iptvresolver.services.xtream import XtreamClient, XtreamCredentials, as_listing


def make_client(handler) -> XtreamClient:
    return XtreamClient(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), timeout=5)


def test_catalog_request_carries_credentials_and_action(credentials):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"series_id": 1, "name": "Dark"}, "junk"])

    async def runner():
        return await make_client(handler).fetch_raw_catalog(credentials)

    listing = asyncio.run(runner())

    assert listing == [{"series_id": 1, "name": "Dark"}]
    assert seen[0].url.path == "/player_api.php"
    assert seen[0].url.params["username"] == "user"
    assert seen[0].url.params["password"] == "secret"
    assert seen[0].url.params["action"] == "get_series"


def test_episode_request_passes_series_id(credentials):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"episodes": {"1": []}})

    async def runner():
        return await make_client(handler).fetch_raw_episode_list(credentials, 42)

    payload = asyncio.run(runner())

    assert payload == {"episodes": {"1": []}}
    assert seen[0].url.params["action"] == "get_series_info"
    assert seen[0].url.params["series_id"] == "42"


def test_vod_listing_accepts_keyed_objects(credentials):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["action"] == "get_vod_streams"
        return httpx.Response(200, json={"a": {"stream_id": 5, "name": "Heat"}, "b": {"stream_id": 6, "name": "Ran"}})

    async def runner():
        return await make_client(handler).fetch_raw_vod_catalog(credentials)

    assert [item["stream_id"] for item in asyncio.run(runner())] == [5, 6]


@pytest.mark.parametrize(
    ("response", "status_code"),
    [
        (httpx.Response(503, text="busy"), 503),
        (httpx.Response(200, text="<html>not json</html>"), 200),
    ],
)
def test_bad_responses_raise_provider_error(credentials, response, status_code):
    async def runner():
        await make_client(lambda request: response).fetch_raw_catalog(credentials)

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(runner())

    assert excinfo.value.status_code == status_code
    assert excinfo.value.action == "get_series"


def test_transport_errors_raise_provider_error(credentials):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def runner():
        await make_client(handler).fetch_raw_episode_list(credentials, 1)

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(runner())

    assert excinfo.value.reason == "ConnectError"


def test_credentials_build_stream_urls_and_hide_password():
    creds = XtreamCredentials(base_url="http://host:80", username="u", password="p")

    assert creds.stream_url("series", 12, "mkv") == "http://host:80/series/u/p/12.mkv"
    assert creds.stream_url("movie", 7) == "http://host:80/movie/u/p/7.mp4"
    assert "password" not in repr(creds)
    assert creds.provider_key != XtreamCredentials("http://host:80", "u", "other").provider_key


def test_as_listing_filters_non_objects():
    assert as_listing(None) == []
    assert as_listing("error") == []
    assert as_listing([{"a": 1}, 2, None]) == [{"a": 1}]
