import asyncio

import httpx
import pytest

from iptvresolver.utils.http_client import HTTPClient, build_client
from iptvresolver.utils.logger import redact, resolver_logger, setup_logger


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("GET http://h/player_api.php?username=bob&password=hunter2&action=get_series",
         "GET http://h/player_api.php?username=***&password=***&action=get_series"),
        ("Stream http://h:8080/series/bob/hunter2/1001.mkv", "Stream http://h:8080/series/***/***/1001.mkv"),
        ("Resolved S01E01 to series 7", "Resolved S01E01 to series 7"),
    ],
)
def test_redact_masks_credentials(message, expected):
    assert redact(message) == expected


def test_log_lines_never_carry_credentials():
    lines = []
    setup_logger("DEBUG", sink=lines.append, colorize=False)
    try:
        resolver_logger.info("Fetching http://h/get.php?user=bob&pass=hunter2")
    finally:
        setup_logger("INFO")

    assert len(lines) == 1
    assert "hunter2" not in lines[0]
    assert "RESOLVER" in lines[0]
    assert "user=***&pass=***" in lines[0]


def test_build_client_sends_provider_headers():
    client = build_client()
    try:
        assert client.headers["Accept"] == "application/json"
        assert client.headers["User-Agent"]
    finally:
        asyncio.run(client.aclose())


def test_http_client_reopens_after_close():
    created = []

    def factory() -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(204)))
        created.append(client)
        return client

    async def runner():
        holder = HTTPClient(factory)
        first = await holder.get_client()
        again = await holder.get_client()
        await holder.close()
        closed = holder.is_open
        reopened = await holder.get_client()
        await holder.close()
        return first, again, closed, reopened

    first, again, closed, reopened = asyncio.run(runner())

    assert first is again
    assert closed is False
    assert reopened is not first
    assert len(created) == 2
