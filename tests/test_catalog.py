"""Tests for MusicAssistantClient using httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest
from pydantic import SecretStr

from ensemble.config import ServerConfig
from ensemble.library import Album, Artist, MediaType, Podcast
from ensemble.sync.catalog import CatalogAPIError, CatalogAuthError, MusicAssistantClient

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_config(token: str = "test-token") -> ServerConfig:
    return ServerConfig(url="http://ma.test:8095/", token=SecretStr(token))


def _album(item_id: str, name: str) -> dict:
    return {
        "item_id": item_id,
        "provider": "library",
        "name": name,
        "media_type": "album",
        "year": 2000,
        "provider_mappings": [
            {"item_id": f"sp-{item_id}", "provider_domain": "spotify", "provider_instance": "spotify--a"},
        ],
    }


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_albums_sends_command_and_token() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=[_album("1", "Kid A"), _album("2", "Amnesiac")])

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        result = await client.get_albums(limit=50)

    assert [a.name for a in result] == ["Kid A", "Amnesiac"]
    assert all(isinstance(a, Album) for a in result)

    req = requests[0]
    assert req.url == "http://ma.test:8095/api"
    assert req.headers["Authorization"] == "Bearer test-token"
    body = json.loads(req.content)
    assert body == {"command": "music/albums/library_items", "args": {"limit": 50}}


@pytest.mark.asyncio
async def test_scoped_request_sends_provider_filter() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=[])

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        await client.get_tracks(limit=10, provider_instance_ids=["tidal--x"])
        await client.get_artists(limit=5, album_artists_only=True, provider_instance_ids=["spotify--a"])

    assert bodies[0] == {"command": "music/tracks/library_items", "args": {"limit": 10, "provider": ["tidal--x"]}}
    assert bodies[1]["args"] == {"limit": 5, "album_artists_only": True, "provider": ["spotify--a"]}


@pytest.mark.asyncio
async def test_no_token_no_auth_header() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(token=""), _transport=transport) as client:
        await client.get_podcasts(limit=5)

    assert "Authorization" not in seen[0].headers


# ---------------------------------------------------------------------------
# Response decoding
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_items_envelope_accepted() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": [{"item_id": "p1", "name": "Show"}], "total": 1})

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        result = await client.get_podcasts(limit=5)

    assert len(result) == 1
    assert isinstance(result[0], Podcast)
    assert result[0].media_type is MediaType.PODCAST


@pytest.mark.asyncio
async def test_malformed_items_are_skipped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[{"item_id": "r1", "name": "Radiohead"}, {"name": "no id"}, {"item_id": "r2", "favorite": "maybe"}],
        )

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        result = await client.get_artists(limit=5)

    assert [a.item_id for a in result] == ["r1"]
    assert isinstance(result[0], Artist)


@pytest.mark.asyncio
async def test_unexpected_payload_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": "nope"})

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        with pytest.raises(CatalogAPIError, match="Unexpected"):
            await client.get_playlists(limit=5)


@pytest.mark.asyncio
async def test_server_error_payload_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error_code": 999, "details": "Provider not available"})

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        with pytest.raises(CatalogAPIError, match="Provider not available"):
            await client.get_audiobooks(limit=5)


@pytest.mark.asyncio
async def test_invalid_json_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>")

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        with pytest.raises(CatalogAPIError, match="invalid JSON"):
            await client.get_albums(limit=5)


# ---------------------------------------------------------------------------
# HTTP errors and retries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_auth_failure(status: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status)

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        with pytest.raises(CatalogAuthError):
            await client.get_albums(limit=5)


@pytest.mark.asyncio
async def test_server_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal")

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        with pytest.raises(CatalogAPIError, match="500"):
            await client.get_albums(limit=5)


@pytest.mark.asyncio
async def test_rate_limit_retry(monkeypatch: pytest.MonkeyPatch) -> None:
    sleep_calls: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleep_calls.append(seconds)

    monkeypatch.setattr("ensemble.sync.catalog.asyncio.sleep", fake_sleep)

    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            return httpx.Response(429, headers={"Retry-After": "2"})
        return httpx.Response(200, json=[_album("1", "Kid A")])

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        result = await client.get_albums(limit=5)

    assert len(result) == 1
    assert sleep_calls == [2]


@pytest.mark.asyncio
async def test_network_retry_succeeds(monkeypatch: pytest.MonkeyPatch) -> None:
    sleep_calls: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleep_calls.append(seconds)

    monkeypatch.setattr("ensemble.sync.catalog.asyncio.sleep", fake_sleep)

    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count < 3:
            raise httpx.ConnectError("connection refused")
        return httpx.Response(200, json=[])

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        assert await client.get_tracks(limit=5) == []

    assert sleep_calls == [1, 2]


@pytest.mark.asyncio
async def test_network_retry_exhausted(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_sleep(seconds: float) -> None:
        return None

    monkeypatch.setattr("ensemble.sync.catalog.asyncio.sleep", fake_sleep)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    transport = httpx.MockTransport(handler)
    async with MusicAssistantClient(_make_config(), _transport=transport) as client:
        with pytest.raises(CatalogAPIError, match="Network error"):
            await client.get_tracks(limit=5)
