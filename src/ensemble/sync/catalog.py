"""Remote catalog contract and an async Music Assistant client using httpx.

The server exposes every API command over ``POST /api`` with a body of
``{"command": ..., "args": {...}}``.  Library listings used here:

- ``music/albums/library_items``
- ``music/artists/library_items`` (``album_artists_only``)
- ``music/audiobooks/library_items``
- ``music/playlists/library_items``
- ``music/tracks/library_items``
- ``music/podcasts/library_items`` (cannot be scoped to a provider)
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
import structlog

from ensemble.config import ServerConfig
from ensemble.library.codec import Err, decode_item
from ensemble.library.models import (
    Album,
    Artist,
    Audiobook,
    MediaItem,
    MediaType,
    Playlist,
    Podcast,
    Track,
)

log = structlog.get_logger(__name__)

_MAX_RETRIES = 3

_LIBRARY_COMMANDS: dict[MediaType, str] = {
    MediaType.ALBUM: "music/albums/library_items",
    MediaType.ARTIST: "music/artists/library_items",
    MediaType.AUDIOBOOK: "music/audiobooks/library_items",
    MediaType.PLAYLIST: "music/playlists/library_items",
    MediaType.TRACK: "music/tracks/library_items",
    MediaType.PODCAST: "music/podcasts/library_items",
}


class CatalogAuthError(Exception):
    """Raised when the server rejects our credentials."""


class CatalogAPIError(Exception):
    """Raised for non-retryable catalog API errors."""


class CatalogAPI(Protocol):
    """What the sync service needs from the remote catalog."""

    async def get_albums(
        self, *, limit: int, provider_instance_ids: Sequence[str] | None = None
    ) -> list[Album]: ...

    async def get_artists(
        self,
        *,
        limit: int,
        album_artists_only: bool = False,
        provider_instance_ids: Sequence[str] | None = None,
    ) -> list[Artist]: ...

    async def get_audiobooks(
        self, *, limit: int, provider_instance_ids: Sequence[str] | None = None
    ) -> list[Audiobook]: ...

    async def get_playlists(
        self, *, limit: int, provider_instance_ids: Sequence[str] | None = None
    ) -> list[Playlist]: ...

    async def get_tracks(
        self, *, limit: int, provider_instance_ids: Sequence[str] | None = None
    ) -> list[Track]: ...

    async def get_podcasts(self, *, limit: int) -> list[Podcast]: ...


class MusicAssistantClient:
    """Async Music Assistant HTTP API client."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = _transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> MusicAssistantClient:
        kw: dict = {"timeout": 30.0, "base_url": self._config.url.rstrip("/")}
        token = self._config.token.get_secret_value()
        if token:
            kw["headers"] = {"Authorization": f"Bearer {token}"}
        if self._transport is not None:
            kw["transport"] = self._transport
        self._client = httpx.AsyncClient(**kw)
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # -- request helper --

    async def command(self, command: str, **args: Any) -> Any:
        """Run one API command and return its decoded JSON result."""
        assert self._client is not None  # noqa: S101

        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.post("/api", json={"command": command, "args": args})
            except httpx.TransportError as exc:
                if attempt >= _MAX_RETRIES - 1:
                    raise CatalogAPIError(f"Network error after {_MAX_RETRIES} retries: {exc}") from exc
                wait = 2**attempt
                log.warning("catalog_network_error", command=command, error=str(exc), retry_in=wait, attempt=attempt)
                await asyncio.sleep(wait)
                continue

            if resp.status_code in (401, 403):
                raise CatalogAuthError(
                    f"Server rejected credentials ({resp.status_code}). "
                    "Check the token: ensemble config set server.token <token>"
                )

            if resp.status_code == 429:
                retry_after = int(resp.headers.get("Retry-After", "1"))
                log.warning("catalog_rate_limited", command=command, retry_after=retry_after, attempt=attempt)
                await asyncio.sleep(retry_after)
                continue

            if resp.status_code >= 400:
                raise CatalogAPIError(f"{command} failed: {resp.status_code} {resp.text}")

            try:
                data = resp.json()
            except ValueError as exc:
                raise CatalogAPIError(f"{command} returned invalid JSON") from exc
            if isinstance(data, dict) and "error_code" in data:
                raise CatalogAPIError(f"{command} failed: {data.get('details') or data['error_code']}")
            return data

        raise CatalogAPIError(f"Max retries ({_MAX_RETRIES}) exceeded for {command}")

    async def library_items(
        self,
        media_type: MediaType,
        *,
        limit: int,
        provider_instance_ids: Sequence[str] | None = None,
        **extra: Any,
    ) -> list[MediaItem]:
        """Fetch and decode one library listing, skipping malformed items."""
        args: dict[str, Any] = {"limit": limit, **extra}
        if provider_instance_ids:
            args["provider"] = list(provider_instance_ids)
        data = await self.command(_LIBRARY_COMMANDS[media_type], **args)

        raw_items = data.get("items", []) if isinstance(data, dict) else data
        if not isinstance(raw_items, list):
            raise CatalogAPIError(f"Unexpected {media_type} listing payload: {type(raw_items).__name__}")

        items: list[MediaItem] = []
        for raw in raw_items:
            result = decode_item(media_type, raw)
            if isinstance(result, Err):
                log.warning("catalog_item_skipped", media_type=str(media_type), reason=result.reason)
                continue
            items.append(result.value)
        return items

    # -- public API --

    async def get_albums(self, *, limit: int, provider_instance_ids: Sequence[str] | None = None) -> list[Album]:
        return await self.library_items(MediaType.ALBUM, limit=limit, provider_instance_ids=provider_instance_ids)

    async def get_artists(
        self,
        *,
        limit: int,
        album_artists_only: bool = False,
        provider_instance_ids: Sequence[str] | None = None,
    ) -> list[Artist]:
        return await self.library_items(
            MediaType.ARTIST,
            limit=limit,
            provider_instance_ids=provider_instance_ids,
            album_artists_only=album_artists_only,
        )

    async def get_audiobooks(
        self, *, limit: int, provider_instance_ids: Sequence[str] | None = None
    ) -> list[Audiobook]:
        return await self.library_items(MediaType.AUDIOBOOK, limit=limit, provider_instance_ids=provider_instance_ids)

    async def get_playlists(
        self, *, limit: int, provider_instance_ids: Sequence[str] | None = None
    ) -> list[Playlist]:
        return await self.library_items(MediaType.PLAYLIST, limit=limit, provider_instance_ids=provider_instance_ids)

    async def get_tracks(self, *, limit: int, provider_instance_ids: Sequence[str] | None = None) -> list[Track]:
        return await self.library_items(MediaType.TRACK, limit=limit, provider_instance_ids=provider_instance_ids)

    async def get_podcasts(self, *, limit: int) -> list[Podcast]:
        return await self.library_items(MediaType.PODCAST, limit=limit)
