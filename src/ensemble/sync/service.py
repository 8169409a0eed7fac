"""Library sync service: cache loading, provider-scoped sync and filtering."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING

import structlog

from ensemble.library.codec import Err, decode_item, encode_item
from ensemble.logging import sync_context
from ensemble.library.models import (
    CACHED_TYPES,
    TRACKED_TYPES,
    Album,
    Artist,
    Audiobook,
    MediaItem,
    MediaType,
    Playlist,
    Podcast,
    Track,
)
from ensemble.storage.models import CacheEntry
from ensemble.sync.filters import filter_by_providers
from ensemble.sync.sources import (
    SourceMap,
    TypeAccumulator,
    dedupe_providers,
    merge_scoped_collection,
    seed_for_scoped_sync,
)

if TYPE_CHECKING:
    from ensemble.config import AppConfig
    from ensemble.storage.database import LibraryStore
    from ensemble.sync.catalog import CatalogAPI

log = structlog.get_logger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=5)


class SyncStatus(StrEnum):
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class FetchLimits:
    items: int = 1000
    tracks: int = 5000
    podcasts: int = 100


@dataclass(frozen=True)
class Generation:
    """One immutable snapshot of a media type: ordered items plus tracking."""

    items: tuple[MediaItem, ...] = ()
    sources: SourceMap = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def build(cls, items: Iterable[MediaItem], sources: Mapping[str, frozenset[str]]) -> Generation:
        return cls(tuple(items), MappingProxyType(dict(sources)))


_EMPTY = Generation()

Listener = Callable[["LibrarySyncService"], None]


class LibrarySyncService:
    """Keeps the local library cache in step with the remote catalog.

    The cache is loaded from the store first (instant, offline) and then
    refreshed from the server.  A refresh builds complete new generations
    for every media type before publishing them with a single assignment,
    so readers only ever observe the previous or the next state.
    """

    def __init__(
        self,
        store: LibraryStore,
        *,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        limits: FetchLimits | None = None,
        album_artists_only: bool = False,
    ) -> None:
        self._store = store
        self._stale_after = stale_after
        self._limits = limits or FetchLimits()
        self._album_artists_only = album_artists_only

        self._status = SyncStatus.IDLE
        self._last_error: str | None = None
        self._last_sync_time: datetime | None = None
        self._is_syncing = False

        self._generations: Mapping[MediaType, Generation] = {t: _EMPTY for t in CACHED_TYPES}
        self._listeners: list[Listener] = []

    @classmethod
    def from_config(cls, config: AppConfig, store: LibraryStore) -> LibrarySyncService:
        return cls(
            store,
            stale_after=config.sync.stale_after,
            limits=FetchLimits(
                items=config.sync.item_limit,
                tracks=config.sync.track_limit,
                podcasts=config.sync.podcast_limit,
            ),
            album_artists_only=config.sync.album_artists_only,
        )

    # -- observable state -----------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def last_sync_time(self) -> datetime | None:
        return self._last_sync_time

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def has_cache(self) -> bool:
        return any(gen.items for gen in self._generations.values())

    @property
    def has_library_cache(self) -> bool:
        """True once albums or artists are cached; until then every sync runs."""
        return bool(self._generations[MediaType.ALBUM].items or self._generations[MediaType.ARTIST].items)

    @property
    def has_source_tracking(self) -> bool:
        return any(self._generations[t].sources for t in TRACKED_TYPES)

    def get_status(self) -> dict:
        return {
            "state": self._status.value,
            "last_error": self._last_error,
            "last_sync_time": self._last_sync_time.isoformat() if self._last_sync_time else None,
            "counts": {str(t): len(self._generations[t].items) for t in CACHED_TYPES},
            "tracked": {str(t): len(self._generations[t].sources) for t in TRACKED_TYPES},
        }

    # -- change notification --------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a function that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in tuple(self._listeners):
            try:
                listener(self)
            except Exception:
                log.exception("listener_failed", listener=repr(listener))

    # -- cached collections ---------------------------------------------------

    def cached(self, media_type: MediaType | str) -> tuple[MediaItem, ...]:
        return self._generations[MediaType(media_type)].items

    def sources(self, media_type: MediaType | str) -> SourceMap:
        return self._generations[MediaType(media_type)].sources

    @property
    def cached_albums(self) -> tuple[Album, ...]:
        return self.cached(MediaType.ALBUM)  # type: ignore[return-value]

    @property
    def cached_artists(self) -> tuple[Artist, ...]:
        return self.cached(MediaType.ARTIST)  # type: ignore[return-value]

    @property
    def cached_audiobooks(self) -> tuple[Audiobook, ...]:
        return self.cached(MediaType.AUDIOBOOK)  # type: ignore[return-value]

    @property
    def cached_playlists(self) -> tuple[Playlist, ...]:
        return self.cached(MediaType.PLAYLIST)  # type: ignore[return-value]

    @property
    def cached_tracks(self) -> tuple[Track, ...]:
        return self.cached(MediaType.TRACK)  # type: ignore[return-value]

    @property
    def cached_podcasts(self) -> tuple[Podcast, ...]:
        return self.cached(MediaType.PODCAST)  # type: ignore[return-value]

    # -- filtering ------------------------------------------------------------

    def filter_by_providers(
        self, media_type: MediaType | str, enabled_provider_ids: Collection[str]
    ) -> list[MediaItem]:
        """Cached items of *media_type* attributable to the enabled providers."""
        media_type = MediaType(media_type)
        if media_type not in TRACKED_TYPES:
            raise ValueError(f"{media_type} items are not source-tracked")
        gen = self._generations[media_type]
        return filter_by_providers(gen.items, gen.sources, enabled_provider_ids)

    def get_albums_filtered_by_providers(self, enabled_provider_ids: Collection[str]) -> list[Album]:
        return self.filter_by_providers(MediaType.ALBUM, enabled_provider_ids)  # type: ignore[return-value]

    def get_artists_filtered_by_providers(self, enabled_provider_ids: Collection[str]) -> list[Artist]:
        return self.filter_by_providers(MediaType.ARTIST, enabled_provider_ids)  # type: ignore[return-value]

    def get_audiobooks_filtered_by_providers(self, enabled_provider_ids: Collection[str]) -> list[Audiobook]:
        return self.filter_by_providers(MediaType.AUDIOBOOK, enabled_provider_ids)  # type: ignore[return-value]

    def get_playlists_filtered_by_providers(self, enabled_provider_ids: Collection[str]) -> list[Playlist]:
        return self.filter_by_providers(MediaType.PLAYLIST, enabled_provider_ids)  # type: ignore[return-value]

    def get_tracks_filtered_by_providers(self, enabled_provider_ids: Collection[str]) -> list[Track]:
        return self.filter_by_providers(MediaType.TRACK, enabled_provider_ids)  # type: ignore[return-value]

    # -- sorted-order overrides -----------------------------------------------

    def update_cached(self, media_type: MediaType | str, items: Iterable[MediaItem]) -> None:
        """Replace the display order of *media_type*; tracking is left as is."""
        media_type = MediaType(media_type)
        current = self._generations[media_type]
        self._generations = {**self._generations, media_type: Generation(tuple(items), current.sources)}
        self._notify()

    def update_cached_albums(self, albums: Iterable[Album]) -> None:
        self.update_cached(MediaType.ALBUM, albums)

    def update_cached_artists(self, artists: Iterable[Artist]) -> None:
        self.update_cached(MediaType.ARTIST, artists)

    def update_cached_audiobooks(self, audiobooks: Iterable[Audiobook]) -> None:
        self.update_cached(MediaType.AUDIOBOOK, audiobooks)

    def update_cached_playlists(self, playlists: Iterable[Playlist]) -> None:
        self.update_cached(MediaType.PLAYLIST, playlists)

    def update_cached_tracks(self, tracks: Iterable[Track]) -> None:
        self.update_cached(MediaType.TRACK, tracks)

    # -- targeted removal -----------------------------------------------------

    async def remove_from_cache_by_library_id(self, media_type: MediaType | str, library_id: int | str) -> int:
        """Drop items the user removed from their library; returns how many went."""
        media_type = MediaType(media_type)
        library_id = str(library_id)
        current = self._generations[media_type]

        remaining = tuple(item for item in current.items if not item.matches_library_id(library_id))
        if len(remaining) == len(current.items):
            return 0

        remaining_ids = {item.item_id for item in remaining}
        removed_ids = [item.item_id for item in current.items if item.item_id not in remaining_ids]
        sources = {k: v for k, v in current.sources.items() if k in remaining_ids}
        self._generations = {**self._generations, media_type: Generation.build(remaining, sources)}

        log.info("library_item_removed", media_type=str(media_type), library_id=library_id, removed=len(removed_ids))
        self._notify()

        try:
            await self._store.delete_items(media_type, removed_ids)
        except Exception as exc:
            log.warning("cache_delete_failed", media_type=str(media_type), error=str(exc))
        return len(removed_ids)

    # -- load -----------------------------------------------------------------

    async def load_from_cache(self) -> None:
        """Populate the in-memory cache from the store; never touches the network."""
        log.info("cache_load_start")
        try:
            generations: dict[MediaType, Generation] = {}
            for media_type in TRACKED_TYPES:
                rows = await self._store.get_cached_items_with_providers(media_type)
                generations[media_type] = self._decode_rows(media_type, rows)
            podcast_rows = await self._store.get_cached_items(MediaType.PODCAST)
            generations[MediaType.PODCAST] = self._decode_rows(
                MediaType.PODCAST, [(data, []) for data in podcast_rows]
            )
        except Exception as exc:
            log.error("cache_load_failed", error=str(exc))
            return

        self._generations = {**self._generations, **generations}
        log.info(
            "cache_loaded",
            **{str(t): len(g.items) for t, g in generations.items()},
            tracked=sum(len(generations[t].sources) for t in TRACKED_TYPES),
        )
        self._notify()

    @staticmethod
    def _decode_rows(media_type: MediaType, rows: Iterable[tuple[str, Sequence[str]]]) -> Generation:
        acc = TypeAccumulator()
        for data, providers in rows:
            result = decode_item(media_type, data)
            if isinstance(result, Err):
                log.warning("cached_item_decode_failed", media_type=str(media_type), reason=result.reason)
                continue
            acc.add(result.value)
            if providers:
                acc.sources[result.value.item_id] = frozenset(providers)
        return Generation.build(acc.items.values(), acc.sources)

    # -- sync -----------------------------------------------------------------

    async def force_sync(self, api: CatalogAPI, scoped_providers: Sequence[str] | None = None) -> None:
        """Sync regardless of cache age (pull-to-refresh)."""
        await self.sync_from_api(api, force=True, scoped_providers=scoped_providers)

    async def sync_from_api(
        self,
        api: CatalogAPI,
        *,
        force: bool = False,
        scoped_providers: Sequence[str] | None = None,
    ) -> None:
        """Refresh the cache from *api*.

        With *scoped_providers* every tracked type is fetched once per
        provider so each item can be attributed; tracking for providers
        outside the scope is carried forward.  Without it everything is
        fetched in one pass and tracking starts over.

        Failures are recorded in :attr:`status` / :attr:`last_error`; the
        previous cache stays active and nothing is raised.
        """
        if self._is_syncing:
            log.info("sync_already_running")
            return
        # No await between the check above and this assignment.
        self._is_syncing = True
        try:
            if not force and self.has_library_cache and not await self._any_stale():
                log.info("sync_skipped_cache_fresh")
                return
            providers = dedupe_providers(scoped_providers)
            with sync_context(providers):
                await self._run_sync(api, providers)
        finally:
            self._is_syncing = False

    async def _any_stale(self) -> bool:
        for media_type in CACHED_TYPES:
            try:
                if await self._store.needs_sync(media_type, self._stale_after):
                    return True
            except Exception as exc:
                log.warning("staleness_check_failed", media_type=str(media_type), error=str(exc))
                return True
        return False

    async def _run_sync(self, api: CatalogAPI, providers: list[str]) -> None:
        self._status = SyncStatus.SYNCING
        self._last_error = None
        self._notify()

        log.info("sync_start")
        try:
            generations = await self._build_generations(api, providers)
        except Exception as exc:
            self._status = SyncStatus.ERROR
            self._last_error = str(exc) or type(exc).__name__
            log.error("sync_failed", error=self._last_error)
            self._notify()
            return

        await self._persist(generations)

        self._generations = {**self._generations, **generations}
        self._last_sync_time = datetime.now(UTC)
        self._status = SyncStatus.COMPLETED
        log.info(
            "sync_completed",
            **{str(t): len(g.items) for t, g in generations.items()},
            tracked=sum(len(generations[t].sources) for t in TRACKED_TYPES),
        )
        self._notify()

    async def _build_generations(self, api: CatalogAPI, providers: list[str]) -> dict[MediaType, Generation]:
        current = self._generations
        accumulators = {
            t: TypeAccumulator(seed_for_scoped_sync(current[t].sources, providers) if providers else None)
            for t in TRACKED_TYPES
        }

        if providers:
            for provider_id in providers:
                fetched = await self._fetch_tracked(api, [provider_id])
                for media_type, items in fetched.items():
                    accumulators[media_type].add_all(items, provider_id)
                log.info("provider_fetched", provider=provider_id, **{str(t): len(i) for t, i in fetched.items()})
        else:
            fetched = await self._fetch_tracked(api, None)
            for media_type, items in fetched.items():
                accumulators[media_type].add_all(items)

        podcasts = TypeAccumulator()
        podcasts.add_all(await api.get_podcasts(limit=self._limits.podcasts))

        generations: dict[MediaType, Generation] = {}
        for media_type, acc in accumulators.items():
            if providers:
                prev = current[media_type]
                items = merge_scoped_collection(prev.items, prev.sources, acc.items, acc.sources)
            else:
                items = tuple(acc.items.values())
            ids = {item.item_id for item in items}
            generations[media_type] = Generation.build(items, {k: v for k, v in acc.sources.items() if k in ids})
        generations[MediaType.PODCAST] = Generation.build(podcasts.items.values(), {})
        return generations

    async def _fetch_tracked(
        self, api: CatalogAPI, provider_ids: list[str] | None
    ) -> dict[MediaType, list[MediaItem]]:
        limit = self._limits.items
        albums, artists, audiobooks, playlists, tracks = await asyncio.gather(
            api.get_albums(limit=limit, provider_instance_ids=provider_ids),
            api.get_artists(
                limit=limit,
                album_artists_only=self._album_artists_only,
                provider_instance_ids=provider_ids,
            ),
            api.get_audiobooks(limit=limit, provider_instance_ids=provider_ids),
            api.get_playlists(limit=limit, provider_instance_ids=provider_ids),
            api.get_tracks(limit=self._limits.tracks, provider_instance_ids=provider_ids),
        )
        return {
            MediaType.ALBUM: albums,
            MediaType.ARTIST: artists,
            MediaType.AUDIOBOOK: audiobooks,
            MediaType.PLAYLIST: playlists,
            MediaType.TRACK: tracks,
        }

    async def _persist(self, generations: Mapping[MediaType, Generation]) -> None:
        # Each type is swapped atomically on disk; a failed type keeps its previous rows.
        for media_type, gen in generations.items():
            entries = [
                CacheEntry(
                    item_id=item.item_id,
                    data=encode_item(item),
                    source_providers=sorted(gen.sources.get(item.item_id, ())),
                )
                for item in gen.items
            ]
            try:
                await self._store.replace_items(media_type, entries)
                await self._store.update_sync_metadata(media_type, len(entries))
            except Exception as exc:
                log.warning("cache_save_failed", media_type=str(media_type), error=str(exc))
                continue
            log.debug("cache_saved", media_type=str(media_type), items=len(entries))

    # -- clear ----------------------------------------------------------------

    async def clear_cache(self) -> None:
        """Forget everything, in memory and on disk (e.g. on logout)."""
        try:
            await self._store.clear_all_cache()
        except Exception as exc:
            log.warning("cache_clear_failed", error=str(exc))
        self._generations = {t: _EMPTY for t in CACHED_TYPES}
        self._last_sync_time = None
        self._status = SyncStatus.IDLE
        self._last_error = None
        log.info("cache_cleared")
        self._notify()
